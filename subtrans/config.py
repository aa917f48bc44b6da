from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .completion_client import DEFAULT_BASE_URL, DEFAULT_MODEL, CompletionSettings

DEFAULT_CONFIG_PATH = Path("subtrans.yaml")


@dataclass
class TranslatorSettings:
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    api_key: str = ""
    api_key_env: str = "API_KEY"
    store: bool = True
    request_timeout: float = 10.0
    max_turns: int = 16
    retry_threshold: int = 5
    batch_mode: bool = False
    batch_size: int = 15
    pacing_delay: float = 0.2
    romaji: bool = False
    checkpoint_dir: str = "."
    output_format: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_mapping(cls, raw: Dict[str, Any]) -> "TranslatorSettings":
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(raw) - set(known))
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        settings = cls()
        for key, value in raw.items():
            if value is None and key != "output_format":
                continue
            default = getattr(settings, key)
            setattr(settings, key, _coerce(key, value, default))
        return settings

    def resolved_api_key(self) -> str:
        return self.api_key or os.getenv(self.api_key_env, "")

    def completion_settings(self) -> CompletionSettings:
        return CompletionSettings(
            base_url=self.base_url,
            model=self.model,
            api_key=self.resolved_api_key(),
            store=self.store,
            timeout=self.request_timeout,
        )


def _coerce(key: str, value: Any, default: Any) -> Any:
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for '{key}': {value!r}") from exc
    return value if value is None else str(value)


def load_config(path: Optional[Path]) -> TranslatorSettings:
    if path is None or not Path(path).exists():
        return TranslatorSettings()
    with Path(path).open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config at {path} is not a mapping.")
    return TranslatorSettings.from_mapping(raw)
