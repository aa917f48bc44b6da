from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple
from urllib.parse import urlparse

import requests
from requests import Response, Session
from requests.exceptions import RequestException, Timeout

from .conversation import to_messages
from .errors import ServiceError, TransportError
from .models import Turn

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "chatgpt-4o-latest"


class CompletionService(Protocol):
    def complete(self, turns: Sequence[Turn]) -> str:
        """Return the first completion's text or raise TransportError/ServiceError."""
        ...


@dataclass(slots=True)
class CompletionSettings:
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    api_key: str = ""
    store: bool = True
    timeout: float = 10.0


class ChatCompletionClient:
    """One POST per call; retrying is left to the caller."""

    def __init__(self, settings: CompletionSettings, session: Optional[Session] = None):
        if not settings.base_url:
            raise ValueError("Completion service base URL is required.")
        if not settings.model:
            raise ValueError("Completion model is required.")
        self.settings = settings
        self._session = session or requests.Session()

    @property
    def session(self) -> Session:
        return self._session

    def complete(self, turns: Sequence[Turn]) -> str:
        payload = {
            "model": self.settings.model,
            "store": self.settings.store,
            "messages": to_messages(turns),
        }
        data = self._post("chat/completions", payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ServiceError(f"Unexpected response format: {self._clip_text(json.dumps(data))}") from exc
        if not isinstance(content, str):
            raise ServiceError("Completion content is not text.")
        return content

    def _post(self, path: str, payload: dict) -> dict:
        url = self._url(path)
        try:
            response: Response = self._session.post(
                url, json=payload, headers=self._headers(), timeout=self.settings.timeout
            )
        except Timeout as exc:
            raise TransportError(f"Request timed out after {self.settings.timeout}s: {exc}") from exc
        except RequestException as exc:
            raise TransportError(f"Failed to reach completion service: {exc}") from exc

        logger.debug("Completion service answered with status %s", response.status_code)
        if not 200 <= response.status_code < 300:
            error = self._provider_error_payload(self._extract_json_payload(response.text))
            if error:
                message, _ = error
            else:
                message = f"Completion service error {response.status_code}: {self._clip_text(response.text)}"
            raise ServiceError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            data = self._extract_json_payload(response.text)
            if data is None:
                raise ServiceError(
                    f"Invalid JSON response: {self._clip_text(response.text)}",
                    status_code=response.status_code,
                )
        if not isinstance(data, dict):
            raise ServiceError("Response body is not a JSON object.", status_code=response.status_code)
        provider_error = self._provider_error_payload(data)
        if provider_error:
            message, code = provider_error
            raise ServiceError(message, status_code=code)
        return data

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _url(self, path: str) -> str:
        base = self.settings.base_url.rstrip("/")
        return f"{base}/{path.lstrip('/')}"

    @staticmethod
    def _clip_text(text: str, limit: int = 800) -> str:
        snippet = (text or "").strip() or "<empty response>"
        return snippet if len(snippet) <= limit else f"{snippet[:limit]}…"

    @staticmethod
    def _extract_json_payload(body: str) -> Optional[dict]:
        stripped = (body or "").strip()
        if not stripped:
            return None
        first = stripped.find("{")
        last = stripped.rfind("}")
        if not 0 <= first < last:
            return None
        try:
            loaded = json.loads(stripped[first : last + 1])
        except ValueError:
            return None
        return loaded if isinstance(loaded, dict) else None

    @staticmethod
    def _provider_error_payload(payload: object) -> Optional[Tuple[str, Optional[int]]]:
        if not isinstance(payload, dict):
            return None
        error_block = payload.get("error")
        if not isinstance(error_block, dict):
            return None
        message = str(error_block.get("message") or "Unknown completion service error")
        details = [
            str(error_block[key]) for key in ("type", "param") if error_block.get(key)
        ]
        if details:
            message = f"{message} ({'; '.join(details)})"
        code_raw = error_block.get("code")
        code: Optional[int] = None
        if isinstance(code_raw, int):
            code = code_raw
        else:
            try:
                code = int(str(code_raw))
            except (TypeError, ValueError):
                code = None
        if code is not None:
            return f"Completion service error {code}: {message}", code
        if code_raw:
            return f"Completion service error ({code_raw}): {message}", None
        return f"Completion service error: {message}", None


def _is_local_url(url: str) -> bool:
    host = (urlparse(url if "://" in url else f"http://{url}").hostname or "").lower()
    return host in {"127.0.0.1", "localhost"} or host.startswith(("192.168.", "10."))


def validate_settings(settings: CompletionSettings) -> Tuple[bool, str]:
    missing: list[str] = []
    if not (settings.base_url or "").strip():
        missing.append("base URL")
    if not (settings.model or "").strip():
        missing.append("model")
    if settings.base_url and not _is_local_url(settings.base_url) and not (settings.api_key or "").strip():
        missing.append("API key")
    if missing:
        return False, f"Completion settings incomplete: {', '.join(missing)} required."
    return True, ""

