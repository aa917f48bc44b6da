from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .errors import PersistenceError

logger = logging.getLogger(__name__)

CHECKPOINT_PREFIX = "subsStrings"


def checkpoint_name(range_start: int, range_end: int, when: datetime) -> str:
    stamp = when.strftime("%Y%m%d-%H%M%S")
    return f"{CHECKPOINT_PREFIX}-start-{range_start}-end-{range_end}-{stamp}.json"


class CheckpointWriter:
    """Writes accumulated translations as a JSON array of strings."""

    def __init__(self, directory: Path, clock: Callable[[], datetime] = datetime.now):
        self.directory = Path(directory)
        self._clock = clock

    def persist(self, results: Sequence[str], range_start: int, range_end: int) -> Optional[Path]:
        """Return the written path, or ``None`` after logging the failure."""
        target = self.directory / checkpoint_name(range_start, range_end, self._clock())
        try:
            payload = json.dumps(list(results), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            logger.error("Failed to encode checkpoint %s: %s", target.name, exc)
            return None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8") as f:
                f.write(payload)
        except OSError as exc:
            logger.error("Failed to write checkpoint %s: %s", target, exc)
            return None
        logger.info("Saved %d translated lines to %s", len(results), target)
        return target


def load_checkpoint(path: Path) -> List[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise PersistenceError(f"Cannot read translations from '{path}': {exc}") from exc
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise PersistenceError(f"'{path}' must contain a JSON array of strings.")
    return data
