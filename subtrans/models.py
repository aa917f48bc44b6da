from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class SubtitleUnit:
    """Request text for the cue range ``[start, end)``."""

    start: int
    end: int
    text: str

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class RetryState:
    unit_index: int = 0
    attempt_count: int = 0


class RunStatus(str, Enum):
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class RunReport:
    status: RunStatus
    translations: List[str] = field(default_factory=list)
    checkpoint_path: Optional[Path] = None
    failed_unit: Optional[SubtitleUnit] = None
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.DONE and self.checkpoint_path is not None
