"""Recover the JSON string array from a chatty batch-mode reply."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import List, Optional

from .errors import MalformedResponseError

ARRAY_OPEN = "["
ARRAY_CLOSE = "]"


@dataclass(frozen=True)
class RepairResult:
    lines: Optional[List[str]] = None
    error: Optional[MalformedResponseError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> List[str]:
        if self.error is not None:
            raise self.error
        return list(self.lines or [])


def locate_array(content: str) -> Optional[str]:
    """Inclusive slice from the first ``[`` to the last ``]``, or ``None``."""
    start = content.find(ARRAY_OPEN)
    if start < 0:
        return None
    end = content.rfind(ARRAY_CLOSE)
    if end < start:
        return None
    return content[start : end + 1]


def repair_response(content: str, expected: int) -> RepairResult:
    candidate = locate_array(content or "")
    if candidate is None:
        return _failure("Reply does not contain a JSON array.", expected)
    try:
        parsed = json.loads(candidate)
    except ValueError as exc:
        return _failure(f"Reply array is not valid JSON: {exc}", expected)
    if not isinstance(parsed, list) or not all(isinstance(item, str) for item in parsed):
        return _failure("Reply array must contain only strings.", expected)
    if len(parsed) != expected:
        return _failure(
            f"Expected {expected} translated lines, reply had {len(parsed)}.",
            expected,
            len(parsed),
        )
    return RepairResult(lines=parsed)


def _failure(message: str, expected: int, received: Optional[int] = None) -> RepairResult:
    return RepairResult(error=MalformedResponseError(message, expected=expected, received=received))
