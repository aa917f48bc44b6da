from __future__ import annotations

from typing import Optional


class SubtransError(RuntimeError):
    """Base class for pipeline failures."""

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class TransportError(SubtransError):
    """Raised when the completion service cannot be reached or times out."""

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class ServiceError(SubtransError):
    """Raised when the completion service answers with a non-success payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, retryable=True)
        self.status_code = status_code


class MalformedResponseError(SubtransError):
    """A successful reply whose content does not hold the expected JSON array."""

    def __init__(self, message: str, *, expected: int, received: Optional[int] = None):
        super().__init__(message, retryable=False)
        self.expected = expected
        self.received = received


class PersistenceError(SubtransError):
    """Raised when a checkpoint or subtitle file cannot be written."""
