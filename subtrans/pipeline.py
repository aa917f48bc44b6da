"""Sequential batch/retry state machine driving the translation run."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .checkpoint import CheckpointWriter
from .completion_client import CompletionService
from .conversation import ConversationWindow
from .errors import MalformedResponseError, SubtransError
from .models import Role, RetryState, RunReport, RunStatus, SubtitleUnit, Turn
from .repair import repair_response

logger = logging.getLogger(__name__)

DEFAULT_RETRY_THRESHOLD = 5
DEFAULT_BATCH_SIZE = 15
DEFAULT_PACING_DELAY = 0.2


class State(str, Enum):
    FETCHING = "fetching"
    AWAITING = "awaiting"
    SUCCESS = "success"
    RETRYING = "retrying"
    ABORTED = "aborted"
    DONE = "done"


def build_units(texts: Sequence[str], *, batch_mode: bool, batch_size: int = DEFAULT_BATCH_SIZE) -> List[SubtitleUnit]:
    if not batch_mode:
        return [SubtitleUnit(i, i + 1, text) for i, text in enumerate(texts)]
    size = max(1, batch_size)
    units = []
    for start in range(0, len(texts), size):
        chunk = list(texts[start : start + size])
        units.append(SubtitleUnit(start, start + len(chunk), json.dumps(chunk, ensure_ascii=False)))
    return units


class RetryPolicy:
    """Pure transitions over RetryState; the loop owns all side effects."""

    def __init__(self, threshold: int = DEFAULT_RETRY_THRESHOLD):
        if threshold < 1:
            raise ValueError("Retry threshold must be at least 1.")
        self.threshold = threshold

    def after_failure(self, state: RetryState, error: SubtransError) -> Tuple[State, RetryState]:
        if not error.retryable:
            return State.ABORTED, state
        bumped = replace(state, attempt_count=state.attempt_count + 1)
        if bumped.attempt_count >= self.threshold:
            return State.ABORTED, bumped
        return State.FETCHING, bumped

    def after_success(self, state: RetryState) -> RetryState:
        return RetryState(unit_index=state.unit_index + 1, attempt_count=0)


class BatchIterator:
    def __init__(
        self,
        texts: Sequence[str],
        client: CompletionService,
        window: ConversationWindow,
        checkpoint: CheckpointWriter,
        *,
        batch_mode: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
        policy: Optional[RetryPolicy] = None,
        pacing_delay: float = DEFAULT_PACING_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.window = window
        self.checkpoint = checkpoint
        self.batch_mode = batch_mode
        self.policy = policy or RetryPolicy()
        self.pacing_delay = pacing_delay
        self._sleep = sleep
        self.total = len(texts)
        self.units = build_units(texts, batch_mode=batch_mode, batch_size=batch_size)
        self.results: List[str] = []
        self.retry = RetryState()
        self.state = State.FETCHING

    def run(self) -> RunReport:
        unit: Optional[SubtitleUnit] = None
        prompt: Optional[Turn] = None
        reply = ""
        parsed: List[str] = []
        error: Optional[SubtransError] = None

        while True:
            if self.state is State.FETCHING:
                if self.retry.unit_index >= len(self.units):
                    self.state = State.DONE
                    continue
                unit = self.units[self.retry.unit_index]
                prompt = Turn(Role.USER, unit.text)
                logger.info(
                    "Unit %d / %d (cues %d-%d)",
                    self.retry.unit_index + 1,
                    len(self.units),
                    unit.start,
                    unit.end - 1,
                )
                self.state = State.AWAITING

            elif self.state is State.AWAITING:
                try:
                    reply = self.client.complete(self.window.preview(prompt))
                    parsed = self._interpret(unit, reply)
                except MalformedResponseError as exc:
                    logger.error("Unusable reply for cues %d-%d: %s", unit.start, unit.end - 1, exc)
                    error = exc
                    self.state = State.ABORTED
                except SubtransError as exc:
                    error = exc
                    self.state = State.RETRYING
                else:
                    self.state = State.SUCCESS

            elif self.state is State.RETRYING:
                self.state, self.retry = self.policy.after_failure(self.retry, error)
                logger.warning(
                    "Attempt %d/%d for cues %d-%d failed: %s",
                    self.retry.attempt_count,
                    self.policy.threshold,
                    unit.start,
                    unit.end - 1,
                    error,
                )

            elif self.state is State.SUCCESS:
                self.window.record_exchange(prompt.content, reply)
                self.results.extend(parsed)
                self.retry = self.policy.after_success(self.retry)
                error = None
                logger.debug("Reply: %r", reply)
                self.state = State.FETCHING
                if not self.batch_mode and self.pacing_delay > 0:
                    self._sleep(self.pacing_delay)

            elif self.state is State.ABORTED:
                logger.error("Aborting after %d translated cues.", len(self.results))
                start, end = self._abort_range(unit)
                path = self.checkpoint.persist(self.results, start, end)
                return RunReport(
                    RunStatus.ABORTED,
                    translations=list(self.results),
                    checkpoint_path=path,
                    failed_unit=unit,
                    error=error,
                )

            else:
                path = self.checkpoint.persist(self.results, 0, max(self.total - 1, 0))
                return RunReport(RunStatus.DONE, translations=list(self.results), checkpoint_path=path)

    def _abort_range(self, unit: SubtitleUnit) -> Tuple[int, int]:
        """Range of the last completed unit; (0, 0) when nothing completed."""
        if self.retry.unit_index == 0:
            return 0, 0
        return self.units[self.retry.unit_index - 1].start, unit.start - 1

    def _interpret(self, unit: SubtitleUnit, reply: str) -> List[str]:
        if not self.batch_mode:
            return [reply]
        return repair_response(reply, unit.size).unwrap()
