"""Rolling chat history sent along with every completion request."""
from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from .models import Role, Turn

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 16


class ConversationWindow:
    """Pinned system turn followed by at most ``max_turns`` exchange turns.

    Overflow drops the oldest user/assistant pair, i.e. positions 1 and 2.
    """

    def __init__(self, system_prompt: str, max_turns: int = DEFAULT_MAX_TURNS):
        if max_turns < 2:
            raise ValueError("max_turns must allow at least one user/assistant pair.")
        self.max_turns = max_turns
        self._turns: List[Turn] = [Turn(Role.SYSTEM, system_prompt)]

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def system_turn(self) -> Turn:
        return self._turns[0]

    def append(self, turn: Turn) -> None:
        if turn.role is Role.SYSTEM:
            raise ValueError("The system turn is pinned and cannot be appended.")
        self._turns.append(turn)
        self._turns = self._evict(self._turns, self.max_turns)

    def record_exchange(self, prompt: str, reply: str) -> None:
        self.append(Turn(Role.USER, prompt))
        self.append(Turn(Role.ASSISTANT, reply))

    def snapshot(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def preview(self, turn: Turn) -> Tuple[Turn, ...]:
        """What the window would hold after ``append(turn)``, without mutating it."""
        return tuple(self._evict(self._turns + [turn], self.max_turns))

    @staticmethod
    def _evict(turns: List[Turn], max_turns: int) -> List[Turn]:
        while len(turns) - 1 > max_turns:
            dropped = turns[1:3]
            logger.debug("Evicting oldest exchange (%s)", ", ".join(t.role.value for t in dropped))
            turns = turns[:1] + turns[3:]
        return turns


def to_messages(turns: Sequence[Turn]) -> List[Dict[str, str]]:
    return [turn.to_message() for turn in turns]
