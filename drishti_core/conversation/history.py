"""
Bounded in-memory conversation history.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List


@dataclass(frozen=True)
class ConversationTurn:
    """A single {role, content} entry."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ConversationHistory:
    """
    Ordered, oldest-first message history capped at ``max_length``.

    The oldest entries are dropped once the cap is exceeded. Only the session
    controller mutates it, at turn boundaries.
    """

    def __init__(self, max_length: int = 20):
        if max_length < 1:
            raise ValueError("max_length must be positive")
        self.max_length = max_length
        self._turns: Deque[ConversationTurn] = deque(maxlen=max_length)

    def add_user(self, content: str) -> None:
        self._turns.append(ConversationTurn("user", content))

    def add_assistant(self, content: str) -> None:
        self._turns.append(ConversationTurn("assistant", content))

    def to_messages(self) -> List[Dict[str, str]]:
        """History in chat-completions message format."""
        return [turn.to_dict() for turn in self._turns]

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(list(self._turns))
