"""
Session state and interaction versioning.

The version counter is what makes barge-in safe: every asynchronous callback
captures the version it was started under and must check it with
``InteractionSession.is_current`` before mutating anything.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet


class SessionState(str, Enum):
    """Per-turn states of the voice session."""

    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    STREAMING = "streaming"
    SPEAKING = "speaking"


# Any state may also return to IDLE (completion, interruption, error)
ALLOWED_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.LISTENING}),
    SessionState.LISTENING: frozenset({SessionState.PROCESSING}),
    SessionState.PROCESSING: frozenset({SessionState.STREAMING}),
    SessionState.STREAMING: frozenset({SessionState.SPEAKING}),
    SessionState.SPEAKING: frozenset(),
}


def can_transition(from_state: SessionState, to_state: SessionState) -> bool:
    if to_state == SessionState.IDLE:
        return True
    return to_state in ALLOWED_TRANSITIONS[from_state]


@dataclass
class InteractionSession:
    """
    Process-lifetime interaction record.

    Attributes:
        version: Incremented whenever a new listening phase begins
        state: Current session state
        pipeline_active: True while a turn holds the reentrancy guard
    """
    version: int = 0
    state: SessionState = SessionState.IDLE
    pipeline_active: bool = False
    metadata: Dict[str, object] = field(default_factory=dict)

    def next_version(self) -> int:
        self.version += 1
        return self.version

    def is_current(self, version: int) -> bool:
        return version == self.version
