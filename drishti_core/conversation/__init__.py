"""
Conversation
============

Session state machine, turn orchestration and bounded history.
"""

from drishti_core.conversation.history import ConversationHistory, ConversationTurn
from drishti_core.conversation.state import (
    InteractionSession,
    SessionState,
    ALLOWED_TRANSITIONS,
    can_transition,
)
from drishti_core.conversation.session import (
    SessionController,
    SessionEvent,
    SessionEventType,
)

__all__ = [
    "ConversationHistory",
    "ConversationTurn",
    "InteractionSession",
    "SessionState",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "SessionController",
    "SessionEvent",
    "SessionEventType",
]
