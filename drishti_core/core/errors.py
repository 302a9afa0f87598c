"""
Error Taxonomy
==============

Exceptions raised across the voice turn pipeline.

Only transport-level and setup failures are surfaced to the user. Per-sentence
synthesis and decode failures are isolated by the synthesis dispatcher, and
empty results end the turn quietly.
"""

from typing import Any, Dict, Optional


class DrishtiError(Exception):
    """Base exception for voice turn operations."""

    default_code = "DRISHTI_ERROR"
    user_visible = True

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class TransportError(DrishtiError):
    """Network or stream failure. Aborts the turn."""

    default_code = "TRANSPORT_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class SynthesisError(DrishtiError):
    """Speech synthesis request failed for a single sentence."""

    default_code = "SYNTHESIS_ERROR"
    user_visible = False

    def __init__(self, message: str, index: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.index = index


class DecodeError(DrishtiError):
    """Synthesized audio payload could not be decoded."""

    default_code = "DECODE_ERROR"
    user_visible = False


class EmptyResultError(DrishtiError):
    """Empty transcript or empty generated reply."""

    default_code = "EMPTY_RESULT"
    user_visible = False


class CaptureError(DrishtiError):
    """Audio input or output device unavailable or failed."""

    default_code = "CAPTURE_ERROR"


class InvalidTransitionError(DrishtiError):
    """Session state machine rejected a transition."""

    default_code = "INVALID_TRANSITION"

    def __init__(self, from_state: str, to_state: str, **kwargs):
        super().__init__(f"Invalid transition: {from_state} -> {to_state}", **kwargs)
        self.from_state = from_state
        self.to_state = to_state
