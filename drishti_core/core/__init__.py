# Shared infrastructure: logging and error taxonomy

from drishti_core.core.errors import (
    DrishtiError,
    TransportError,
    SynthesisError,
    DecodeError,
    EmptyResultError,
    CaptureError,
    InvalidTransitionError,
)
from drishti_core.core.logging import configure_logging, get_logger

__all__ = [
    "DrishtiError",
    "TransportError",
    "SynthesisError",
    "DecodeError",
    "EmptyResultError",
    "CaptureError",
    "InvalidTransitionError",
    "configure_logging",
    "get_logger",
]
