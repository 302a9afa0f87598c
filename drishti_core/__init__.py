"""
Drishti Voice Core
==================

Turn-based voice conversation engine.

This package provides:
- Streaming sentence decoding of generated replies
- Concurrent per-sentence speech synthesis
- Ordered, gapless playback scheduling
- Session state machine with barge-in support
- Energy-based voice activity detection
"""

__version__ = "1.0.0"
