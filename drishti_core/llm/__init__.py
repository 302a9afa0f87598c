# Streaming chat completions

from drishti_core.llm.streaming import ChatStreamClient, is_reasoning_model

__all__ = ["ChatStreamClient", "is_reasoning_model"]
