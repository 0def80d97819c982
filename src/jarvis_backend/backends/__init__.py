"""Backend adapter exports."""

from jarvis_backend.backends.base import (
    BackendDescriptor,
    ChatBackend,
    ChatMessage,
    ChatOptions,
    ChatResult,
    HealthStatus,
    Sentiment,
)
from jarvis_backend.backends.cohere import CohereBackend
from jarvis_backend.backends.huggingface import HuggingFaceBackend
from jarvis_backend.backends.ollama import OllamaBackend
from jarvis_backend.backends.openai_compat import OpenAICompatibleBackend

__all__ = [
    "BackendDescriptor",
    "ChatBackend",
    "ChatMessage",
    "ChatOptions",
    "ChatResult",
    "CohereBackend",
    "HealthStatus",
    "HuggingFaceBackend",
    "OllamaBackend",
    "OpenAICompatibleBackend",
    "Sentiment",
]
