from __future__ import annotations

from collections.abc import Sequence

import anyio

from jarvis_backend.backends.base import (
    BackendDescriptor,
    ChatBackend,
    ChatMessage,
    ChatOptions,
    ChatResult,
    HealthStatus,
    Sentiment,
)
from jarvis_backend.errors import BackendError


class FakeBackend(ChatBackend):
    """In-memory backend scripted with a reply or a failure."""

    def __init__(
        self,
        name: str,
        *,
        reply: str | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        configured: bool = True,
        health: HealthStatus | Exception | None = None,
    ) -> None:
        super().__init__(
            BackendDescriptor(
                name=name,
                base_url=f"https://{name}.invalid",
                model=f"{name}-model",
                api_key="key" if configured else None,
            )
        )
        self.reply = reply if reply is not None else f"reply from {name}"
        self.error = error
        self.delay = delay
        self.health_result = health
        self.calls: list[tuple[list[ChatMessage], ChatOptions]] = []

    async def _chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResult:
        self.calls.append((messages, options))
        if self.delay:
            await anyio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ChatResult(text=self.reply, backend=self.name, model=self.descriptor.model)

    async def _probe(self) -> HealthStatus:
        if isinstance(self.health_result, Exception):
            raise self.health_result
        return self.health_result or HealthStatus(available=True, metadata={"service": self.name})

    @property
    def call_count(self) -> int:
        return len(self.calls)


def failing(name: str, reason: str = "boom") -> FakeBackend:
    return FakeBackend(name, error=BackendError(name, reason))


def unconfigured(name: str) -> FakeBackend:
    return FakeBackend(name, configured=False)


class FakeSentiment:
    def __init__(self, result: Sentiment | Exception) -> None:
        self.result = result
        self.seen: list[str] = []

    async def analyze_sentiment(self, text: str) -> Sentiment:
        self.seen.append(text)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeCohere:
    def __init__(self, *, enhanced: str | Exception = "Polished.", summary: str | Exception = "Summary.") -> None:
        self.enhanced = enhanced
        self.summary = summary
        self.summaries: list[tuple[str, str]] = []

    async def enhance_text(self, text: str) -> str:
        if isinstance(self.enhanced, Exception):
            raise self.enhanced
        return self.enhanced

    async def summarize_text(self, text: str, length: str = "medium") -> str:
        self.summaries.append((text, length))
        if isinstance(self.summary, Exception):
            raise self.summary
        return self.summary


class FakeImages:
    def __init__(self, result: bytes | Exception = b"\x89PNG") -> None:
        self.result = result

    async def generate_image(self, prompt: str) -> bytes:
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def user(content: str) -> ChatMessage:
    return ChatMessage(role="user", content=content)


def messages(*contents: str) -> Sequence[ChatMessage]:
    return [user(content) for content in contents]


__all__ = [
    "FakeBackend",
    "FakeCohere",
    "FakeImages",
    "FakeSentiment",
    "failing",
    "messages",
    "unconfigured",
    "user",
]
