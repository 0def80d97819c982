"""Best-effort stages layered around the core chat call.

Only the chat stage may fail a request.  Intent classification, text
polishing, sentiment scoring and summarisation are cosmetic: their failures
are logged and replaced with neutral values.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Protocol

import anyio

from jarvis_backend.backends.base import (
    NEUTRAL_SENTIMENT,
    ChatBackend,
    ChatMessage,
    ChatOptions,
    ChatResult,
    Sentiment,
)
from jarvis_backend.errors import AllBackendsUnavailable
from jarvis_backend.orchestrator import Orchestrator


logger = logging.getLogger(__name__)


INTENT_TYPES: Final[tuple[str, ...]] = ("general", "realtime", "automation", "image")

SYSTEM_PROMPT_TEMPLATE: Final[str] = (
    "You are Jarvis, an intelligent AI assistant. You are helpful, friendly, and professional. "
    "You are speaking to {username}. Keep responses concise but informative. "
    "You have a realistic 3D avatar that displays emotions and gestures while speaking."
)

INTENT_PROMPT: Final[str] = (
    "Analyze the user's query and classify it into categories:\n"
    "- general: General conversation\n"
    "- realtime: Requires real-time information (weather, news, current events)\n"
    "- automation: System commands (open, close, play)\n"
    "- image: Image generation request\n"
    "Return JSON with: { type: string, confidence: number, keywords: string[] }"
)

_FENCE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class IntentAnalysis:
    type: str = "general"
    confidence: float = 0.5
    keywords: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "confidence": self.confidence, "keywords": list(self.keywords)}


DEFAULT_INTENT: Final[IntentAnalysis] = IntentAnalysis()


class TextEnhancer(Protocol):
    async def enhance_text(self, text: str) -> str: ...


class SentimentAnalyzer(Protocol):
    async def analyze_sentiment(self, text: str) -> Sentiment: ...


class Summarizer(Protocol):
    async def summarize_text(self, text: str, length: str = "medium") -> str: ...


@dataclass(frozen=True)
class EnrichedResponse:
    """Everything the chat route returns for one user message."""

    text: str
    intent: IntentAnalysis
    sentiment: Sentiment
    chat: ChatResult


def parse_intent(raw: str) -> IntentAnalysis:
    """Interpret a structured classification reply, coercing out-of-set values."""

    payload = json.loads(_FENCE_PATTERN.sub("", raw.strip()))
    if not isinstance(payload, dict):
        raise ValueError("intent payload must be a JSON object")

    intent_type = str(payload.get("type", "general")).strip().lower()
    if intent_type not in INTENT_TYPES:
        intent_type = "general"

    try:
        confidence = float(payload.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    confidence = min(max(confidence, 0.0), 1.0)

    keywords = payload.get("keywords") or []
    if not isinstance(keywords, list):
        keywords = [keywords]
    return IntentAnalysis(
        type=intent_type,
        confidence=confidence,
        keywords=[str(keyword) for keyword in keywords],
    )


class EnrichmentPipeline:
    """Run intent, chat, optional polish and sentiment for one user message."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        *,
        intent_backend: ChatBackend | None = None,
        enhancer: TextEnhancer | None = None,
        sentiment_analyzer: SentimentAnalyzer | None = None,
        summarizer: Summarizer | None = None,
        system_prompt: str | None = None,
        parallel_intent: bool = False,
    ) -> None:
        self._orchestrator = orchestrator
        self._intent_backend = intent_backend
        self._enhancer = enhancer
        self._sentiment_analyzer = sentiment_analyzer
        self._summarizer = summarizer
        self._system_prompt = system_prompt or SYSTEM_PROMPT_TEMPLATE.format(username="the user")
        self._parallel_intent = parallel_intent

    def build_messages(self, message: str, history: Sequence[ChatMessage]) -> list[ChatMessage]:
        return [
            ChatMessage(role="system", content=self._system_prompt),
            *history,
            ChatMessage(role="user", content=message),
        ]

    async def respond(
        self,
        message: str,
        history: Sequence[ChatMessage] = (),
        *,
        enhance: bool = False,
    ) -> EnrichedResponse:
        messages = self.build_messages(message, history)

        if self._parallel_intent:
            intent, chat = await self._intent_and_chat_concurrently(message, messages)
        else:
            intent = await self.analyze_intent(message)
            chat = await self._orchestrator.get_response(messages)

        text = chat.text
        if enhance:
            text = await self.enhance(text)

        sentiment = await self.analyze_sentiment(text)
        return EnrichedResponse(text=text, intent=intent, sentiment=sentiment, chat=chat)

    async def _intent_and_chat_concurrently(
        self,
        message: str,
        messages: list[ChatMessage],
    ) -> tuple[IntentAnalysis, ChatResult]:
        intents: list[IntentAnalysis] = []
        chat: ChatResult | None = None
        failure: AllBackendsUnavailable | None = None

        async def _classify() -> None:
            intents.append(await self.analyze_intent(message))

        async with anyio.create_task_group() as tg:
            tg.start_soon(_classify)
            try:
                chat = await self._orchestrator.get_response(messages)
            except AllBackendsUnavailable as exc:
                failure = exc
                tg.cancel_scope.cancel()

        if failure is not None:
            raise failure
        if chat is None:
            raise AllBackendsUnavailable({})
        return (intents[0] if intents else DEFAULT_INTENT), chat

    async def analyze_intent(self, query: str) -> IntentAnalysis:
        if self._intent_backend is None:
            return DEFAULT_INTENT
        try:
            result = await self._intent_backend.chat(
                [
                    ChatMessage(role="system", content=INTENT_PROMPT),
                    ChatMessage(role="user", content=query),
                ],
                ChatOptions(temperature=0.3, json_mode=True),
            )
            return parse_intent(result.text)
        except Exception as exc:
            logger.warning("Intent analysis failed", extra={"error": str(exc)})
            return DEFAULT_INTENT

    async def enhance(self, text: str) -> str:
        if self._enhancer is None:
            return text
        try:
            enhanced = await self._enhancer.enhance_text(text)
        except Exception as exc:
            logger.warning("Text enhancement failed", extra={"error": str(exc)})
            return text
        return enhanced.strip() or text

    async def analyze_sentiment(self, text: str) -> Sentiment:
        if self._sentiment_analyzer is None:
            return NEUTRAL_SENTIMENT
        try:
            return await self._sentiment_analyzer.analyze_sentiment(text)
        except Exception as exc:
            logger.warning("Sentiment analysis failed", extra={"error": str(exc)})
            return NEUTRAL_SENTIMENT

    async def summarize(self, text: str, length: str = "medium") -> str:
        if self._summarizer is None:
            return text
        try:
            summary = await self._summarizer.summarize_text(text, length)
        except Exception as exc:
            logger.warning("Summarization failed", extra={"error": str(exc)})
            return text
        return summary.strip() or text


__all__ = [
    "DEFAULT_INTENT",
    "EnrichedResponse",
    "EnrichmentPipeline",
    "INTENT_TYPES",
    "IntentAnalysis",
    "SYSTEM_PROMPT_TEMPLATE",
    "parse_intent",
]
