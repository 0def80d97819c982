"""Explicit application context constructed once at process start."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from jarvis_backend.backends import (
    ChatBackend,
    CohereBackend,
    HuggingFaceBackend,
    OllamaBackend,
    OpenAICompatibleBackend,
)
from jarvis_backend.config import Settings
from jarvis_backend.conversation import ConversationStore
from jarvis_backend.enrichment import SYSTEM_PROMPT_TEMPLATE, EnrichmentPipeline
from jarvis_backend.orchestrator import Orchestrator


logger = logging.getLogger(__name__)


class ImageGenerator(Protocol):
    async def generate_image(self, prompt: str) -> bytes: ...


@dataclass
class AppContext:
    """Everything a request handler needs, with no module-level singletons."""

    settings: Settings
    orchestrator: Orchestrator
    conversations: ConversationStore
    pipeline: EnrichmentPipeline
    image_generator: ImageGenerator | None = None
    http_client: httpx.AsyncClient | None = field(default=None, repr=False)
    owns_client: bool = False

    async def aclose(self) -> None:
        if self.owns_client and self.http_client is not None:
            await self.http_client.aclose()


def build_backends(settings: Settings, client: httpx.AsyncClient | None = None) -> dict[str, ChatBackend]:
    """Instantiate one adapter per configured backend, in registration order."""

    backends: dict[str, ChatBackend] = {}
    for name, descriptor in settings.backends.items():
        if name == "huggingface":
            backends[name] = HuggingFaceBackend(
                descriptor,
                inference_url=settings.huggingface_inference_url,
                client=client,
            )
        elif name == "ollama":
            backends[name] = OllamaBackend(descriptor, client=client)
        elif name == "cohere":
            backends[name] = CohereBackend(descriptor, client=client)
        else:
            backends[name] = OpenAICompatibleBackend(descriptor, client=client)
    return backends


def build_context(settings: Settings | None = None, *, client: httpx.AsyncClient | None = None) -> AppContext:
    settings = settings or Settings.from_env()
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.attempt_timeout)

    backends = build_backends(settings, client)
    orchestrator = Orchestrator(
        backends,
        priority=settings.priority,
        attempt_timeout=settings.attempt_timeout,
    )

    intent_name = settings.intent_service or (settings.priority[0] if settings.priority else None)
    huggingface = backends.get("huggingface")
    cohere = backends.get("cohere")
    pipeline = EnrichmentPipeline(
        orchestrator,
        intent_backend=backends.get(intent_name) if intent_name else None,
        enhancer=cohere if isinstance(cohere, CohereBackend) else None,
        sentiment_analyzer=huggingface if isinstance(huggingface, HuggingFaceBackend) else None,
        summarizer=cohere if isinstance(cohere, CohereBackend) else None,
        system_prompt=SYSTEM_PROMPT_TEMPLATE.format(username=settings.username),
        parallel_intent=settings.parallel_intent,
    )

    logger.info(
        "Application context ready",
        extra={"priority": list(settings.priority), "configured": settings.configured_services()},
    )
    return AppContext(
        settings=settings,
        orchestrator=orchestrator,
        conversations=ConversationStore(settings.max_messages),
        pipeline=pipeline,
        image_generator=huggingface if isinstance(huggingface, HuggingFaceBackend) else None,
        http_client=client,
        owns_client=owns_client,
    )


__all__ = ["AppContext", "ImageGenerator", "build_backends", "build_context"]
