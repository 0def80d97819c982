"""Cohere backend used for chat fallback, text polishing, summaries, classification and embeddings."""

from __future__ import annotations

import logging
from typing import Any, Final

from jarvis_backend.errors import AdapterError

from .base import ChatBackend, ChatMessage, ChatOptions, ChatResult, HealthStatus


logger = logging.getLogger(__name__)


SUMMARY_LENGTHS: Final[dict[str, str]] = {
    "short": "one or two sentences",
    "medium": "a single short paragraph",
    "long": "a few detailed paragraphs",
}

_ENHANCE_PROMPT: Final[str] = (
    "Improve the following text for clarity and grammar while maintaining its meaning. "
    "Reply with the improved text only.\n\n{text}\n\nImproved version:"
)
_SUMMARY_PROMPT: Final[str] = (
    "Summarize the following text in {length}. Reply with the summary only.\n\n{text}"
)

EMBEDDING_MODEL: Final[str] = "embed-english-v3.0"
UNCLASSIFIED: Final[dict[str, Any]] = {"category": "unknown", "confidence": 0.0}


def _extract_text(data: Any) -> str | None:
    try:
        parts = data["message"]["content"]
    except (KeyError, TypeError):
        return None
    if not isinstance(parts, list):
        return None
    chunks = [part.get("text", "") for part in parts if isinstance(part, dict) and part.get("type") == "text"]
    text = "".join(chunk for chunk in chunks if isinstance(chunk, str)).strip()
    return text or None


class CohereBackend(ChatBackend):
    """Adapter for Cohere's v2 chat endpoint."""

    async def _chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResult:
        temperature, max_tokens, top_p = self._sampling(options)
        model = options.model or self.descriptor.model
        payload: dict[str, Any] = {
            "model": model,
            "messages": [message.as_dict() for message in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "p": min(max(top_p, 0.01), 0.99),
            "stream": False,
        }
        if options.json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = await self._request_json(
            "POST",
            f"{self.descriptor.base_url.rstrip('/')}/v2/chat",
            json_body=payload,
            headers=self._auth_headers(),
        )
        text = _extract_text(data)
        if text is None:
            raise self._malformed(data)

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else None
        return ChatResult(text=text, backend=self.name, model=model, usage=usage)

    async def _probe(self) -> HealthStatus:
        await self._chat([ChatMessage(role="user", content="Hi")], ChatOptions(max_tokens=10))
        return HealthStatus(available=True, metadata={"model": self.descriptor.model, "service": self.name})

    async def enhance_text(self, text: str) -> str:
        result = await self.chat(
            [ChatMessage(role="user", content=_ENHANCE_PROMPT.format(text=text))],
            ChatOptions(temperature=0.3, max_tokens=300),
        )
        return result.text

    async def summarize_text(self, text: str, length: str = "medium") -> str:
        description = SUMMARY_LENGTHS.get(length, SUMMARY_LENGTHS["medium"])
        logger.info("Requesting summary", extra={"backend": self.name, "length": length, "chars": len(text)})
        result = await self.chat(
            [ChatMessage(role="user", content=_SUMMARY_PROMPT.format(length=description, text=text))],
            ChatOptions(temperature=0.3),
        )
        return result.text

    async def classify_text(self, text: str, categories: list[str]) -> dict[str, Any]:
        """Pick the best of ``categories`` for ``text``; ``unknown`` when classification fails."""

        payload = {
            "inputs": [text],
            "examples": [{"text": category, "label": category} for category in categories],
        }
        try:
            self._ensure_configured()
            data = await self._request_json(
                "POST",
                f"{self.descriptor.base_url.rstrip('/')}/v1/classify",
                json_body=payload,
                headers=self._auth_headers(),
            )
        except AdapterError as exc:
            logger.warning("Classification failed", extra={"backend": self.name, "error": exc.reason})
            return dict(UNCLASSIFIED)

        classifications = data.get("classifications") if isinstance(data, dict) else None
        first = classifications[0] if isinstance(classifications, list) and classifications else {}
        if not isinstance(first, dict):
            first = {}
        confidence = first.get("confidence")
        return {
            "category": first.get("prediction") or "unknown",
            "confidence": float(confidence) if isinstance(confidence, (int, float)) else 0.0,
        }

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Embed ``texts`` for semantic search; an empty list when the call fails."""

        payload = {
            "texts": list(texts),
            "model": EMBEDDING_MODEL,
            "input_type": "search_document",
            "embedding_types": ["float"],
        }
        try:
            self._ensure_configured()
            data = await self._request_json(
                "POST",
                f"{self.descriptor.base_url.rstrip('/')}/v2/embed",
                json_body=payload,
                headers=self._auth_headers(),
            )
        except AdapterError as exc:
            logger.warning("Embedding failed", extra={"backend": self.name, "error": exc.reason})
            return []

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        # v2 groups vectors by type; older responses return the bare list.
        if isinstance(embeddings, dict):
            embeddings = embeddings.get("float")
        if not isinstance(embeddings, list):
            return []
        return [list(vector) for vector in embeddings if isinstance(vector, list)]


__all__ = ["CohereBackend", "EMBEDDING_MODEL", "SUMMARY_LENGTHS"]
