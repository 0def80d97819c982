"""Adapter for hosted inference services speaking the OpenAI chat format."""

from __future__ import annotations

import logging
from typing import Any, Final

from .base import ChatBackend, ChatMessage, ChatOptions, ChatResult, HealthStatus


logger = logging.getLogger(__name__)


CHAT_COMPLETIONS_PATH: Final[str] = "/chat/completions"
_PROBE_MESSAGES: Final[tuple[ChatMessage, ...]] = (ChatMessage(role="user", content="Hi"),)


def _chat_payload(model: str, messages: list[ChatMessage], temperature: float, max_tokens: int, top_p: float) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [message.as_dict() for message in messages],
        "temperature": temperature,
        "max_tokens": max_tokens,
        "top_p": top_p,
        "stream": False,
    }


def _chat_extractor(data: Any) -> str | None:
    try:
        message = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(message, str):
        return None
    return message.strip()


class OpenAICompatibleBackend(ChatBackend):
    """Chat backend for ``/chat/completions`` style APIs (Groq, xAI, HF router)."""

    async def _chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResult:
        temperature, max_tokens, top_p = self._sampling(options)
        model = options.model or self.descriptor.model
        payload = _chat_payload(model, messages, temperature, max_tokens, top_p)
        if options.json_mode:
            payload["response_format"] = {"type": "json_object"}

        url = f"{self.descriptor.base_url.rstrip('/')}{CHAT_COMPLETIONS_PATH}"
        logger.info(
            "Requesting chat completion",
            extra={"backend": self.name, "model": model, "messages": len(messages)},
        )
        data = await self._request_json("POST", url, json_body=payload, headers=self._auth_headers())

        text = _chat_extractor(data)
        if text is None:
            raise self._malformed(data)

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else None
        return ChatResult(
            text=text,
            backend=self.name,
            model=str(data.get("model") or model),
            usage=usage,
        )

    async def _probe(self) -> HealthStatus:
        await self._chat(list(_PROBE_MESSAGES), ChatOptions(max_tokens=10))
        return HealthStatus(
            available=True,
            metadata={"model": self.descriptor.model, "service": self.name},
        )


__all__ = ["OpenAICompatibleBackend", "CHAT_COMPLETIONS_PATH"]
