"""Locally hosted inference through an Ollama daemon."""

from __future__ import annotations

import logging
from typing import Any

from jarvis_backend.errors import AdapterError

from .base import ChatBackend, ChatMessage, ChatOptions, ChatResult, HealthStatus


logger = logging.getLogger(__name__)


class OllamaBackend(ChatBackend):
    """Adapter for the Ollama ``/api/chat`` endpoint.

    Ollama needs no credential, so the backend is always considered
    configured; availability is decided by the health probe, which requires
    the daemon to be running with at least one model pulled.
    """

    @property
    def _base_url(self) -> str:
        return self.descriptor.base_url.rstrip("/")

    async def _chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResult:
        temperature, max_tokens, top_p = self._sampling(options)
        model = options.model or self.descriptor.model
        payload: dict[str, Any] = {
            "model": model,
            "messages": [message.as_dict() for message in messages],
            "stream": False,
            "options": {
                "temperature": temperature,
                "top_p": top_p,
                "num_predict": max_tokens,
            },
        }
        if options.json_mode:
            payload["format"] = "json"

        logger.info("Requesting local chat completion", extra={"backend": self.name, "model": model})
        data = await self._request_json(
            "POST",
            f"{self._base_url}/api/chat",
            json_body=payload,
            headers={"Content-Type": "application/json"},
        )

        try:
            content = data["message"]["content"]
        except (KeyError, TypeError):
            raise self._malformed(data) from None
        if not isinstance(content, str):
            raise self._malformed(data)

        usage = None
        if "prompt_eval_count" in data or "eval_count" in data:
            usage = {
                "prompt_tokens": data.get("prompt_eval_count"),
                "completion_tokens": data.get("eval_count"),
            }
        return ChatResult(text=content.strip(), backend=self.name, model=str(data.get("model") or model), usage=usage)

    async def _probe(self) -> HealthStatus:
        try:
            models = await self._fetch_models()
        except AdapterError:
            return HealthStatus(
                available=False,
                detail="Ollama not installed or not running. Download at https://ollama.ai",
            )
        names = [str(model.get("name")) for model in models if isinstance(model, dict)]
        return HealthStatus(
            available=bool(names),
            detail=None if names else "No Ollama models installed",
            metadata={"models": names, "service": self.name, "local": True},
        )

    async def list_models(self) -> list[dict[str, Any]]:
        """Return the locally installed models, or an empty list on failure."""

        try:
            return await self._fetch_models()
        except AdapterError as exc:
            logger.warning("Failed to list Ollama models", extra={"error": exc.reason})
            return []

    async def pull_model(self, model_name: str) -> bool:
        """Ask the daemon to download ``model_name``; ``True`` on success."""

        try:
            await self._request(
                "POST",
                f"{self._base_url}/api/pull",
                json_body={"name": model_name, "stream": False},
                headers={"Content-Type": "application/json"},
            )
        except AdapterError as exc:
            logger.warning("Failed to pull Ollama model", extra={"model": model_name, "error": exc.reason})
            return False
        return True

    async def _fetch_models(self) -> list[dict[str, Any]]:
        data = await self._request_json("GET", f"{self._base_url}/api/tags")
        models = data.get("models") if isinstance(data, dict) else None
        return list(models) if isinstance(models, list) else []


__all__ = ["OllamaBackend"]
