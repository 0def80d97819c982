"""Hugging Face backend: router chat plus hosted inference models."""

from __future__ import annotations

import logging
from typing import Any, Final

import httpx

from jarvis_backend.errors import AdapterError, BackendError

from .base import BackendDescriptor, Sentiment
from .openai_compat import OpenAICompatibleBackend


logger = logging.getLogger(__name__)


DEFAULT_INFERENCE_URL: Final[str] = "https://router.huggingface.co/hf-inference/models"
SENTIMENT_MODEL: Final[str] = "distilbert-base-uncased-finetuned-sst-2-english"
IMAGE_MODEL: Final[str] = "stabilityai/stable-diffusion-xl-base-1.0"
QA_MODEL: Final[str] = "deepset/roberta-base-squad2"
TTS_MODEL: Final[str] = "facebook/fastspeech2-en-ljspeech"
DETECTION_MODEL: Final[str] = "facebook/detr-resnet-50"

UNANSWERED: Final[dict[str, Any]] = {"answer": "Unable to answer", "score": 0.0}


class HuggingFaceBackend(OpenAICompatibleBackend):
    """Chat through the OpenAI-compatible router; sentiment and images via model endpoints."""

    def __init__(
        self,
        descriptor: BackendDescriptor,
        *,
        inference_url: str = DEFAULT_INFERENCE_URL,
        sentiment_model: str = SENTIMENT_MODEL,
        image_model: str = IMAGE_MODEL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(descriptor, client=client)
        self._inference_url = inference_url.rstrip("/")
        self._sentiment_model = sentiment_model
        self._image_model = image_model

    async def analyze_sentiment(self, text: str) -> Sentiment:
        """Classify ``text``; returns the highest scoring label."""

        self._ensure_configured()
        data = await self._request_json(
            "POST",
            f"{self._inference_url}/{self._sentiment_model}",
            json_body={"inputs": text},
            headers=self._auth_headers(),
        )
        candidates = _flatten_labels(data)
        if not candidates:
            raise self._malformed(data)
        best = max(candidates, key=lambda item: item[1])
        return Sentiment(label=best[0], score=best[1])

    async def generate_image(self, prompt: str) -> bytes:
        """Render ``prompt`` with the configured diffusion model."""

        self._ensure_configured()
        headers = {**self._auth_headers(), "Accept": "image/png"}
        logger.info("Requesting image generation", extra={"backend": self.name, "model": self._image_model})
        response = await self._request(
            "POST",
            f"{self._inference_url}/{self._image_model}",
            json_body={"inputs": prompt},
            headers=headers,
        )
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/") or not response.content:
            raise BackendError(self.name, f"Expected image payload, received '{content_type or 'unknown'}'")
        return response.content

    async def answer_question(self, question: str, context: str) -> dict[str, Any]:
        """Extractive QA over ``context``; degrades to an "Unable to answer" result."""

        try:
            self._ensure_configured()
            data = await self._request_json(
                "POST",
                f"{self._inference_url}/{QA_MODEL}",
                json_body={"inputs": {"question": question, "context": context}},
                headers=self._auth_headers(),
            )
        except AdapterError as exc:
            logger.warning("Question answering failed", extra={"backend": self.name, "error": exc.reason})
            return dict(UNANSWERED)

        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict) or not isinstance(data.get("answer"), str):
            logger.warning("Unexpected question answering payload", extra={"backend": self.name})
            return dict(UNANSWERED)
        score = data.get("score")
        return {"answer": data["answer"], "score": float(score) if isinstance(score, (int, float)) else 0.0}

    async def text_to_speech(self, text: str) -> bytes:
        """Synthesize ``text`` to audio bytes; failures raise :class:`AdapterError`."""

        self._ensure_configured()
        response = await self._request(
            "POST",
            f"{self._inference_url}/{TTS_MODEL}",
            json_body={"inputs": text},
            headers=self._auth_headers(),
        )
        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("audio/") or not response.content:
            raise BackendError(self.name, f"Failed to generate speech: received '{content_type or 'unknown'}'")
        return response.content

    async def detect_objects(self, image: bytes) -> list[dict[str, Any]]:
        """Run object detection on raw image bytes; an empty list on any failure."""

        headers = {**self._auth_headers(), "Content-Type": "application/octet-stream"}
        try:
            self._ensure_configured()
            data = await self._request_json(
                "POST",
                f"{self._inference_url}/{DETECTION_MODEL}",
                content=image,
                headers=headers,
            )
        except AdapterError as exc:
            logger.warning("Object detection failed", extra={"backend": self.name, "error": exc.reason})
            return []
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]


def _flatten_labels(data: Any) -> list[tuple[str, float]]:
    # The inference API answers either [[{label, score}, ...]] or [{label, score}, ...].
    if isinstance(data, list) and data and isinstance(data[0], list):
        data = data[0]
    if not isinstance(data, list):
        return []
    labels: list[tuple[str, float]] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        label = item.get("label")
        score = item.get("score")
        if isinstance(label, str) and isinstance(score, (int, float)):
            labels.append((label, float(score)))
    return labels


__all__ = [
    "DEFAULT_INFERENCE_URL",
    "DETECTION_MODEL",
    "HuggingFaceBackend",
    "IMAGE_MODEL",
    "QA_MODEL",
    "SENTIMENT_MODEL",
    "TTS_MODEL",
]
