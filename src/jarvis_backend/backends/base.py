"""Core backend interfaces and request/response models.

Every AI vendor is wrapped by exactly one :class:`ChatBackend` subclass.  The
orchestrator only ever sees the types defined here: adapters translate their
vendor's wire format and failure modes into :class:`ChatResult`,
:class:`HealthStatus`, :class:`~jarvis_backend.errors.BackendUnavailable` and
:class:`~jarvis_backend.errors.BackendError`.
"""

from __future__ import annotations

import abc
import json
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

import anyio
import httpx

from jarvis_backend.errors import AdapterError, BackendError, BackendUnavailable, ValidationError


logger = logging.getLogger(__name__)


VALID_ROLES: Final[frozenset[str]] = frozenset({"system", "user", "assistant"})
_BACKOFF_SECONDS: Final[tuple[float, ...]] = (0.1, 0.25, 0.5)


@dataclass(frozen=True)
class ChatMessage:
    """One conversational turn."""

    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise ValidationError(
                code="invalid_role",
                message=f"Unsupported message role '{self.role}'.",
            )

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        return cls(role=str(payload.get("role", "")), content=str(payload.get("content", "")))

    def as_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatOptions:
    """Per-call overrides; unset fields fall back to the backend defaults."""

    preferred_service: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    json_mode: bool = False


@dataclass(frozen=True)
class ChatResult:
    """Successful chat completion."""

    text: str
    backend: str
    model: str | None = None
    usage: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class Sentiment:
    """Sentiment label and confidence for a piece of text."""

    label: str
    score: float

    def as_dict(self) -> dict[str, Any]:
        return {"label": self.label, "score": self.score}


NEUTRAL_SENTIMENT: Final[Sentiment] = Sentiment(label="NEUTRAL", score=0.5)


@dataclass(frozen=True)
class HealthStatus:
    """Outcome of a backend health probe."""

    available: bool
    detail: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"available": self.available}
        if self.detail is not None:
            payload["detail"] = self.detail
        payload.update(self.metadata)
        return payload


@dataclass(frozen=True)
class BackendDescriptor:
    """Immutable identity and configuration of one backend."""

    name: str
    base_url: str
    model: str
    api_key: str | None = None
    requires_api_key: bool = True
    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 1.0
    timeout: float = 30.0
    max_retries: int = 2

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or not self.requires_api_key


class ChatBackend(abc.ABC):
    """Uniform ``chat``/``health`` contract over one concrete AI backend.

    Subclasses implement :meth:`_chat` and :meth:`_probe`.  The public
    methods enforce the shared rules: an unconfigured backend fails before
    any network I/O, and :meth:`health` never raises.
    """

    def __init__(self, descriptor: BackendDescriptor, *, client: httpx.AsyncClient | None = None) -> None:
        self.descriptor = descriptor
        self._client = client

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def configured(self) -> bool:
        return self.descriptor.configured

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> ChatResult:
        self._ensure_configured()
        return await self._chat(list(messages), options or ChatOptions())

    async def health(self) -> HealthStatus:
        if not self.configured:
            return HealthStatus(available=False, detail="API key not configured")
        try:
            return await self._probe()
        except AdapterError as exc:
            return HealthStatus(available=False, detail=exc.reason)
        except Exception as exc:
            logger.warning(
                "Health probe raised unexpectedly",
                extra={"backend": self.name, "error": str(exc)},
            )
            return HealthStatus(available=False, detail=str(exc) or exc.__class__.__name__)

    @abc.abstractmethod
    async def _chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResult:
        """Perform the vendor call for an already-validated request."""

    @abc.abstractmethod
    async def _probe(self) -> HealthStatus:
        """Perform a low-cost availability check."""

    def _ensure_configured(self) -> None:
        if not self.configured:
            raise BackendUnavailable(self.name, f"{self.name} API key not configured")

    def _auth_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.descriptor.api_key:
            headers["Authorization"] = f"Bearer {self.descriptor.api_key}"
        return headers

    def _sampling(self, options: ChatOptions) -> tuple[float, int, float]:
        descriptor = self.descriptor
        temperature = options.temperature if options.temperature is not None else descriptor.temperature
        max_tokens = options.max_tokens if options.max_tokens is not None else descriptor.max_tokens
        top_p = options.top_p if options.top_p is not None else descriptor.top_p
        return temperature, max_tokens, top_p

    def _resolve_client(self) -> tuple[httpx.AsyncClient, Callable[[], Awaitable[None]]]:
        if self._client is not None:
            async def _noop() -> None:
                return None

            return self._client, _noop

        client = httpx.AsyncClient(timeout=self.descriptor.timeout)

        async def _cleanup() -> None:
            await client.aclose()

        return client, _cleanup

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any | None = None,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request, retrying rate limits, 5xx and connection errors."""

        client, cleanup = self._resolve_client()
        attempts = max(1, self.descriptor.max_retries + 1)
        last_error: BackendError | None = None

        try:
            for attempt in range(1, attempts + 1):
                logger.debug(
                    "Calling backend endpoint",
                    extra={"backend": self.name, "url": url, "attempt": attempt},
                )
                try:
                    response = await client.request(
                        method,
                        url,
                        json=json_body,
                        content=content,
                        headers=dict(headers or {}),
                        timeout=self.descriptor.timeout,
                    )
                    response.raise_for_status()
                    return response
                except httpx.HTTPStatusError as exc:
                    status_code = exc.response.status_code
                    last_error = BackendError(
                        self.name,
                        _build_http_error_detail(self.name, exc),
                        status_code=status_code,
                    )
                    logger.warning(
                        "HTTP error from backend",
                        extra={"backend": self.name, "status_code": status_code, "attempt": attempt},
                    )
                    if status_code != 429 and status_code < 500:
                        raise last_error from exc
                except (httpx.ConnectError, httpx.TimeoutException) as exc:
                    last_error = BackendError(self.name, f"Connection issue: {exc!s}")
                    logger.warning(
                        "Connection issue contacting backend",
                        extra={"backend": self.name, "attempt": attempt, "error": str(exc)},
                    )
                except httpx.HTTPError as exc:
                    raise BackendError(self.name, f"Request error: {exc!s}") from exc

                if attempt < attempts:
                    await _sleep(attempt)
        finally:
            await cleanup()

        raise last_error or BackendError(self.name, "No response received")

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        json_body: Any | None = None,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self._request(method, url, json_body=json_body, content=content, headers=headers)
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise BackendError(self.name, f"Failed to decode JSON response: {exc}") from exc

    def _malformed(self, payload: Any) -> BackendError:
        snippet = json.dumps(payload, default=str)[:200]
        logger.error("Unexpected payload structure", extra={"backend": self.name, "payload": snippet})
        return BackendError(self.name, f"Unexpected JSON payload: {snippet}")


def _build_http_error_detail(backend: str, exc: httpx.HTTPStatusError) -> str:
    response = exc.response
    message: str | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping):
            message = error.get("message")
        elif isinstance(error, str):
            message = error
        message = message or body.get("message")
    if not message:
        message = response.reason_phrase or (response.text[:200] if response.text else None)
    return f"{backend} API error {response.status_code}: {message or 'unknown error'}"


async def _sleep(attempt: int) -> None:
    backoff_index = min(attempt - 1, len(_BACKOFF_SECONDS) - 1)
    await anyio.sleep(_BACKOFF_SECONDS[backoff_index])


__all__ = [
    "BackendDescriptor",
    "ChatBackend",
    "ChatMessage",
    "ChatOptions",
    "ChatResult",
    "HealthStatus",
    "NEUTRAL_SENTIMENT",
    "Sentiment",
    "VALID_ROLES",
]
