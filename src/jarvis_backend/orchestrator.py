"""Priority/fallback orchestration across interchangeable chat backends."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import anyio

from jarvis_backend.backends.base import ChatBackend, ChatMessage, ChatOptions, ChatResult
from jarvis_backend.config import normalise_service_name, parse_priority
from jarvis_backend.errors import AdapterError, AllBackendsUnavailable, BackendError
from jarvis_backend.metrics import BACKEND_ATTEMPTS, BACKEND_LATENCY


logger = logging.getLogger(__name__)


@dataclass
class BackendStatus:
    """Last known outcome of calling one backend."""

    available: bool
    last_attempt: float
    last_error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "available": self.available,
            "lastAttempt": datetime.fromtimestamp(self.last_attempt, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
        }
        if self.last_error is not None:
            payload["error"] = self.last_error
        return payload


class Orchestrator:
    """Resolve one logical chat request into a single attempt sequence.

    The preferred backend (explicit override or head of the priority list) is
    tried first, then the remaining priority entries in order.  The first
    success is returned; if every attempt fails a single
    :class:`AllBackendsUnavailable` is raised.  Attempts are sequential and
    each one is bounded by ``attempt_timeout`` seconds.

    The status map is observational only: a backend that failed last time is
    still attempted on the next call.
    """

    def __init__(
        self,
        backends: Mapping[str, ChatBackend] | Iterable[ChatBackend],
        *,
        priority: Sequence[str] | None = None,
        attempt_timeout: float | None = 30.0,
    ) -> None:
        # Registry keys, priority entries and overrides share one case-folded form.
        pairs = backends.items() if isinstance(backends, Mapping) else ((b.name, b) for b in backends)
        self._backends: dict[str, ChatBackend] = {
            normalise_service_name(name): backend for name, backend in pairs
        }
        self._priority: tuple[str, ...] = parse_priority(priority, default=tuple(self._backends))
        self._attempt_timeout = attempt_timeout
        self._status: dict[str, BackendStatus] = {}

    @property
    def backends(self) -> Mapping[str, ChatBackend]:
        return dict(self._backends)

    @property
    def service_priority(self) -> tuple[str, ...]:
        return self._priority

    def set_service_priority(self, priority: Sequence[str]) -> tuple[str, ...]:
        """Replace the priority list used by subsequent calls.

        An empty list restores registration order.
        """

        self._priority = parse_priority(priority, default=tuple(self._backends))
        logger.info("Service priority updated", extra={"priority": list(self._priority)})
        return self._priority

    def get_service_status(self) -> dict[str, dict[str, Any]]:
        return {name: status.as_dict() for name, status in self._status.items()}

    async def get_response(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> ChatResult:
        options = options or ChatOptions()
        priority = self._priority
        errors: dict[str, str] = {}

        preferred = normalise_service_name(options.preferred_service) if options.preferred_service else None
        if preferred not in self._backends:
            if preferred:
                logger.warning("Preferred service is not registered", extra={"service": preferred})
            preferred = priority[0] if priority else None

        candidates: list[str] = []
        if preferred in self._backends:
            candidates.append(preferred)
        candidates.extend(
            name for name in priority if name != preferred and name in self._backends
        )

        for index, name in enumerate(candidates):
            logger.info(
                "Falling back to backend" if index else "Trying backend",
                extra={"backend": name, "attempt": index + 1},
            )
            try:
                result = await self._attempt(self._backends[name], messages, options)
            except Exception as exc:
                reason = exc.reason if isinstance(exc, AdapterError) else str(exc) or exc.__class__.__name__
                errors[name] = reason
                self._status[name] = BackendStatus(available=False, last_attempt=time.time(), last_error=reason)
                logger.warning("Backend failed", extra={"backend": name, "error": reason})
                continue

            self._status[name] = BackendStatus(available=True, last_attempt=time.time())
            return result

        logger.error("All backends failed", extra={"errors": errors})
        raise AllBackendsUnavailable(errors)

    async def _attempt(
        self,
        backend: ChatBackend,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
    ) -> ChatResult:
        start = time.perf_counter()
        outcome = "error"
        try:
            with anyio.fail_after(self._attempt_timeout):
                result = await backend.chat(messages, options)
            outcome = "success"
            return result
        except TimeoutError as exc:
            outcome = "timeout"
            raise BackendError(backend.name, f"timed out after {self._attempt_timeout}s") from exc
        finally:
            BACKEND_ATTEMPTS.labels(backend=backend.name, outcome=outcome).inc()
            BACKEND_LATENCY.labels(backend=backend.name).observe(time.perf_counter() - start)

    async def check_all_services(self) -> dict[str, dict[str, Any]]:
        """Probe every registered backend; individual failures never propagate."""

        report: dict[str, dict[str, Any]] = {name: {"available": False} for name in self._backends}

        async def _probe(name: str, backend: ChatBackend) -> None:
            try:
                status = await backend.health()
            except Exception as exc:
                report[name] = {"available": False, "error": str(exc) or exc.__class__.__name__}
                logger.warning("Health probe failed", extra={"backend": name, "error": str(exc)})
            else:
                report[name] = status.as_dict()

        async with anyio.create_task_group() as tg:
            for name, backend in self._backends.items():
                tg.start_soon(_probe, name, backend)

        return report


__all__ = ["BackendStatus", "Orchestrator"]
