from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from jarvis_backend.backends.base import ChatMessage
from jarvis_backend.backends.cohere import SUMMARY_LENGTHS
from jarvis_backend.context import AppContext, build_context
from jarvis_backend.conversation import DEFAULT_SESSION_ID
from jarvis_backend.errors import AdapterError, AllBackendsUnavailable, SessionNotFound, ValidationError
from jarvis_backend.metrics import (
    CONTENT_TYPE_LATEST,
    IN_FLIGHT_GAUGE,
    REQUEST_COUNTER,
    REQUEST_ERRORS,
    REQUEST_LATENCY,
    generate_latest,
)


logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    """Emit JSON-formatted log records with structured extras."""

    _STANDARD_ATTRS = {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        structured: dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, self.datefmt),
        }

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS and not key.startswith("_")
        }
        if extras:
            structured["extra"] = extras

        if record.exc_info:
            structured["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(structured, default=str)


def configure_logging() -> None:
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    logging.getLogger("uvicorn").setLevel(os.environ.get("UVICORN_LOG_LEVEL", log_level))
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def _read_json(request: Request) -> Mapping[str, Any]:
    """Return the JSON object body, or an empty mapping when absent or malformed."""

    body = await request.body()
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("Malformed JSON payload", extra={"path": request.url.path})
        return {}
    return payload if isinstance(payload, Mapping) else {}


def _require_text(payload: Mapping[str, Any], key: str, message: str) -> str:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(code=f"missing_{key}", message=message)
    if not isinstance(value, str):
        raise ValidationError(code=f"invalid_{key}", message=f"'{key}' must be a string.")
    return value


def _context(request: Request) -> AppContext:
    return request.app.state.context


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        method = request.method
        IN_FLIGHT_GAUGE.inc()

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start_time
            path = _route_path(request)
            REQUEST_COUNTER.labels(method=method, endpoint=path, status=500).inc()
            REQUEST_ERRORS.labels(method=method, endpoint=path, status=500).inc()
            REQUEST_LATENCY.labels(method=method, endpoint=path).observe(duration)
            raise
        finally:
            IN_FLIGHT_GAUGE.dec()

        duration = time.perf_counter() - start_time
        path = _route_path(request)
        status_code = response.status_code
        REQUEST_COUNTER.labels(method=method, endpoint=path, status=status_code).inc()
        if status_code >= 400:
            REQUEST_ERRORS.labels(method=method, endpoint=path, status=status_code).inc()
        REQUEST_LATENCY.labels(method=method, endpoint=path).observe(duration)
        return response


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def create_app(context: AppContext | None = None) -> FastAPI:
    """Build the HTTP application around ``context`` (built from the environment if omitted)."""

    context = context or build_context()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await context.aclose()

    app = FastAPI(title="Jarvis Backend", lifespan=lifespan)
    app.state.context = context
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(context.settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def _validation_error(_request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning("Request validation failed", extra={"error_code": exc.code})
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(SessionNotFound)
    async def _session_not_found(_request: Request, exc: SessionNotFound) -> JSONResponse:
        return JSONResponse({"error": "Session not found"}, status_code=status.HTTP_404_NOT_FOUND)

    @app.post("/api/ai/chat")
    async def chat(request: Request) -> JSONResponse:
        ctx = _context(request)
        payload = await _read_json(request)
        message = _require_text(payload, "message", "Message is required")
        session_id = str(payload.get("sessionId") or DEFAULT_SESSION_ID)
        enhance = bool(payload.get("enhance", False))

        history = ctx.conversations.get(session_id)
        try:
            result = await ctx.pipeline.respond(message, history, enhance=enhance)
        except AllBackendsUnavailable as exc:
            logger.error("Chat failed on every backend", extra={"session_id": session_id})
            return JSONResponse(
                {"error": "Failed to process chat message", "details": str(exc)},
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        ctx.conversations.append(
            session_id,
            ChatMessage(role="user", content=message),
            ChatMessage(role="assistant", content=result.text),
        )
        logger.info(
            "Chat response served",
            extra={"session_id": session_id, "backend": result.chat.backend, "intent": result.intent.type},
        )
        return JSONResponse(
            {
                "response": result.text,
                "intent": result.intent.as_dict(),
                "sentiment": result.sentiment.as_dict(),
                "timestamp": _timestamp(),
            }
        )

    @app.post("/api/ai/summarize")
    async def summarize(request: Request) -> JSONResponse:
        ctx = _context(request)
        payload = await _read_json(request)
        text = _require_text(payload, "text", "Text is required")
        length = str(payload.get("length") or "medium")
        if length not in SUMMARY_LENGTHS:
            raise ValidationError(
                code="invalid_length",
                message=f"Length must be one of: {', '.join(SUMMARY_LENGTHS)}",
            )

        summary = await ctx.pipeline.summarize(text, length)
        return JSONResponse(
            {
                "summary": summary,
                "originalLength": len(text),
                "summaryLength": len(summary),
                "timestamp": _timestamp(),
            }
        )

    @app.post("/api/ai/generate-image")
    async def generate_image(request: Request) -> Response:
        ctx = _context(request)
        payload = await _read_json(request)
        prompt = _require_text(payload, "prompt", "Prompt is required")

        if ctx.image_generator is None:
            return JSONResponse(
                {"error": "Failed to generate image", "details": "No image backend is registered."},
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        try:
            image = await ctx.image_generator.generate_image(prompt)
        except AdapterError as exc:
            logger.error("Image generation failed", extra={"error": exc.reason})
            return JSONResponse(
                {"error": "Failed to generate image", "details": exc.reason},
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response(content=image, media_type="image/png")

    @app.delete("/api/ai/history/{session_id}")
    async def clear_history(session_id: str, request: Request) -> JSONResponse:
        _context(request).conversations.delete(session_id)
        return JSONResponse({"message": "History cleared", "sessionId": session_id})

    @app.get("/api/ai/history/{session_id}")
    async def get_history(session_id: str, request: Request) -> JSONResponse:
        history = _context(request).conversations.get(session_id)
        return JSONResponse(
            {
                "sessionId": session_id,
                "history": [entry.as_dict() for entry in history],
                "messageCount": len(history),
            }
        )

    @app.get("/api/ai/services")
    async def services(request: Request) -> JSONResponse:
        orchestrator = _context(request).orchestrator
        return JSONResponse(
            {
                "services": await orchestrator.check_all_services(),
                "status": orchestrator.get_service_status(),
                "priority": list(orchestrator.service_priority),
                "timestamp": _timestamp(),
            }
        )

    @app.put("/api/ai/services/priority")
    async def set_priority(request: Request) -> JSONResponse:
        payload = await _read_json(request)
        priority = payload.get("priority")
        if (
            not isinstance(priority, list)
            or not priority
            or not all(isinstance(name, str) and name.strip() for name in priority)
        ):
            raise ValidationError(
                code="invalid_priority",
                message="Priority must be a non-empty list of service names",
            )
        updated = _context(request).orchestrator.set_service_priority(priority)
        return JSONResponse({"priority": list(updated)})

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "timestamp": _timestamp(),
                "services": _context(request).settings.configured_services(),
            }
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    configure_logging()
    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run("jarvis_backend.server:create_app", factory=True, host="0.0.0.0", port=port, reload=False)
