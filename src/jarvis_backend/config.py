"""Environment driven configuration."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Final

from dotenv import load_dotenv

from jarvis_backend.backends.base import BackendDescriptor
from jarvis_backend.backends.huggingface import DEFAULT_INFERENCE_URL


logger = logging.getLogger(__name__)


DEFAULT_PRIORITY: Final[tuple[str, ...]] = ("groq", "grok", "huggingface", "ollama")
DEFAULT_MAX_MESSAGES: Final[int] = 20
DEFAULT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_MAX_RETRIES: Final[int] = 2
DEFAULT_PORT: Final[int] = 3000

# name -> (env prefix, default base URL, default model, needs credential)
_BACKEND_DEFAULTS: Final[dict[str, tuple[str, str, str, bool]]] = {
    "groq": ("GROQ", "https://api.groq.com/openai/v1", "mixtral-8x7b-32768", True),
    "grok": ("GROK", "https://api.x.ai/v1", "grok-beta", True),
    "huggingface": ("HUGGINGFACE", "https://router.huggingface.co/v1", "mistralai/Mistral-7B-Instruct-v0.3", True),
    "ollama": ("OLLAMA", "http://localhost:11434", "mistral", False),
    "cohere": ("COHERE", "https://api.cohere.com", "command-r", True),
}
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})


def normalise_service_name(name: object) -> str:
    return str(name).strip().lower()


def parse_priority(
    raw: str | Iterable[str] | None,
    default: tuple[str, ...] = DEFAULT_PRIORITY,
) -> tuple[str, ...]:
    """Normalise a priority list: trimmed, lower-cased, first occurrence wins.

    ``default`` is returned when ``raw`` is missing or holds no usable names.
    """

    if raw is None:
        return default
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    seen: dict[str, None] = {}
    for item in items:
        name = normalise_service_name(item)
        if name:
            seen.setdefault(name, None)
    return tuple(seen) or default


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid numeric setting; using default", extra={"key": key, "value": raw})
        return default


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer setting; using default", extra={"key": key, "value": raw})
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration resolved once at start-up."""

    backends: Mapping[str, BackendDescriptor]
    priority: tuple[str, ...] = DEFAULT_PRIORITY
    attempt_timeout: float = DEFAULT_TIMEOUT_SECONDS
    max_messages: int = DEFAULT_MAX_MESSAGES
    intent_service: str | None = None
    parallel_intent: bool = False
    huggingface_inference_url: str = DEFAULT_INFERENCE_URL
    username: str = "the user"
    port: int = DEFAULT_PORT
    cors_origins: tuple[str, ...] = ("http://localhost:5173",)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, *, load_env_file: bool = True) -> "Settings":
        """Build settings from ``env`` (defaults to ``os.environ`` after loading ``.env``)."""

        if env is None:
            if load_env_file:
                load_dotenv()
            env = dict(os.environ)

        timeout = _float(env, "BACKEND_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        if timeout <= 0:
            logger.warning("BACKEND_TIMEOUT_SECONDS must be positive; using default")
            timeout = DEFAULT_TIMEOUT_SECONDS
        retries = max(_int(env, "BACKEND_MAX_RETRIES", DEFAULT_MAX_RETRIES), 0)

        backends: dict[str, BackendDescriptor] = {}
        for name, (prefix, base_url, model, needs_key) in _BACKEND_DEFAULTS.items():
            backends[name] = BackendDescriptor(
                name=name,
                base_url=env.get(f"{prefix}_BASE_URL") or base_url,
                model=env.get(f"{prefix}_MODEL") or model,
                api_key=(env.get(f"{prefix}_API_KEY") or "").strip() or None,
                requires_api_key=needs_key,
                top_p=0.9 if name == "ollama" else 1.0,
                timeout=timeout,
                max_retries=retries,
            )

        max_messages = _int(env, "CONVERSATION_MAX_MESSAGES", DEFAULT_MAX_MESSAGES)
        if max_messages < 1:
            logger.warning("CONVERSATION_MAX_MESSAGES must be positive; using default")
            max_messages = DEFAULT_MAX_MESSAGES

        port = _int(env, "PORT", DEFAULT_PORT)
        if not 0 < port < 65536:
            logger.warning("PORT must be between 1 and 65535; using default")
            port = DEFAULT_PORT

        return cls(
            backends=backends,
            priority=parse_priority(env.get("AI_SERVICE_PRIORITY")),
            attempt_timeout=timeout,
            max_messages=max_messages,
            intent_service=(env.get("INTENT_SERVICE") or "").strip().lower() or None,
            parallel_intent=env.get("ENRICHMENT_PARALLEL_INTENT", "").strip().lower() in _TRUTHY,
            huggingface_inference_url=env.get("HUGGINGFACE_INFERENCE_URL") or DEFAULT_INFERENCE_URL,
            username=env.get("ASSISTANT_USERNAME") or env.get("USERNAME") or "the user",
            port=port,
            cors_origins=tuple(
                origin.strip()
                for origin in env.get("CORS_ORIGINS", "http://localhost:5173").split(",")
                if origin.strip()
            ),
        )

    def configured_services(self) -> dict[str, bool]:
        return {name: descriptor.configured for name, descriptor in self.backends.items()}


__all__ = ["DEFAULT_PRIORITY", "Settings", "normalise_service_name", "parse_priority"]
