"""Self-diagnostics and configuration validation helpers."""

from __future__ import annotations

import contextlib
import os
from dataclasses import asdict, dataclass
from typing import Iterable, Mapping, MutableMapping, Sequence

from jarvis_backend.config import DEFAULT_PRIORITY, Settings


@dataclass(frozen=True)
class DiagnosticCheck:
    """Represents the outcome of an individual diagnostic step."""

    name: str
    status: str
    detail: str
    remediation: str | None = None

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class DiagnosticsReport:
    """Aggregated configuration diagnostics."""

    status: str
    checks: Sequence[DiagnosticCheck]

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status,
            "checks": [check.to_dict() for check in self.checks],
        }


_STATUS_ORDER = {"ok": 0, "warning": 1, "error": 2}
_NUMERIC_SETTINGS = (
    ("BACKEND_TIMEOUT_SECONDS", float),
    ("BACKEND_MAX_RETRIES", int),
    ("CONVERSATION_MAX_MESSAGES", int),
    ("PORT", int),
)


@contextlib.contextmanager
def _temporary_env(overrides: Mapping[str, str] | None) -> Iterable[None]:
    if not overrides:
        yield
        return

    original: MutableMapping[str, str | None] = {}
    for key, value in overrides.items():
        original[key] = os.environ.get(key)
        os.environ[key] = value
    try:
        yield
    finally:
        for key, previous in original.items():
            if previous is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = previous


def _combine_status(current: str, new: str) -> str:
    if _STATUS_ORDER.get(new, 0) > _STATUS_ORDER.get(current, 0):
        return new
    return current


def _check_credentials(settings: Settings) -> DiagnosticCheck:
    configured = [name for name, descriptor in settings.backends.items() if descriptor.configured]
    missing = [name for name in settings.priority if name in settings.backends and name not in configured]

    if not configured:
        return DiagnosticCheck(
            name="backend_credentials",
            status="error",
            detail="No AI backend is configured; every chat request will fail.",
            remediation="Set at least one of GROQ_API_KEY, GROK_API_KEY or HUGGINGFACE_API_KEY, or run Ollama locally.",
        )
    if missing:
        return DiagnosticCheck(
            name="backend_credentials",
            status="warning",
            detail=f"Prioritised backends without credentials: {', '.join(missing)}.",
            remediation="Provide the matching *_API_KEY variables or drop them from AI_SERVICE_PRIORITY.",
        )
    return DiagnosticCheck(
        name="backend_credentials",
        status="ok",
        detail=f"Configured backends: {', '.join(configured)}.",
    )


def _check_priority(settings: Settings, env: Mapping[str, str]) -> DiagnosticCheck:
    unknown = [name for name in settings.priority if name not in settings.backends]
    if unknown:
        return DiagnosticCheck(
            name="service_priority",
            status="warning",
            detail=f"AI_SERVICE_PRIORITY names unknown backends: {', '.join(unknown)}; they will be skipped.",
            remediation=f"Use names from: {', '.join(settings.backends)}.",
        )
    if not (env.get("AI_SERVICE_PRIORITY") or "").strip():
        return DiagnosticCheck(
            name="service_priority",
            status="ok",
            detail=f"Using default priority {','.join(DEFAULT_PRIORITY)}.",
        )
    return DiagnosticCheck(
        name="service_priority",
        status="ok",
        detail=f"Priority order: {','.join(settings.priority)}.",
    )


def _check_intent_service(settings: Settings) -> DiagnosticCheck:
    name = settings.intent_service or (settings.priority[0] if settings.priority else None)
    descriptor = settings.backends.get(name) if name else None
    if descriptor is None:
        return DiagnosticCheck(
            name="intent_service",
            status="warning",
            detail=f"Intent backend '{name}' is not registered; intents default to 'general'.",
            remediation="Set INTENT_SERVICE to a registered backend name.",
        )
    if not descriptor.configured:
        return DiagnosticCheck(
            name="intent_service",
            status="warning",
            detail=f"Intent backend '{name}' has no credential; intents default to 'general'.",
        )
    return DiagnosticCheck(
        name="intent_service",
        status="ok",
        detail=f"Intent classification runs on '{name}'.",
    )


def _check_numeric_settings(env: Mapping[str, str]) -> DiagnosticCheck:
    invalid: list[str] = []
    for key, parser in _NUMERIC_SETTINGS:
        raw = (env.get(key) or "").strip()
        if not raw:
            continue
        try:
            value = parser(raw)
        except ValueError:
            invalid.append(key)
            continue
        if value <= 0 and key != "BACKEND_MAX_RETRIES":
            invalid.append(key)

    if invalid:
        return DiagnosticCheck(
            name="numeric_settings",
            status="error",
            detail=f"Invalid values for: {', '.join(invalid)}; defaults will be used.",
            remediation="Use positive numbers for timeouts, history size and port.",
        )
    return DiagnosticCheck(
        name="numeric_settings",
        status="ok",
        detail="Numeric settings are valid.",
    )


def run_diagnostics(*, overrides: Mapping[str, str] | None = None) -> DiagnosticsReport:
    """Evaluate configuration without contacting any backend.

    Parameters
    ----------
    overrides:
        Optional environment overrides applied only while the checks run.
    """

    with _temporary_env(overrides):
        env = dict(os.environ)
        settings = Settings.from_env(env)
        checks = [
            _check_credentials(settings),
            _check_priority(settings, env),
            _check_intent_service(settings),
            _check_numeric_settings(env),
        ]

    status = "ok"
    for check in checks:
        status = _combine_status(status, check.status)

    return DiagnosticsReport(status=status, checks=checks)


__all__ = [
    "DiagnosticCheck",
    "DiagnosticsReport",
    "run_diagnostics",
]
