from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from jarvis_backend.backends.base import BackendDescriptor


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _fast_sleep(attempt: int) -> None:  # pragma: no cover - trivial
        return None

    monkeypatch.setattr("jarvis_backend.backends.base._sleep", _fast_sleep)


class Recorder:
    """Scripted transport that records every request it serves."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._responses: list[Any] = []

    def queue(self, *responses: Any) -> None:
        self._responses.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError(f"Unexpected call to {request.url}")
        result = self._responses.pop(0)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(request)
        return result


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def client(recorder: Recorder) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder))


def _descriptor(name: str = "groq", **overrides: Any) -> BackendDescriptor:
    values: dict[str, Any] = {
        "name": name,
        "base_url": "https://api.example.com/v1",
        "model": "test-model",
        "api_key": "secret",
        "max_retries": 2,
    }
    values.update(overrides)
    return BackendDescriptor(**values)


@pytest.fixture
def make_descriptor() -> Callable[..., BackendDescriptor]:
    return _descriptor
