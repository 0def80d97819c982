from __future__ import annotations

import json

import httpx
import pytest

from jarvis_backend.backends import ChatMessage, ChatOptions, OllamaBackend
from jarvis_backend.errors import BackendError


pytestmark = pytest.mark.anyio


@pytest.fixture
def backend(client, make_descriptor) -> OllamaBackend:
    descriptor = make_descriptor(
        name="ollama",
        base_url="http://localhost:11434/",
        model="mistral",
        api_key=None,
        requires_api_key=False,
        max_retries=0,
    )
    return OllamaBackend(descriptor, client=client)


async def test_chat_uses_native_endpoint(backend, recorder) -> None:
    recorder.queue(
        httpx.Response(
            200,
            json={
                "model": "mistral",
                "message": {"role": "assistant", "content": " Local answer "},
                "prompt_eval_count": 12,
                "eval_count": 4,
            },
        )
    )

    result = await backend.chat([ChatMessage(role="user", content="Hi")], ChatOptions(json_mode=True))

    assert result.text == "Local answer"
    assert result.backend == "ollama"
    assert result.usage == {"prompt_tokens": 12, "completion_tokens": 4}
    request = recorder.requests[0]
    assert str(request.url) == "http://localhost:11434/api/chat"
    assert "Authorization" not in request.headers
    body = json.loads(request.content)
    assert body["stream"] is False
    assert body["format"] == "json"
    assert body["options"]["num_predict"] == 1024


async def test_chat_rejects_missing_message(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json={"done": True}))

    with pytest.raises(BackendError):
        await backend.chat([ChatMessage(role="user", content="Hi")])


async def test_health_requires_installed_models(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json={"models": [{"name": "mistral:latest"}, {"name": "llama3"}]}))

    status = await backend.health()

    assert status.available is True
    assert status.metadata["models"] == ["mistral:latest", "llama3"]
    assert status.metadata["local"] is True
    assert recorder.requests[0].method == "GET"


async def test_health_without_models_is_unavailable(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json={"models": []}))

    status = await backend.health()

    assert status.available is False
    assert status.detail == "No Ollama models installed"


async def test_health_when_daemon_down(backend, recorder) -> None:
    recorder.queue(httpx.ConnectError("connection refused"))

    status = await backend.health()

    assert status.available is False
    assert "Ollama not installed or not running" in (status.detail or "")


async def test_list_models_returns_empty_on_failure(backend, recorder) -> None:
    recorder.queue(httpx.Response(500, text="boom"))

    assert await backend.list_models() == []


async def test_pull_model(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json={"status": "success"}), httpx.Response(404, json={"error": "not found"}))

    assert await backend.pull_model("mistral") is True
    assert await backend.pull_model("missing") is False
    assert json.loads(recorder.requests[0].content) == {"name": "mistral", "stream": False}
    assert str(recorder.requests[0].url).endswith("/api/pull")
