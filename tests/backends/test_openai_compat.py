from __future__ import annotations

import json

import httpx
import pytest

from jarvis_backend.backends import ChatMessage, ChatOptions, OpenAICompatibleBackend
from jarvis_backend.errors import BackendError, BackendUnavailable


pytestmark = pytest.mark.anyio


def _completion(text: str = "Hello there", *, model: str = "test-model") -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "model": model,
            "choices": [{"message": {"role": "assistant", "content": f"  {text}  "}}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 2},
        },
    )


async def test_chat_posts_openai_payload(client, recorder, make_descriptor) -> None:
    recorder.queue(_completion())
    backend = OpenAICompatibleBackend(make_descriptor(), client=client)

    result = await backend.chat(
        [ChatMessage(role="system", content="Be brief"), ChatMessage(role="user", content="Hi")],
        ChatOptions(temperature=0.2, max_tokens=50),
    )

    assert result.text == "Hello there"
    assert result.backend == "groq"
    assert result.model == "test-model"
    assert result.usage == {"prompt_tokens": 3, "completion_tokens": 2}

    request = recorder.requests[0]
    assert str(request.url) == "https://api.example.com/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["messages"] == [
        {"role": "system", "content": "Be brief"},
        {"role": "user", "content": "Hi"},
    ]
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 50
    assert "response_format" not in body


async def test_json_mode_requests_structured_output(client, recorder, make_descriptor) -> None:
    recorder.queue(_completion('{"type": "general"}'))
    backend = OpenAICompatibleBackend(make_descriptor(), client=client)

    await backend.chat([ChatMessage(role="user", content="Hi")], ChatOptions(json_mode=True))

    body = json.loads(recorder.requests[0].content)
    assert body["response_format"] == {"type": "json_object"}


async def test_unconfigured_backend_fails_before_network(client, recorder, make_descriptor) -> None:
    backend = OpenAICompatibleBackend(make_descriptor(api_key=None), client=client)

    with pytest.raises(BackendUnavailable) as exc_info:
        await backend.chat([ChatMessage(role="user", content="Hi")])

    assert "API key not configured" in exc_info.value.reason
    assert recorder.requests == []


async def test_retries_server_errors_then_succeeds(client, recorder, make_descriptor) -> None:
    recorder.queue(
        httpx.Response(503, json={"error": {"message": "overloaded"}}),
        httpx.Response(429, json={"error": "slow down"}),
        _completion("Recovered"),
    )
    backend = OpenAICompatibleBackend(make_descriptor(max_retries=2), client=client)

    result = await backend.chat([ChatMessage(role="user", content="Hi")])

    assert result.text == "Recovered"
    assert len(recorder.requests) == 3


async def test_client_errors_are_not_retried(client, recorder, make_descriptor) -> None:
    recorder.queue(httpx.Response(401, json={"error": {"message": "invalid api key"}}))
    backend = OpenAICompatibleBackend(make_descriptor(), client=client)

    with pytest.raises(BackendError) as exc_info:
        await backend.chat([ChatMessage(role="user", content="Hi")])

    assert exc_info.value.status_code == 401
    assert "invalid api key" in exc_info.value.reason
    assert len(recorder.requests) == 1


async def test_connection_errors_exhaust_retries(client, recorder, make_descriptor) -> None:
    recorder.queue(*(httpx.ConnectError("refused") for _ in range(3)))
    backend = OpenAICompatibleBackend(make_descriptor(max_retries=2), client=client)

    with pytest.raises(BackendError) as exc_info:
        await backend.chat([ChatMessage(role="user", content="Hi")])

    assert "Connection issue" in exc_info.value.reason
    assert len(recorder.requests) == 3


async def test_malformed_payload_is_backend_error(client, recorder, make_descriptor) -> None:
    recorder.queue(httpx.Response(200, json={"choices": []}))
    backend = OpenAICompatibleBackend(make_descriptor(), client=client)

    with pytest.raises(BackendError, match="Unexpected JSON payload"):
        await backend.chat([ChatMessage(role="user", content="Hi")])


async def test_health_uses_small_completion(client, recorder, make_descriptor) -> None:
    recorder.queue(_completion("ok"))
    backend = OpenAICompatibleBackend(make_descriptor(name="grok"), client=client)

    status = await backend.health()

    assert status.available is True
    assert status.metadata == {"model": "test-model", "service": "grok"}
    assert json.loads(recorder.requests[0].content)["max_tokens"] == 10


async def test_health_never_raises(client, recorder, make_descriptor) -> None:
    recorder.queue(httpx.Response(401, json={"error": "nope"}))
    backend = OpenAICompatibleBackend(make_descriptor(), client=client)

    status = await backend.health()

    assert status.available is False
    assert "401" in (status.detail or "")


async def test_health_reports_missing_key(client, recorder, make_descriptor) -> None:
    backend = OpenAICompatibleBackend(make_descriptor(api_key=""), client=client)

    status = await backend.health()

    assert status.as_dict() == {"available": False, "detail": "API key not configured"}
    assert recorder.requests == []
