from __future__ import annotations

import json

import httpx
import pytest

from jarvis_backend.backends import HuggingFaceBackend
from jarvis_backend.backends.huggingface import (
    DETECTION_MODEL,
    IMAGE_MODEL,
    QA_MODEL,
    SENTIMENT_MODEL,
    TTS_MODEL,
)
from jarvis_backend.errors import BackendError, BackendUnavailable


pytestmark = pytest.mark.anyio

INFERENCE_URL = "https://inference.example.com/models"


@pytest.fixture
def backend(client, make_descriptor) -> HuggingFaceBackend:
    return HuggingFaceBackend(
        make_descriptor(name="huggingface", max_retries=0),
        inference_url=INFERENCE_URL,
        client=client,
    )


async def test_sentiment_picks_highest_score(backend, recorder) -> None:
    recorder.queue(
        httpx.Response(
            200,
            json=[[{"label": "NEGATIVE", "score": 0.12}, {"label": "POSITIVE", "score": 0.88}]],
        )
    )

    sentiment = await backend.analyze_sentiment("I love this")

    assert sentiment.label == "POSITIVE"
    assert sentiment.score == pytest.approx(0.88)
    request = recorder.requests[0]
    assert str(request.url) == f"{INFERENCE_URL}/{SENTIMENT_MODEL}"
    assert json.loads(request.content) == {"inputs": "I love this"}


async def test_sentiment_accepts_flat_list(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json=[{"label": "NEGATIVE", "score": 0.7}]))

    sentiment = await backend.analyze_sentiment("meh")

    assert sentiment.as_dict() == {"label": "NEGATIVE", "score": 0.7}


async def test_sentiment_malformed_payload(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json={"error": "model loading"}))

    with pytest.raises(BackendError):
        await backend.analyze_sentiment("text")


async def test_generate_image_returns_bytes(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, content=b"\x89PNG...", headers={"content-type": "image/png"}))

    image = await backend.generate_image("a cat")

    assert image == b"\x89PNG..."
    request = recorder.requests[0]
    assert str(request.url) == f"{INFERENCE_URL}/{IMAGE_MODEL}"
    assert request.headers["Accept"] == "image/png"


async def test_generate_image_rejects_non_image(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json={"estimated_time": 20}))

    with pytest.raises(BackendError, match="Expected image payload"):
        await backend.generate_image("a cat")


async def test_capabilities_require_credentials(client, recorder, make_descriptor) -> None:
    backend = HuggingFaceBackend(make_descriptor(name="huggingface", api_key=None), client=client)

    with pytest.raises(BackendUnavailable):
        await backend.generate_image("a cat")
    with pytest.raises(BackendUnavailable):
        await backend.analyze_sentiment("text")
    assert recorder.requests == []


async def test_answer_question_posts_question_and_context(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json={"answer": "Paris", "score": 0.97, "start": 0, "end": 5}))

    answer = await backend.answer_question("Capital of France?", "Paris is the capital of France.")

    assert answer == {"answer": "Paris", "score": pytest.approx(0.97)}
    request = recorder.requests[0]
    assert str(request.url) == f"{INFERENCE_URL}/{QA_MODEL}"
    assert json.loads(request.content) == {
        "inputs": {"question": "Capital of France?", "context": "Paris is the capital of France."}
    }


@pytest.mark.parametrize(
    "response",
    [httpx.Response(500, json={"error": "boom"}), httpx.Response(200, json={"error": "model loading"})],
)
async def test_answer_question_degrades_on_failure(backend, recorder, response) -> None:
    recorder.queue(response)

    assert await backend.answer_question("Why?", "Because.") == {"answer": "Unable to answer", "score": 0.0}


async def test_text_to_speech_returns_audio_bytes(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, content=b"RIFF....WAVE", headers={"content-type": "audio/wav"}))

    audio = await backend.text_to_speech("Hello there")

    assert audio == b"RIFF....WAVE"
    request = recorder.requests[0]
    assert str(request.url) == f"{INFERENCE_URL}/{TTS_MODEL}"
    assert json.loads(request.content) == {"inputs": "Hello there"}


async def test_text_to_speech_rejects_non_audio(backend, recorder) -> None:
    recorder.queue(httpx.Response(200, json={"estimated_time": 20}))

    with pytest.raises(BackendError, match="Failed to generate speech"):
        await backend.text_to_speech("Hello there")


async def test_text_to_speech_propagates_upstream_errors(backend, recorder) -> None:
    recorder.queue(httpx.Response(503, json={"error": "unavailable"}))

    with pytest.raises(BackendError) as exc_info:
        await backend.text_to_speech("Hello there")

    assert exc_info.value.status_code == 503


async def test_detect_objects_sends_raw_image(backend, recorder) -> None:
    detections = [{"label": "cat", "score": 0.99, "box": {"xmin": 1, "ymin": 2, "xmax": 3, "ymax": 4}}]
    recorder.queue(httpx.Response(200, json=detections))

    result = await backend.detect_objects(b"\x89PNG-bytes")

    assert result == detections
    request = recorder.requests[0]
    assert str(request.url) == f"{INFERENCE_URL}/{DETECTION_MODEL}"
    assert request.headers["Content-Type"] == "application/octet-stream"
    assert request.content == b"\x89PNG-bytes"


async def test_detect_objects_returns_empty_list_on_failure(backend, recorder) -> None:
    recorder.queue(httpx.Response(400, json={"error": "bad image"}))

    assert await backend.detect_objects(b"not an image") == []


async def test_degrading_capabilities_skip_calls_without_credentials(client, recorder, make_descriptor) -> None:
    backend = HuggingFaceBackend(make_descriptor(name="huggingface", api_key=None), client=client)

    assert (await backend.answer_question("Why?", "Because."))["answer"] == "Unable to answer"
    assert await backend.detect_objects(b"image") == []
    with pytest.raises(BackendUnavailable):
        await backend.text_to_speech("Hello")
    assert recorder.requests == []
