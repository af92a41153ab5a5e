import asyncio
import json

import httpx
import pytest
from openai import AsyncOpenAI

from src.transcription.client import TranscriptionClient
from src.transcription.errors import TranscriptionError
from src.transcription.models import AudioSegment


def _segment(tmp_path, index=1, start=590.0):
    path = tmp_path / f"chunk_{index}.mp3"
    path.write_bytes(b"\0" * 128)
    return AudioSegment(index, start, 610.0, 10.0, str(path))


def _client(handler):
    client = TranscriptionClient(api_key="test-key", base_url="https://provider.test/openai/v1")
    client._client = AsyncOpenAI(
        api_key="test-key",
        base_url="https://provider.test/openai/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return client


def test_missing_api_key_is_a_transcription_error(tmp_path):
    client = TranscriptionClient(api_key="")
    with pytest.raises(TranscriptionError, match="GROQ_API_KEY"):
        asyncio.run(client.transcribe(_segment(tmp_path)))


def test_transcript_carries_segment_index_and_shifted_units(tmp_path):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={
            "text": " hello world",
            "segments": [{"id": 0, "start": 0.0, "end": 1.5, "text": " hello world"}],
        })

    transcript = asyncio.run(_client(handler).transcribe(_segment(tmp_path), total=4))

    assert len(requests) == 1
    assert requests[0].url.path.endswith("/audio/transcriptions")
    assert transcript.index == 1
    assert transcript.text == " hello world"
    assert transcript.units[0].start == 590.0
    assert transcript.units[0].text == "hello world"


def test_rate_limit_maps_to_transcription_error_with_status(tmp_path):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(
            429,
            content=json.dumps({"error": {"message": "Rate limit reached for model"}}),
            headers={"Content-Type": "application/json"},
        )

    with pytest.raises(TranscriptionError) as info:
        asyncio.run(_client(handler).transcribe(_segment(tmp_path)))

    assert info.value.status_code == 429
    assert "Rate limit reached" in str(info.value)
    assert len(calls) == 1


def test_connection_failure_maps_to_transcription_error(tmp_path):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(TranscriptionError) as info:
        asyncio.run(_client(handler).transcribe(_segment(tmp_path)))
    assert info.value.status_code is None
