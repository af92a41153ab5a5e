"""
Speech-to-text client.

Sends one normalized audio segment to Groq's Whisper endpoint through its
OpenAI-compatible API. Exactly one request per call: retries are disabled
here and any failure is handed back to the job controller.
"""

import logging
from typing import List, Optional

import openai
from openai import AsyncOpenAI

from configs.config import get_config
from src.transcription.errors import TranscriptionError
from src.transcription.models import AudioSegment, SegmentTranscript, TextUnit

logger = logging.getLogger(__name__)

cfg = get_config()


class TranscriptionClient:
    """Thin wrapper around ``audio.transcriptions.create``."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_key = cfg.GROQ_API_KEY if api_key is None else api_key
        self.base_url = base_url or cfg.TRANSCRIPTION_API_BASE
        self.model = model or cfg.TRANSCRIPTION_MODEL
        self.language = language or cfg.TRANSCRIPTION_LANGUAGE
        self.timeout = timeout or cfg.PROVIDER_TIMEOUT_SECONDS
        self._client: Optional[AsyncOpenAI] = None

    def _build_client(self) -> AsyncOpenAI:
        """Create the provider client on first use."""
        if not self.api_key:
            raise TranscriptionError(
                "GROQ_API_KEY environment variable is not set. "
                "Cannot reach the transcription provider."
            )
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def transcribe(
        self, segment: AudioSegment, total: Optional[int] = None
    ) -> SegmentTranscript:
        """Transcribe one segment; the result carries the segment's index."""
        client = self._build_client()
        label = f" (chunk {segment.index + 1}/{total})" if total else ""
        logger.info("Transcribing with %s%s: %s", self.model, label, segment.path)

        try:
            with open(segment.path, "rb") as audio_file:
                response = await client.audio.transcriptions.create(
                    model=self.model,
                    file=audio_file,
                    response_format="verbose_json",
                    language=self.language,
                )
        except openai.APIStatusError as exc:
            raise TranscriptionError(
                _provider_message(exc), status_code=exc.status_code
            ) from exc
        except openai.APIError as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}") from exc
        except OSError as exc:
            raise TranscriptionError(f"Could not read audio segment: {exc}") from exc

        text = getattr(response, "text", None)
        if text is None:
            text = response if isinstance(response, str) else ""
        units = _text_units(response, offset=segment.start_seconds)
        logger.debug(
            "Segment %d transcribed: %d characters, %d units",
            segment.index, len(text), len(units),
        )
        return SegmentTranscript(index=segment.index, text=text, units=units)


def _provider_message(exc: "openai.APIStatusError") -> str:
    """Prefer the provider's own error text over the SDK's wrapper message."""
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return exc.message or f"Provider returned HTTP {exc.status_code}"


def _text_units(response, offset: float = 0.0) -> List[TextUnit]:
    """Pull timed segments out of a verbose_json response, shifted to source time."""
    units = []
    for item in getattr(response, "segments", None) or []:
        if isinstance(item, dict):
            start, end, text = item.get("start"), item.get("end"), item.get("text")
        else:
            start = getattr(item, "start", None)
            end = getattr(item, "end", None)
            text = getattr(item, "text", None)
        if start is None or end is None or not text:
            continue
        units.append(TextUnit(offset + float(start), offset + float(end), text.strip()))
    return units
