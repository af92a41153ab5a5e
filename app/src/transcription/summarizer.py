"""
Transcript summarisation with Google Gemini.

A missing API key means summaries are skipped; a failed call raises
SummarizationError, which the job controller records without failing
the job.
"""

import asyncio
import logging
from typing import Optional

from google import genai

from configs.config import get_config
from src.transcription.errors import SummarizationError

logger = logging.getLogger(__name__)

cfg = get_config()


def build_prompt(transcript: str, episode_title: Optional[str], char_limit: int) -> str:
    """Prompt asking for a short markdown summary of the episode."""
    if len(transcript) > char_limit:
        transcript = transcript[:char_limit] + "\n\n[Truncated transcript]"

    lines = [
        "You are an assistant that writes short, punchy summaries of podcast transcripts.",
        "",
        f"Episode title: {episode_title}" if episode_title else "",
        "",
        "Task:",
        "- Summarise the episode clearly and engagingly for a busy listener.",
        "- Use markdown formatting with the following sections, in this order:",
        '  - ### TL;DR (2-5 bullet points, each starting with "- ")',
        "  - ### Key Topics",
        "  - ### Notable Quotes (if any, paraphrased if needed)",
        "  - ### Actionable Takeaways",
        "- Do NOT include a separate H1/H2 title; start directly with the TL;DR section.",
        "- Keep the entire response under about 300 words.",
        "",
        "Transcript:",
        transcript,
    ]
    return "\n".join(lines)


class GeminiSummarizer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        char_limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.api_key = cfg.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or cfg.GEMINI_MODEL_NAME
        self.char_limit = char_limit or cfg.SUMMARY_TRANSCRIPT_CHAR_LIMIT
        self.timeout = timeout or cfg.SUMMARY_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def summarize(self, transcript: str, episode_title: Optional[str]) -> str:
        """Return the summary text, or raise SummarizationError."""
        if not self.configured:
            raise SummarizationError("Gemini API key not configured")

        prompt = build_prompt(transcript, episode_title, self.char_limit)
        logger.debug("Gemini summary prompt: %d characters", len(prompt))
        try:
            client = genai.Client(api_key=self.api_key)
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self.model,
                    contents=prompt,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SummarizationError(
                f"Gemini did not respond within {self.timeout}s"
            ) from exc
        except Exception as exc:
            logger.error("Gemini API error: %s", exc)
            raise SummarizationError(f"Gemini error: {exc}") from exc

        summary = (response.text or "").strip()
        if not summary:
            raise SummarizationError("no response from Gemini")
        return summary
