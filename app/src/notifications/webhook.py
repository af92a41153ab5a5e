"""
Best-effort webhook notifications.

Posts ``{subject, body, format}`` to the configured URL. Delivery problems
are logged and reported through the return value; they never affect the
job that triggered them.
"""

import logging
from typing import Optional

import httpx

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()


class WebhookNotifier:
    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        # .env files written on Windows leave a trailing "\r" on the value
        self.url = (cfg.WEBHOOK_URL if url is None else url or "").strip()
        self.timeout = timeout or cfg.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.url)

    async def send(self, subject: str, body: str) -> bool:
        """Post a markdown message; return whether it was delivered."""
        if not self.configured:
            logger.debug("WEBHOOK_URL not configured, skipping webhook: %s", subject)
            return False

        logger.info("Sending webhook: %s", subject)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.url,
                    json={"subject": subject, "body": body, "format": "markdown"},
                )
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("Failed to send webhook '%s': %s", subject, exc)
            return False

        logger.info("Webhook sent successfully")
        return True


def summary_body(summary: str, transcript: str) -> str:
    """Summary followed by the full transcript as a blockquote."""
    quoted = "\n".join(f"> {line}" for line in transcript.split("\n"))
    return f"{summary.strip()}\n\n---\n\n### Full Transcript\n\n{quoted}"
