"""
Download remote episode audio into local scratch storage.
"""

import asyncio
import logging
import os
import time
from typing import Callable, Optional

import httpx

from configs.config import get_config
from src.transcription.errors import AcquisitionError

logger = logging.getLogger(__name__)

cfg = get_config()

ProgressCallback = Callable[[int, str], None]

_CHUNK_SIZE = 1024 * 1024
# Without a Content-Length, report every this many bytes
_MILESTONE_BYTES = 5 * 1024 * 1024


def remove_file(path: Optional[str]) -> None:
    """Delete a scratch file if it still exists."""
    if not path:
        return
    try:
        os.remove(path)
        logger.debug("Cleaned up temp file: %s", path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error("Error cleaning up file %s: %s", path, exc)


class AudioStore:
    """Streams audio over HTTP to files under ``scratch_dir``."""

    def __init__(
        self,
        scratch_dir: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.scratch_dir = scratch_dir or cfg.TEMP_DIR
        self.timeout = timeout or cfg.DOWNLOAD_TIMEOUT_SECONDS
        self._transport = transport

    def scratch_path(self, job_id: str) -> str:
        os.makedirs(self.scratch_dir, exist_ok=True)
        filename = f"{job_id}_{int(time.time() * 1000)}.mp3"
        return os.path.join(self.scratch_dir, filename)

    async def fetch(
        self,
        url: str,
        dest_path: str,
        report: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Stream ``url`` into ``dest_path`` and return the path.

        Raises AcquisitionError on transport errors, non-2xx responses and
        empty bodies; a partial file is removed before raising.
        """
        report = report or (lambda percentage, message: None)
        report(0, "Starting download...")
        logger.info("Downloading audio from: %s", url)

        received = 0
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
                headers={"User-Agent": cfg.USER_AGENT},
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    total = _content_length(response)
                    last_mark = -1
                    with open(dest_path, "wb") as audio_file:
                        async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                            await asyncio.to_thread(audio_file.write, chunk)
                            received += len(chunk)
                            last_mark = _report_download(
                                report, received, total, last_mark
                            )
        except httpx.HTTPStatusError as exc:
            remove_file(dest_path)
            raise AcquisitionError(
                f"Audio download failed with HTTP {exc.response.status_code}"
            ) from exc
        except httpx.InvalidURL as exc:
            remove_file(dest_path)
            raise AcquisitionError(f"Invalid audio URL: {exc}") from exc
        except httpx.HTTPError as exc:
            remove_file(dest_path)
            raise AcquisitionError(
                f"Audio download failed: {str(exc) or type(exc).__name__}"
            ) from exc
        except OSError as exc:
            remove_file(dest_path)
            raise AcquisitionError(f"Could not write audio file: {exc}") from exc

        if received == 0:
            remove_file(dest_path)
            raise AcquisitionError("Audio source returned no content")

        logger.info("Downloaded %d bytes to %s", received, dest_path)
        report(100, "Download complete")
        return dest_path


def _content_length(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Content-Length")
    try:
        total = int(value) if value is not None else None
    except ValueError:
        return None
    return total if total and total > 0 else None


def _report_download(
    report: ProgressCallback,
    received: int,
    total: Optional[int],
    last_mark: int,
) -> int:
    """Report when the percentage (or milestone) moves; return the new mark."""
    if total:
        percentage = min(int(received * 100 / total), 99)
        if percentage != last_mark:
            report(percentage, f"Downloading audio... {percentage}%")
        return percentage

    milestone = received // _MILESTONE_BYTES
    if milestone != last_mark:
        report(0, f"Downloading audio... {received / (1024 * 1024):.1f} MB")
    return milestone
