"""
Audio sizing and chunking.

Brings downloaded audio under the provider's upload ceiling with as few
provider calls as possible:

1. Audio at or under the ceiling is compressed once (mono, 16 kHz, 64k)
   and re-measured. A failed compression falls back to the original file.
2. Audio still at or under the ceiling is sent as a single segment.
3. Anything larger is split by duration into ``ceil(D / chunk)`` windows.
   Window *i* starts ``overlap`` seconds before its nominal boundary
   ``i * chunk`` (clamped at zero) and ends at ``(i + 1) * chunk``, so
   consecutive windows share exactly ``overlap`` seconds of audio.
4. Every window is transcoded on its own to the same normalized profile.

ffmpeg and ffprobe run in a worker thread so the job task only suspends.
"""

import asyncio
import logging
import math
import os
import subprocess
from typing import Callable, List, Optional, Tuple

from configs.config import get_config
from src.transcription.audio_store import remove_file
from src.transcription.errors import TranscodeError
from src.transcription.models import AudioSegment, JobState, StepName

logger = logging.getLogger(__name__)

cfg = get_config()

StepReporter = Callable[[StepName, int, str], None]
StateHook = Callable[[JobState], None]


# ── Audio helpers ────────────────────────────────────────────────────────


def get_file_size_mb(path: str) -> float:
    return os.path.getsize(path) / (1024 * 1024)


async def get_audio_duration(audio_path: str, timeout: float = 60) -> float:
    """Return audio duration in seconds via ffprobe, or 0 on failure."""
    try:
        result = await asyncio.to_thread(
            subprocess.run,
            [
                "ffprobe", "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                audio_path,
            ],
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
        duration = float(result.stdout.strip())
        logger.info("Audio duration: %.2f seconds", duration)
        return duration
    except (subprocess.SubprocessError, OSError, ValueError) as exc:
        logger.warning("Could not get audio duration: %s", exc)
        return 0.0


async def transcode(
    source: str,
    dest: str,
    start: Optional[float] = None,
    duration: Optional[float] = None,
    timeout: Optional[float] = None,
) -> None:
    """Re-encode ``source`` (optionally a time window of it) to the normalized profile."""
    cmd = ["ffmpeg", "-y", "-v", "error"]
    if start:
        cmd += ["-ss", f"{start:.3f}"]
    cmd += ["-i", source]
    if duration is not None:
        cmd += ["-t", f"{duration:.3f}"]
    cmd += [
        "-vn",
        "-ac", str(cfg.AUDIO_CHANNELS),
        "-ar", str(cfg.AUDIO_SAMPLE_RATE),
        "-b:a", cfg.AUDIO_BITRATE,
        "-codec:a", cfg.AUDIO_CODEC,
        dest,
    ]
    logger.debug("Running: %s", " ".join(cmd))
    try:
        await asyncio.to_thread(
            subprocess.run,
            cmd,
            check=True,
            capture_output=True,
            timeout=timeout or cfg.TRANSCODE_TIMEOUT_SECONDS,
        )
    except subprocess.CalledProcessError as exc:
        remove_file(dest)
        raise TranscodeError(
            f"ffmpeg failed (exit {exc.returncode}): {_stderr_tail(exc.stderr)}"
        ) from exc
    except subprocess.TimeoutExpired as exc:
        remove_file(dest)
        raise TranscodeError(f"ffmpeg timed out after {exc.timeout}s") from exc
    except OSError as exc:
        remove_file(dest)
        raise TranscodeError(f"Could not run ffmpeg: {exc}") from exc


def _stderr_tail(stderr, limit: int = 300) -> str:
    if not stderr:
        return "no error output"
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    return stderr.strip()[-limit:]


def plan_segments(
    duration: float, chunk_seconds: float, overlap_seconds: float
) -> List[Tuple[float, float, float]]:
    """
    Return ``(start, length, overlap_with_previous)`` for each window.

    >>> plan_segments(1500, 600, 10)
    [(0.0, 600.0, 0.0), (590.0, 610.0, 10.0), (1190.0, 310.0, 10.0)]
    """
    if duration <= 0:
        return []
    count = math.ceil(duration / chunk_seconds)
    windows = []
    for index in range(count):
        start = float(max(0, index * chunk_seconds - overlap_seconds))
        end = float(min((index + 1) * chunk_seconds, duration))
        overlap = float(index * chunk_seconds - start) if index else 0.0
        windows.append((start, end - start, overlap))
    return windows


# ── Segmenter ────────────────────────────────────────────────────────────


class Segmenter:
    """Applies the size/compress/split policy to one downloaded file."""

    def __init__(
        self,
        max_file_size_mb: Optional[float] = None,
        chunk_seconds: Optional[float] = None,
        overlap_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.max_file_size_mb = max_file_size_mb or cfg.MAX_FILE_SIZE_MB
        self.chunk_seconds = chunk_seconds or cfg.CHUNK_DURATION_SECONDS
        self.overlap_seconds = (
            cfg.CHUNK_OVERLAP_SECONDS if overlap_seconds is None else overlap_seconds
        )
        self.timeout = timeout or cfg.TRANSCODE_TIMEOUT_SECONDS

    async def prepare(
        self,
        source: str,
        report: StepReporter,
        enter: StateHook,
    ) -> List[AudioSegment]:
        """
        Turn ``source`` into ordered segments ready for transcription.

        The caller owns ``source`` and every returned segment file. A
        single segment may point at ``source`` itself when compression
        failed; callers must not delete it twice.
        """
        size_mb = get_file_size_mb(source)
        logger.info("Audio file size: %.2f MB", size_mb)

        working = source
        if size_mb <= self.max_file_size_mb:
            enter(JobState.COMPRESSING)
            working = await self.compress(source, report)
            size_mb = get_file_size_mb(working)
            if size_mb <= self.max_file_size_mb:
                duration = await get_audio_duration(working)
                return [AudioSegment(0, 0.0, duration, 0.0, working)]
            logger.info(
                "Compressed audio still %.2f MB (> %s MB), splitting",
                size_mb, self.max_file_size_mb,
            )
        else:
            logger.info(
                "File exceeds %s MB limit, splitting into chunks...",
                self.max_file_size_mb,
            )

        enter(JobState.SPLITTING)
        try:
            return await self.split(working, report)
        finally:
            if working != source:
                remove_file(working)

    async def compress(self, source: str, report: StepReporter) -> str:
        """Compress to the normalized profile, or return ``source`` if that fails."""
        report(StepName.COMPRESS, 0, "Compressing audio...")
        dest = f"{os.path.splitext(source)[0]}_compressed.mp3"
        try:
            await transcode(source, dest, timeout=self.timeout)
        except TranscodeError as exc:
            logger.warning("Compression error, using original audio: %s", exc)
            report(
                StepName.COMPRESS, 100,
                "Compression failed, using original audio",
            )
            return source
        report(StepName.COMPRESS, 100, "Compression complete")
        return dest

    async def split(self, source: str, report: StepReporter) -> List[AudioSegment]:
        """Cut ``source`` into overlapping windows; all or nothing."""
        duration = await get_audio_duration(source)
        if duration <= 0:
            raise TranscodeError("Could not determine audio duration for splitting")

        windows = plan_segments(duration, self.chunk_seconds, self.overlap_seconds)
        total = len(windows)
        report(StepName.SPLITTING, 0, f"Splitting into {total} chunks...")

        stem = os.path.splitext(source)[0]
        segments: List[AudioSegment] = []
        try:
            for index, (start, length, overlap) in enumerate(windows):
                chunk_path = f"{stem}_chunk_{index}.mp3"
                await transcode(
                    source, chunk_path,
                    start=start, duration=length, timeout=self.timeout,
                )
                segments.append(
                    AudioSegment(index, start, length, overlap, chunk_path)
                )
                logger.info("Chunk %d/%d created", index + 1, total)
                report(
                    StepName.SPLITTING,
                    round((index + 1) / total * 100),
                    f"Created chunk {index + 1}/{total}",
                )
        except TranscodeError:
            for segment in segments:
                remove_file(segment.path)
            raise

        report(StepName.SPLITTING, 100, "Audio splitting complete")
        return segments
