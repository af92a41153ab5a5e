"""
Background transcription worker.

``JobController`` owns the job table and drives each job through a
linear state machine:

    created -> metadata_resolved -> feed_resolved -> feed_parsed
    -> downloading -> compressing | splitting -> transcribing
    -> merging -> summarizing (optional) -> complete

with ``failed`` reachable from any live state. Every step publishes to
the ProgressBus; a failure publishes an ``error`` step, marks the job
failed and stops. Scratch files never outlive the job: each segment is
deleted right after its transcription call, the download just before the
job reaches a terminal state.
"""

import asyncio
import logging
from typing import List, Optional

from commons import generate_job_id
from configs.config import get_config
from src.database.job_repository import JobRepository
from src.discovery.feed import EpisodeResolver
from src.notifications.webhook import WebhookNotifier, summary_body
from src.transcription.audio_store import AudioStore, remove_file
from src.transcription.client import TranscriptionClient
from src.transcription.errors import (
    InvalidTransitionError,
    PipelineError,
    ResolutionError,
    SummarizationError,
)
from src.transcription.merge import merge_transcripts, overlap_word_count
from src.transcription.models import (
    AudioSegment,
    Job,
    JobRequest,
    JobResult,
    JobState,
    ResolvedEpisode,
    SegmentTranscript,
    StepName,
    format_duration,
)
from src.transcription.progress import ProgressBus
from src.transcription.segmenter import Segmenter
from src.transcription.summarizer import GeminiSummarizer

logger = logging.getLogger(__name__)
cfg = get_config()


class _ScratchFiles:
    """Paths a job has created and not yet removed."""

    def __init__(self) -> None:
        self._paths: List[str] = []

    def add(self, path: str) -> None:
        if path not in self._paths:
            self._paths.append(path)

    def remove(self, path: str) -> None:
        remove_file(path)
        if path in self._paths:
            self._paths.remove(path)

    def release(self) -> None:
        for path in list(self._paths):
            self.remove(path)


class JobController:
    """Single owner of job state; runs one pipeline task per job."""

    def __init__(
        self,
        jobs: Optional[JobRepository] = None,
        bus: Optional[ProgressBus] = None,
        audio_store: Optional[AudioStore] = None,
        segmenter: Optional[Segmenter] = None,
        transcriber: Optional[TranscriptionClient] = None,
        summarizer: Optional[GeminiSummarizer] = None,
        resolver: Optional[EpisodeResolver] = None,
        notifier: Optional[WebhookNotifier] = None,
        overlap_words: Optional[int] = None,
        result_retention_seconds: Optional[float] = None,
    ) -> None:
        self.jobs = jobs or JobRepository()
        self.bus = bus or ProgressBus()
        self.audio_store = audio_store or AudioStore()
        self.segmenter = segmenter or Segmenter()
        self.transcriber = transcriber or TranscriptionClient()
        self.summarizer = summarizer or GeminiSummarizer()
        self.resolver = resolver or EpisodeResolver()
        self.notifier = notifier or WebhookNotifier()
        self.overlap_words = (
            overlap_word_count() if overlap_words is None else overlap_words
        )
        self.result_retention_seconds = (
            cfg.RESULT_RETENTION_SECONDS
            if result_retention_seconds is None
            else result_retention_seconds
        )

    # ── Job table access ─────────────────────────────────────────────────

    def submit(self, request: JobRequest) -> Job:
        """Register a new job; the caller schedules ``run`` for it."""
        job = self.jobs.create_job(generate_job_id(), request)
        self.bus.open(job.job_id)
        logger.info(
            "Creating new job %s for episode: %s", job.job_id, request.episode_title
        )
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get_job(job_id)

    def snapshot(self, job_id: str) -> Optional[dict]:
        return self.bus.snapshot(job_id)

    def mark_result_read(self, job_id: str) -> None:
        """A delivered result is kept only for a short grace period."""
        self.jobs.schedule_eviction(job_id, self.result_retention_seconds)

    def cleanup(self, job_id: str) -> bool:
        """Evict a finished job now. Running jobs cannot be removed."""
        job = self.jobs.get_job(job_id)
        if job is None:
            return False
        if not job.is_terminal:
            raise InvalidTransitionError(f"Job {job_id} is still running")
        self.jobs.delete_job(job_id)
        self.bus.discard(job_id)
        return True

    def evict_expired(self) -> List[str]:
        expired = self.jobs.evict_expired()
        for job_id in expired:
            self.bus.discard(job_id)
        return expired

    async def sweep_forever(self, interval: Optional[float] = None) -> None:
        """Evict expired jobs periodically; runs for the app's lifetime."""
        interval = interval or cfg.JOB_SWEEP_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            self.evict_expired()

    # ── Main worker ──────────────────────────────────────────────────────

    async def run(self, job_id: str) -> None:
        """
        End-to-end pipeline for a single job.

        1. Resolve metadata, feed and episode audio URL
        2. Download audio
        3. Compress and/or split it
        4. Transcribe segments one at a time
        5. Merge, optionally summarise, store the result
        """
        job = self.jobs.get_job(job_id)
        if job is None:
            logger.error("Job %s not found", job_id)
            return
        if job.state != JobState.CREATED:
            logger.warning(
                "Job %s already started (state: %s); not running again",
                job_id, job.state.value,
            )
            return

        logger.info("Starting transcription for job %s", job_id)
        files = _ScratchFiles()
        try:
            result = await self._execute(job, files)
        except PipelineError as exc:
            files.release()
            logger.error("Job %s failed: %s", job_id, exc)
            await self._fail(job, exc)
            return
        except Exception as exc:
            files.release()
            logger.error("Job %s failed: %s", job_id, exc, exc_info=True)
            await self._fail(job, exc)
            return

        files.release()
        self._complete(job, result)

    async def _execute(self, job: Job, files: _ScratchFiles) -> JobResult:
        episode = await self._resolve(job)

        self._advance(job, JobState.DOWNLOADING)
        source = self.audio_store.scratch_path(job.job_id)
        files.add(source)
        await self.audio_store.fetch(
            episode.audio_url,
            source,
            report=lambda pct, msg: self._report(job, StepName.DOWNLOAD, pct, msg),
        )

        segments = await self.segmenter.prepare(
            source,
            report=lambda step, pct, msg: self._report(job, step, pct, msg),
            enter=lambda state: self._advance(job, state),
        )
        for segment in segments:
            files.add(segment.path)

        transcripts = await self._transcribe(job, segments, source, files)

        self._advance(job, JobState.MERGING)
        self._report(job, StepName.MERGE, 0, "Merging transcriptions...")
        transcript = merge_transcripts(transcripts, self.overlap_words)
        self._report(job, StepName.MERGE, 100, "Merge complete")

        summary = await self._summarize(job, episode, transcript)

        return JobResult(
            title=episode.title,
            published=episode.published,
            duration=episode.duration,
            transcript=transcript,
            summary=summary,
        )

    async def _resolve(self, job: Job) -> ResolvedEpisode:
        request = job.request

        self._report(job, StepName.METADATA, 0, "Reading episode metadata...")
        title = (request.episode_title or "").strip()
        if not title:
            raise ResolutionError("Episode title is required")
        self._report(job, StepName.METADATA, 100, "Metadata resolved")
        self._advance(job, JobState.METADATA_RESOLVED)

        if request.audio_url:
            self._report(job, StepName.RSS, 100, "Using provided audio URL")
            self._advance(job, JobState.FEED_RESOLVED)
            self._report(job, StepName.PARSE, 100, "Feed lookup not needed")
            self._advance(job, JobState.FEED_PARSED)
            return ResolvedEpisode(
                title=title,
                audio_url=request.audio_url,
                duration=format_duration(request.duration_seconds),
            )

        feed_url = request.feed_url
        if feed_url:
            self._report(job, StepName.RSS, 100, "Using provided RSS feed")
        else:
            if not request.podcast_name:
                raise ResolutionError("No podcast name or feed URL to search with")
            self._report(job, StepName.RSS, 0, "Finding RSS feed...")
            feed_url = await self.resolver.find_feed(request.podcast_name)
            if not feed_url:
                raise ResolutionError(
                    f'Unable to find RSS feed for "{request.podcast_name}". '
                    "This podcast may not be available in Apple Podcasts or "
                    "Podcast Index directories."
                )
            self._report(job, StepName.RSS, 100, "RSS feed found")
        self._advance(job, JobState.FEED_RESOLVED)

        self._report(job, StepName.PARSE, 0, "Parsing RSS feed...")
        episode = await self.resolver.resolve_episode(
            feed_url, title, request.duration_seconds
        )
        self._report(job, StepName.PARSE, 100, "RSS parsed successfully")
        self._advance(job, JobState.FEED_PARSED)
        return episode

    async def _transcribe(
        self,
        job: Job,
        segments: List[AudioSegment],
        source: str,
        files: _ScratchFiles,
    ) -> List[SegmentTranscript]:
        """One provider call at a time, in index order."""
        self._advance(job, JobState.TRANSCRIBING)
        total = len(segments)
        transcripts = []
        for position, segment in enumerate(segments):
            label = f" (chunk {position + 1}/{total})" if total > 1 else ""
            self._report(
                job, StepName.TRANSCRIBE,
                round(position / total * 100), f"Transcribing{label}...",
            )
            try:
                transcript = await self.transcriber.transcribe(
                    segment, total if total > 1 else None
                )
            finally:
                if segment.path != source:
                    files.remove(segment.path)
            transcripts.append(transcript)
            if total > 1:
                self._report(
                    job, StepName.TRANSCRIBE,
                    round((position + 1) / total * 100),
                    f"Transcribed chunk {position + 1}/{total}",
                )
        self._report(job, StepName.TRANSCRIBE, 100, "Transcription complete")
        return transcripts

    async def _summarize(
        self, job: Job, episode: ResolvedEpisode, transcript: str
    ) -> Optional[str]:
        """Summary failures are recorded on the summary step only."""
        if not job.request.summarize:
            return None

        self._advance(job, JobState.SUMMARIZING)
        if not self.summarizer.configured:
            self._report(
                job, StepName.SUMMARY, 100,
                "Summary skipped (Gemini API key not configured)",
            )
            return None

        self._report(job, StepName.SUMMARY, 0, "Summarising transcript with Gemini...")
        try:
            summary = await self.summarizer.summarize(transcript, episode.title)
        except SummarizationError as exc:
            logger.warning("Job %s summary failed: %s", job.job_id, exc)
            self._report(
                job, StepName.SUMMARY, 100, f"Could not generate summary ({exc})"
            )
            await self.notifier.send(
                f"Error Summarising: {episode.title}",
                f"Failed to generate summary with Gemini.\n\nError: {exc}",
            )
            return None

        if self.notifier.configured:
            self._report(job, StepName.SUMMARY, 90, "Sending summary via webhook...")
            await self.notifier.send(
                f"Summary: {episode.title}", summary_body(summary, transcript)
            )
        self._report(job, StepName.SUMMARY, 100, "Summary complete")
        return summary

    # ── State and progress helpers ───────────────────────────────────────

    def _report(self, job: Job, step: StepName, percentage: int, message: str) -> None:
        self.bus.publish(job.job_id, step, percentage, message)

    def _advance(self, job: Job, state: JobState) -> None:
        self.jobs.update_job_state(job.job_id, state)

    def _complete(self, job: Job, result: JobResult) -> None:
        self._report(job, StepName.COMPLETE, 100, "Transcription complete!")
        self.jobs.complete_job(job.job_id, result)
        self.bus.mark_complete(job.job_id)
        logger.info("Job %s completed successfully", job.job_id)

    async def _fail(self, job: Job, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        self._report(job, StepName.ERROR, 100, message)
        self.jobs.fail_job(job.job_id, message)
        self.bus.mark_complete(job.job_id)
        await self.notifier.send(
            f"Error Processing: {job.request.episode_title}",
            f"Job failed.\n\nError: {message}",
        )
