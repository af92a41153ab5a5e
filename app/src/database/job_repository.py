"""
In-memory repository for transcription jobs.

The job table lives for the lifetime of the process. One instance is
owned by the JobController; each job's task mutates only its own entry
while request handlers read concurrently, so access goes through a lock.
Terminal jobs carry an eviction deadline and are dropped by
``evict_expired``.
"""

import logging
import threading
import time
from typing import Dict, List, Optional

from configs.config import get_config
from src.transcription.errors import InvalidTransitionError
from src.transcription.models import (
    Job,
    JobRequest,
    JobResult,
    JobState,
    can_transition,
)

logger = logging.getLogger(__name__)

cfg = get_config()


class JobRepository:
    """Thread-safe job table with TTL eviction."""

    def __init__(self, retention_seconds: Optional[float] = None) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        self.retention_seconds = (
            cfg.JOB_RETENTION_SECONDS
            if retention_seconds is None
            else retention_seconds
        )

    # ── Create ───────────────────────────────────────────────────────────

    def create_job(self, job_id: str, request: JobRequest) -> Job:
        """Insert a new job in the CREATED state."""
        job = Job(job_id=job_id, request=request)
        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"Job {job_id} already exists")
            self._jobs[job_id] = job
        logger.debug("Job %s created", job_id)
        return job

    # ── Read ─────────────────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def get_all_jobs(self, state: Optional[str] = None) -> List[Job]:
        """Return all jobs, newest first, optionally filtered by state."""
        with self._lock:
            jobs = list(self._jobs.values())
        if state is not None:
            jobs = [job for job in jobs if job.state.value == state]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    # ── Update ───────────────────────────────────────────────────────────

    def update_job_state(self, job_id: str, state: JobState) -> Job:
        """Advance a live job to ``state``; terminal states use the helpers below."""
        if state in (JobState.COMPLETE, JobState.FAILED):
            raise InvalidTransitionError(
                f"Use complete_job/fail_job to enter {state.value}"
            )
        with self._lock:
            job = self._require(job_id)
            self._check_transition(job, state)
            job.state = state
        logger.debug("Job %s state -> %s", job_id, state.value)
        return job

    def complete_job(self, job_id: str, result: JobResult) -> Job:
        with self._lock:
            job = self._require(job_id)
            self._check_transition(job, JobState.COMPLETE)
            job.state = JobState.COMPLETE
            job.result = result
            self._finish(job)
        logger.info("Job %s completed", job_id)
        return job

    def fail_job(self, job_id: str, error: str) -> Job:
        with self._lock:
            job = self._require(job_id)
            self._check_transition(job, JobState.FAILED)
            job.state = JobState.FAILED
            job.error = error
            self._finish(job)
        logger.error("Job %s marked as failed: %s", job_id, error)
        return job

    def schedule_eviction(self, job_id: str, delay_seconds: float) -> bool:
        """Pull a job's eviction deadline in to ``now + delay`` (never later)."""
        deadline = time.time() + delay_seconds
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if job.expires_at is None or deadline < job.expires_at:
                job.expires_at = deadline
        logger.debug("Job %s scheduled for eviction in %ss", job_id, delay_seconds)
        return True

    # ── Delete ───────────────────────────────────────────────────────────

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            removed = self._jobs.pop(job_id, None)
        if removed is None:
            logger.warning("Job %s delete failed: no match", job_id)
            return False
        logger.info("Job %s deleted", job_id)
        return True

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        """Drop every job whose eviction deadline has passed."""
        now = time.time() if now is None else now
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.expires_at is not None and job.expires_at <= now
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("Evicted %d expired job(s)", len(expired))
        return expired

    # ── Helpers ──────────────────────────────────────────────────────────

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _check_transition(job: Job, target: JobState) -> None:
        if not can_transition(job.state, target):
            raise InvalidTransitionError(
                f"Job {job.job_id} cannot move from {job.state.value} "
                f"to {target.value}"
            )

    def _finish(self, job: Job) -> None:
        job.finished_at = time.time()
        job.expires_at = job.finished_at + self.retention_seconds
