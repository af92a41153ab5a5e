"""
In-memory progress publish/subscribe, keyed by job id.

Each job owns an ordered mapping of step name -> latest StepProgress.
Readers pull snapshots of that shared state; nothing is queued, so a
subscriber sees the latest value of each step, not every intermediate one.
"""

import asyncio
import logging
import threading
from collections import OrderedDict
from typing import AsyncIterator, Dict, Optional, Union

from src.transcription.models import StepName, StepProgress

logger = logging.getLogger(__name__)


class ProgressBus:
    """Latest-snapshot-per-job progress store."""

    def __init__(self) -> None:
        self._steps: Dict[str, "OrderedDict[str, StepProgress]"] = {}
        self._complete: Dict[str, bool] = {}
        self._lock = threading.Lock()

    # ── Writes ───────────────────────────────────────────────────────────

    def open(self, job_id: str) -> None:
        """Register a job so readers get an (empty) snapshot before any step."""
        with self._lock:
            self._steps.setdefault(job_id, OrderedDict())
            self._complete.setdefault(job_id, False)

    def publish(
        self,
        job_id: str,
        step: Union[StepName, str],
        percentage: int,
        message: str,
    ) -> Optional[StepProgress]:
        """
        Record the latest progress for ``step``.

        Percentages are clamped to 0-100 and never move backwards within
        a step. Publishing to a job already marked complete is ignored.
        """
        step_name = step.value if isinstance(step, StepName) else str(step)
        percentage = max(0, min(int(percentage), 100))

        with self._lock:
            if self._complete.get(job_id):
                logger.warning(
                    "[%s] Ignoring %s progress after completion", job_id, step_name
                )
                return None
            steps = self._steps.setdefault(job_id, OrderedDict())
            self._complete.setdefault(job_id, False)
            previous = steps.get(step_name)
            if previous is not None:
                percentage = max(percentage, previous.percentage)
            entry = StepProgress(step_name, percentage, message)
            steps[step_name] = entry

        logger.info("[%s] %s: %s (%d%%)", job_id, step_name, message, percentage)
        return entry

    def mark_complete(self, job_id: str) -> None:
        with self._lock:
            self._steps.setdefault(job_id, OrderedDict())
            self._complete[job_id] = True

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._steps.pop(job_id, None)
            self._complete.pop(job_id, None)

    # ── Reads ────────────────────────────────────────────────────────────

    def snapshot(self, job_id: str) -> Optional[Dict]:
        """Return ``{step: {...}, ..., "complete": bool}`` or None if unknown."""
        with self._lock:
            steps = self._steps.get(job_id)
            if steps is None:
                return None
            snapshot = {name: entry.to_dict() for name, entry in steps.items()}
            # The terminal flag replaces the ``complete`` step's entry
            snapshot["complete"] = self._complete.get(job_id, False)
        return snapshot

    async def subscribe(
        self, job_id: str, interval: float = 0.5
    ) -> AsyncIterator[Dict]:
        """
        Yield snapshots whenever they change, until the completed one.

        Ends early if the job is (or becomes) unknown, e.g. after eviction.
        """
        last = None
        while True:
            snapshot = self.snapshot(job_id)
            if snapshot is None:
                return
            if snapshot != last:
                yield snapshot
                last = snapshot
            if snapshot["complete"]:
                return
            await asyncio.sleep(interval)
