"""
Data models for the transcription module.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class JobState(str, Enum):
    """Lifecycle states of a transcription job, in pipeline order."""

    CREATED = "created"
    METADATA_RESOLVED = "metadata_resolved"
    FEED_RESOLVED = "feed_resolved"
    FEED_PARSED = "feed_parsed"
    DOWNLOADING = "downloading"
    COMPRESSING = "compressing"
    SPLITTING = "splitting"
    TRANSCRIBING = "transcribing"
    MERGING = "merging"
    SUMMARIZING = "summarizing"
    COMPLETE = "complete"
    FAILED = "failed"


class StepName(str, Enum):
    """Names under which progress is published."""

    METADATA = "metadata"
    RSS = "rss"
    PARSE = "parse"
    DOWNLOAD = "download"
    COMPRESS = "compress"
    SPLITTING = "splitting"
    TRANSCRIBE = "transcribe"
    MERGE = "merge"
    SUMMARY = "summary"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STATES = frozenset({JobState.COMPLETE, JobState.FAILED})

_PIPELINE_ORDER = [
    JobState.CREATED,
    JobState.METADATA_RESOLVED,
    JobState.FEED_RESOLVED,
    JobState.FEED_PARSED,
    JobState.DOWNLOADING,
    JobState.COMPRESSING,
    JobState.SPLITTING,
    JobState.TRANSCRIBING,
    JobState.MERGING,
    JobState.SUMMARIZING,
    JobState.COMPLETE,
]


def can_transition(current: JobState, target: JobState) -> bool:
    """
    Forward-only transitions; FAILED is reachable from any live state.

    Skipping ahead is allowed (e.g. DOWNLOADING -> SPLITTING when no
    compression is attempted). Nothing leaves a terminal state.
    """
    if current in TERMINAL_STATES:
        return False
    if target == JobState.FAILED:
        return True
    return _PIPELINE_ORDER.index(target) > _PIPELINE_ORDER.index(current)


def now_ms() -> int:
    return int(time.time() * 1000)


def format_duration(seconds: Optional[float]) -> Optional[str]:
    """Render seconds as H:MM:SS (or M:SS under an hour)."""
    if seconds is None or seconds < 0:
        return None
    total = int(round(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


@dataclass(frozen=True)
class StepProgress:
    step: str
    percentage: int
    message: str
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict:
        return {
            "percentage": self.percentage,
            "message": self.message,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class JobRequest:
    """What a caller submits. At least one audio source hint is required."""

    episode_title: str
    podcast_name: Optional[str] = None
    audio_url: Optional[str] = None
    feed_url: Optional[str] = None
    duration_seconds: Optional[int] = None
    summarize: bool = True


@dataclass(frozen=True)
class ResolvedEpisode:
    title: str
    audio_url: str
    published: Optional[str] = None
    duration: Optional[str] = None


@dataclass
class AudioSegment:
    """A time window of the source audio, stored as its own file."""

    index: int
    start_seconds: float
    duration_seconds: float
    overlap_seconds: float
    path: str

    @property
    def end_seconds(self) -> float:
        return self.start_seconds + self.duration_seconds


@dataclass(frozen=True)
class TextUnit:
    start: float
    end: float
    text: str


@dataclass
class SegmentTranscript:
    index: int
    text: str
    units: List[TextUnit] = field(default_factory=list)


@dataclass(frozen=True)
class JobResult:
    title: str
    published: Optional[str]
    duration: Optional[str]
    transcript: str
    summary: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "success": True,
            "episode": {
                "title": self.title,
                "published": self.published,
                "duration": self.duration,
            },
            "transcript": self.transcript,
            "summary": self.summary,
        }


@dataclass
class Job:
    job_id: str
    request: JobRequest
    state: JobState = JobState.CREATED
    result: Optional[JobResult] = None
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    expires_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def summary(self) -> Dict:
        """Lightweight view used by listings."""
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "episode_title": self.request.episode_title,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
            "expires_at": self.expires_at,
            "error": self.error,
        }
