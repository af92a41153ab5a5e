"""
Exception types raised by the transcription pipeline.

Every ``PipelineError`` is terminal for the job it occurs in, except
``SummarizationError``, which the controller records and moves past.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for step failures; ``str(exc)`` is the user-visible message."""


class ResolutionError(PipelineError):
    """No feed or audio source could be found for the episode."""


class AcquisitionError(PipelineError):
    """The audio source was unreachable, returned an error, or was empty."""


class TranscodeError(PipelineError):
    """ffmpeg/ffprobe failed while compressing, probing or splitting."""


class TranscriptionError(PipelineError):
    """The speech-to-text provider rejected or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MergeError(PipelineError):
    """Segment transcripts were missing, duplicated or out of order."""


class SummarizationError(PipelineError):
    """Summary generation failed. Never fails the job."""


class InvalidTransitionError(Exception):
    """A job was asked to move backwards or out of a terminal state."""
