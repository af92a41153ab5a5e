"""
Merge per-segment transcripts into one text.

Consecutive segments share ``overlap`` seconds of audio, so each segment
after the first repeats some words of its predecessor. Those are removed
by dropping a fixed number of leading tokens, ``ceil(overlap * words per
second)``. This is an approximation: it does not align text, and may drop
a word too many or keep one too few at each boundary.
"""

import logging
import math
from typing import Optional, Sequence

from configs.config import get_config
from src.transcription.errors import MergeError
from src.transcription.models import SegmentTranscript

logger = logging.getLogger(__name__)

cfg = get_config()


def overlap_word_count(
    overlap_seconds: Optional[float] = None,
    words_per_second: Optional[float] = None,
) -> int:
    if overlap_seconds is None:
        overlap_seconds = cfg.CHUNK_OVERLAP_SECONDS
    if words_per_second is None:
        words_per_second = cfg.WORDS_PER_SECOND_ESTIMATE
    return math.ceil(overlap_seconds * words_per_second)


def merge_transcripts(
    transcripts: Sequence[SegmentTranscript],
    overlap_words: Optional[int] = None,
) -> str:
    """
    Join transcripts ordered by index ``0..N-1``.

    Raises MergeError if the list is empty or its indices are not exactly
    ``0..N-1`` in order; a missing segment is never skipped silently.
    """
    if not transcripts:
        raise MergeError("No segment transcripts to merge")

    indices = [t.index for t in transcripts]
    expected = list(range(len(transcripts)))
    if indices != expected:
        missing = sorted(set(range(max(indices) + 1)) - set(indices))
        detail = f"missing {missing}" if missing else "duplicated or out of order"
        raise MergeError(f"Segment indices {indices} are not contiguous ({detail})")

    if len(transcripts) == 1:
        return transcripts[0].text.strip()

    if overlap_words is None:
        overlap_words = overlap_word_count()

    parts = [transcripts[0].text.strip()]
    for transcript in transcripts[1:]:
        remainder = " ".join(transcript.text.split()[overlap_words:])
        if remainder:
            parts.append(remainder)

    merged = " ".join(parts).strip()
    logger.debug(
        "Merged %d segments (%d overlap words each): %d characters",
        len(transcripts), overlap_words, len(merged),
    )
    return merged
