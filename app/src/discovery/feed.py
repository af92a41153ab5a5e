"""
RSS feed parsing and episode matching.

Episodes are scored by title similarity, plus a bonus when the feed's
``itunes:duration`` is close to a known duration. Duration data is often
missing on one side or the other, so the bonus is best-effort: without it
the match is decided on title alone.
"""

import logging
from typing import Iterable, Optional, Tuple

import feedparser
import httpx

from configs.config import get_config
from src.discovery.search import find_rss_feed, similarity
from src.transcription.errors import ResolutionError
from src.transcription.models import ResolvedEpisode

logger = logging.getLogger(__name__)

cfg = get_config()

# (max difference in seconds, score bonus), checked in order
DURATION_BONUSES = ((10, 0.3), (60, 0.1))


def duration_to_seconds(value) -> int:
    """Parse ``HH:MM:SS``, ``MM:SS`` or plain seconds; 0 when unparseable."""
    if value is None or value == "":
        return 0
    parts = str(value).strip().split(":")
    try:
        numbers = [float(part) for part in parts]
    except ValueError:
        return 0
    if len(numbers) == 3:
        return int(numbers[0] * 3600 + numbers[1] * 60 + numbers[2])
    if len(numbers) == 2:
        return int(numbers[0] * 60 + numbers[1])
    return int(numbers[0]) if len(numbers) == 1 else 0


def match_score(entry, episode_title: str, duration_hint: Optional[int] = None) -> float:
    score = similarity(entry.get("title") or "", episode_title)
    feed_seconds = duration_to_seconds(entry.get("itunes_duration"))
    if duration_hint and feed_seconds:
        diff = abs(feed_seconds - duration_hint)
        for limit, bonus in DURATION_BONUSES:
            if diff < limit:
                score += bonus
                break
    return score


def select_episode(
    entries: Iterable, episode_title: str, duration_hint: Optional[int] = None
) -> Tuple[Optional[dict], float]:
    """Best-scoring entry, or the newest (first) one when nothing scores."""
    entries = list(entries)
    best, best_score = None, 0.0
    for entry in entries:
        score = match_score(entry, episode_title, duration_hint)
        if score > best_score:
            best, best_score = entry, score
    if best is None and entries:
        best = entries[0]
    return best, best_score


def enclosure_url(entry) -> Optional[str]:
    for enclosure in entry.get("enclosures") or []:
        href = enclosure.get("href") or enclosure.get("url")
        if href:
            return href
    return None


class EpisodeResolver:
    """Discovery collaborator used by the job controller."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport

    async def find_feed(self, podcast_name: str) -> Optional[str]:
        return await find_rss_feed(podcast_name, transport=self._transport)

    async def fetch_feed(self, feed_url: str):
        try:
            async with httpx.AsyncClient(
                timeout=cfg.HTTP_TIMEOUT_SECONDS,
                follow_redirects=True,
                transport=self._transport,
                headers={"User-Agent": cfg.USER_AGENT},
            ) as client:
                response = await client.get(feed_url)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise ResolutionError(f"Could not fetch RSS feed {feed_url}: {exc}") from exc
        return feedparser.parse(response.content)

    async def resolve_episode(
        self,
        feed_url: str,
        episode_title: str,
        duration_hint: Optional[int] = None,
    ) -> ResolvedEpisode:
        feed = await self.fetch_feed(feed_url)
        entries = feed.entries
        if not entries:
            reason = getattr(feed, "bozo_exception", None) or "no episodes"
            raise ResolutionError(f"RSS feed has no usable episodes ({reason})")

        logger.info(
            'Searching for episode: "%s" in %d items...', episode_title, len(entries)
        )
        entry, score = select_episode(entries, episode_title, duration_hint)
        logger.info('Best match found: "%s" (score: %.2f)', entry.get("title"), score)

        audio_url = enclosure_url(entry)
        if not audio_url:
            raise ResolutionError("No audio URL found for this episode")

        return ResolvedEpisode(
            title=entry.get("title") or episode_title,
            audio_url=audio_url,
            published=entry.get("published"),
            duration=entry.get("itunes_duration"),
        )
