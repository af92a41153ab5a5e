"""
Podcast directory search: find a show's RSS feed from its name.

Tries the Podcast Index API first (when credentials are configured), then
falls back to the Apple Podcasts search API with a minimum name-similarity
threshold. Directory failures are logged and treated as "not found".
"""

import difflib
import hashlib
import logging
import time
from typing import Dict, List, Optional

import httpx

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()


def similarity(a: str, b: str) -> float:
    """Case-insensitive similarity ratio in [0, 1]."""
    return difflib.SequenceMatcher(None, a.lower().strip(), b.lower().strip()).ratio()


def podcast_index_headers(api_key: str, api_secret: str, now: Optional[int] = None) -> Dict[str, str]:
    """Podcast Index auth: sha1(key + secret + unix time)."""
    auth_date = str(int(time.time()) if now is None else now)
    digest = hashlib.sha1(
        (api_key + api_secret + auth_date).encode("utf-8")
    ).hexdigest()
    return {
        "X-Auth-Date": auth_date,
        "X-Auth-Key": api_key,
        "Authorization": digest,
        "User-Agent": cfg.USER_AGENT,
    }


async def search_podcast_index(client: httpx.AsyncClient, podcast_name: str) -> List[Dict]:
    if not cfg.PODCAST_INDEX_KEY or not cfg.PODCAST_INDEX_SECRET:
        logger.info("Podcast Index API keys not configured, skipping...")
        return []
    try:
        response = await client.get(
            cfg.PODCAST_INDEX_SEARCH_URL,
            params={"q": podcast_name},
            headers=podcast_index_headers(
                cfg.PODCAST_INDEX_KEY, cfg.PODCAST_INDEX_SECRET
            ),
        )
        response.raise_for_status()
        return response.json().get("feeds") or []
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        logger.error("Podcast Index search error: %s", exc)
        return []


async def search_apple_podcasts(client: httpx.AsyncClient, podcast_name: str) -> Optional[str]:
    """Return the feed URL of the closest-named show, if close enough."""
    logger.info("Searching Apple Podcasts for: %s", podcast_name)
    try:
        response = await client.get(
            cfg.ITUNES_SEARCH_URL,
            params={
                "term": podcast_name,
                "media": "podcast",
                "entity": "podcast",
                "limit": 5,
            },
        )
        response.raise_for_status()
        results = response.json().get("results") or []
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        logger.error("Apple Podcasts search error: %s", exc)
        return None

    best_feed, best_score = None, 0.0
    for podcast in results:
        feed_url = podcast.get("feedUrl")
        if not feed_url:
            continue
        score = similarity(podcast.get("collectionName") or "", podcast_name)
        if score > best_score:
            best_feed, best_score = feed_url, score

    if best_score < cfg.FEED_MATCH_MIN_SCORE:
        logger.info(
            'No iTunes match found for "%s" (best score: %.2f)',
            podcast_name, best_score,
        )
        return None

    logger.info("Found RSS feed via iTunes API: %s (score: %.2f)", best_feed, best_score)
    return best_feed


async def find_rss_feed(
    podcast_name: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """Look the show up in each directory in turn."""
    logger.info("Attempting to find RSS feed for: %s", podcast_name)
    async with httpx.AsyncClient(
        timeout=cfg.HTTP_TIMEOUT_SECONDS,
        transport=transport,
        headers={"User-Agent": cfg.USER_AGENT},
    ) as client:
        feeds = await search_podcast_index(client, podcast_name)
        for feed in feeds:
            if feed.get("url"):
                logger.info("Found via Podcast Index API: %s", feed["url"])
                return feed["url"]
        return await search_apple_podcasts(client, podcast_name)
