from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional

import requests

from ..errors import SourceUnavailable
from ..models import RawItem, SourceConfig
from ..processors.normalize import canonical_url, clean_html_to_text
from ..utils.logging import get_logger
from .http import get_source

logger = get_logger("digest.fetchers.hacker_news")

HN_API_BASE = "https://hacker-news.firebaseio.com/v0"
HN_ITEM_URL = "https://news.ycombinator.com/item?id={id}"

# ids scanned per requested item; low-score stories are filtered out afterwards
_SCAN_FACTOR = 3


def _get_story(story_id: int, *, timeout: float) -> Optional[dict]:
    resp = requests.get(f"{HN_API_BASE}/item/{story_id}.json", timeout=timeout)
    resp.raise_for_status()
    data = resp.json()
    return data if isinstance(data, dict) else None


def _to_raw_item(config: SourceConfig, story: dict) -> Optional[RawItem]:
    if story.get("type") != "story" or story.get("deleted") or story.get("dead"):
        return None
    title = (story.get("title") or "").strip()
    if not title:
        raise ValueError(f"story {story.get('id')} has no title")
    score = int(story.get("score") or 0)
    if score < int(config.params.get("min_score", 0)):
        return None

    discussion = HN_ITEM_URL.format(id=int(story["id"]))
    url = story.get("url")

    # Ask/Show posts without a link carry their content inline
    snippet = None
    text = story.get("text") or ""
    min_len = int(config.params.get("min_text_length", 100))
    max_len = int(config.params.get("max_text_length", 10_000))
    if text and min_len <= len(text) < max_len:
        snippet = clean_html_to_text(text)

    return RawItem(
        kind=config.kind,
        identifier=canonical_url(url) if url else discussion,
        title=title,
        url=url,
        snippet=snippet,
        metadata={"score": score, "comments": int(story.get("descendants") or 0), "discussion": discussion},
    )


def fetch_hacker_news(config: SourceConfig) -> List[RawItem]:
    """Fetch top Hacker News stories above the configured score threshold."""
    resp = get_source(
        config.name,
        f"{HN_API_BASE}/topstories.json",
        timeout=config.timeout,
        attempts=config.fetch_attempts,
    )
    try:
        ids: Any = resp.json()
    except ValueError as exc:
        raise SourceUnavailable(config.name, f"invalid topstories payload: {exc}") from exc
    candidates = [i for i in (ids or []) if isinstance(i, int)][: config.max_items * _SCAN_FACTOR]
    logger.debug("Fetched %d top story IDs", len(candidates))

    def load(story_id: int) -> Optional[RawItem]:
        try:
            story = _get_story(story_id, timeout=config.timeout)
            return _to_raw_item(config, story) if story else None
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            logger.warning("Skipping story %s: %s", story_id, exc)
            return None

    with ThreadPoolExecutor(max_workers=8, thread_name_prefix="hn") as executor:
        loaded = list(executor.map(load, candidates))

    items = [item for item in loaded if item is not None][: config.max_items]
    logger.info("Fetched %d Hacker News stories", len(items))
    return items
