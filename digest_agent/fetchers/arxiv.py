from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

import feedparser

from ..errors import SourceUnavailable
from ..models import RawItem, SourceConfig, utcnow
from ..processors.normalize import clean_html_to_text, normalize_plain_text
from ..utils.logging import get_logger
from .http import get_source

logger = get_logger("digest.fetchers.arxiv")

ARXIV_RSS_URL = "https://rss.arxiv.org/rss/{category}"
ARXIV_HTML_URL = "https://arxiv.org/html/{arxiv_id}"

_ABS_ID_RE = re.compile(r"arxiv\.org/abs/([^/?#\s]+?)(v\d+)?$")
_SKIPPED_ANNOUNCE_TYPES = {"replace", "replace-cross"}


def arxiv_id_from_link(link: str) -> Optional[str]:
    match = _ABS_ID_RE.search(link.strip())
    return match.group(1) if match else None


def _parse_datetime(entry: dict) -> Optional[datetime]:
    # feedparser may provide 'published_parsed' or 'updated_parsed'
    for key in ("published_parsed", "updated_parsed"):
        tm = entry.get(key)
        if tm:
            return datetime(*tm[:6], tzinfo=timezone.utc)
    return None


def _to_raw_item(config: SourceConfig, entry: dict, category: str) -> Optional[RawItem]:
    if entry.get("arxiv_announce_type") in _SKIPPED_ANNOUNCE_TYPES:
        return None
    link = entry.get("link") or ""
    arxiv_id = arxiv_id_from_link(link)
    if not arxiv_id:
        raise ValueError(f"no arXiv id in link '{link}'")
    title = normalize_plain_text(entry.get("title"))
    if not title:
        raise ValueError(f"paper {arxiv_id} has no title")

    abstract = clean_html_to_text(entry.get("summary"))
    # listing summaries start with "arXiv:<id> Announce Type: new Abstract: ..."
    if "Abstract:" in abstract:
        abstract = abstract.split("Abstract:", 1)[1].strip()

    return RawItem(
        kind=config.kind,
        identifier=f"arxiv:{arxiv_id}",
        title=title,
        url=ARXIV_HTML_URL.format(arxiv_id=arxiv_id),
        snippet=abstract or None,
        discovered_at=_parse_datetime(entry) or utcnow(),
        metadata={
            "authors": normalize_plain_text(entry.get("author")),
            "category": category,
            "abstract_url": link,
        },
    )


def fetch_arxiv(config: SourceConfig) -> List[RawItem]:
    """Fetch today's new papers from the arXiv RSS listing of each category.

    The network request goes through ``requests`` for consistent timeouts and
    headers; ``feedparser`` parses the body. Cross-listed papers appear once.
    """
    categories = list(config.params.get("categories") or ["cs.AI"])
    by_id: Dict[str, RawItem] = {}
    failures: List[str] = []

    for category in categories:
        url = ARXIV_RSS_URL.format(category=category)
        try:
            resp = get_source(config.name, url, timeout=config.timeout, attempts=config.fetch_attempts)
        except SourceUnavailable as exc:
            logger.warning("arXiv listing failed for %s: %s", category, exc.reason)
            failures.append(exc.reason)
            continue

        parsed = feedparser.parse(resp.content)
        if getattr(parsed, "bozo", False):
            # feedparser sets bozo on feed errors but may still parse entries
            logger.debug("Feed 'bozo' flagged for %s: %s", url, getattr(parsed, "bozo_exception", None))

        for entry in getattr(parsed, "entries", []) or []:
            try:
                item = _to_raw_item(config, entry, category)
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping arXiv entry: %s", exc)
                continue
            if item is not None:
                by_id.setdefault(item.identifier, item)

    if failures and len(failures) == len(categories):
        raise SourceUnavailable(config.name, "; ".join(failures))

    items = list(by_id.values())[: config.max_items]
    logger.info("Fetched %d arXiv papers from %d categories", len(items), len(categories))
    return items
