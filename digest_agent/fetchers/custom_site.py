from __future__ import annotations

from typing import Dict, List
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from ..models import RawItem, SourceConfig, utcnow
from ..processors.normalize import canonical_url, normalize_plain_text
from ..utils.logging import get_logger
from .http import get_source, validated_url

logger = get_logger("digest.fetchers.custom_site")


def _page_item(config: SourceConfig, url: str, soup: BeautifulSoup) -> RawItem:
    title = soup.title.string.strip() if soup.title and soup.title.string else url
    meta_desc = soup.find("meta", attrs={"name": "description"})
    description = meta_desc.get("content", "").strip() if meta_desc else ""
    discovered = utcnow()
    return RawItem(
        kind=config.kind,
        # one snapshot per day of the same page
        identifier=f"{canonical_url(url)}#{discovered.date().isoformat()}",
        title=normalize_plain_text(title),
        url=url,
        snippet=description or None,
        discovered_at=discovered,
    )


def _link_items(config: SourceConfig, base_url: str, soup: BeautifulSoup, selector: str) -> List[RawItem]:
    by_id: Dict[str, RawItem] = {}
    for anchor in soup.select(selector):
        href = anchor.get("href")
        title = normalize_plain_text(anchor.get_text(" "))
        try:
            if not href or not title:
                raise ValueError("missing href or text")
            url = validated_url(urljoin(base_url, href))
        except ValueError as exc:
            logger.warning("Skipping link %r: %s", href, exc)
            continue
        identifier = canonical_url(url)
        by_id.setdefault(identifier, RawItem(kind=config.kind, identifier=identifier, title=title, url=url))
    return list(by_id.values())


def fetch_custom_site(config: SourceConfig) -> List[RawItem]:
    """Fetch the configured site.

    Without ``link_selector`` the page itself is the single item. With it,
    every matching anchor becomes an item pointing at the linked page.
    """
    url = validated_url(str(config.params["url"]))
    resp = get_source(config.name, url, timeout=config.timeout, attempts=config.fetch_attempts)
    soup = BeautifulSoup(resp.text, "html.parser")

    selector = config.params.get("link_selector")
    if selector:
        items = _link_items(config, resp.url or url, soup, selector)
        logger.info("Found %d links on %s", len(items), url)
        return items[: config.max_items]

    logger.info("Fetched custom site page: %s", url)
    return [_page_item(config, url, soup)]
