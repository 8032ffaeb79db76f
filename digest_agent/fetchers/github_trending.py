from __future__ import annotations

from typing import Dict, List, Optional

from bs4 import BeautifulSoup

from ..errors import SourceUnavailable
from ..models import RawItem, SourceConfig
from ..processors.normalize import normalize_plain_text
from ..utils.logging import get_logger
from .http import get_source

logger = get_logger("digest.fetchers.github_trending")

TRENDING_URL = "https://github.com/trending"


def trending_url(language: str) -> str:
    if not language:
        return f"{TRENDING_URL}?since=daily"
    return f"{TRENDING_URL}/{language}?since=daily"


def _parse_row(row, language: str, config: SourceConfig) -> Optional[RawItem]:
    anchor = row.select_one("h2 a[href]")
    if anchor is None:
        return None
    full_name = anchor["href"].strip().strip("/")
    if full_name.count("/") != 1:
        raise ValueError(f"unexpected repository href '{anchor['href']}'")

    desc_el = row.select_one("p")
    description = normalize_plain_text(desc_el.get_text(" ")) if desc_el else ""

    stars_el = row.select_one("a[href$='/stargazers']")
    stars = normalize_plain_text(stars_el.get_text()).replace(",", "") if stars_el else "0"

    link = f"https://github.com/{full_name}"
    return RawItem(
        kind=config.kind,
        identifier=link.lower(),
        title=full_name,
        url=link,
        snippet=description or None,
        metadata={"stars": stars, "language": language or "all"},
    )


def parse_trending_page(html: str, language: str, config: SourceConfig) -> List[RawItem]:
    """Parse the repositories listed on a GitHub trending page.

    Rows that cannot be parsed are skipped with a warning.
    """
    soup = BeautifulSoup(html, "html.parser")
    items: List[RawItem] = []
    for row in soup.select("article.Box-row"):
        try:
            item = _parse_row(row, language, config)
        except (KeyError, ValueError, AttributeError) as exc:
            logger.warning("Skipping trending row for '%s': %s", language or "all", exc)
            continue
        if item is None:
            logger.warning("Could not extract repository name from a trending row; skipping")
            continue
        items.append(item)
    return items


def fetch_github_trending(config: SourceConfig) -> List[RawItem]:
    """Fetch today's trending repositories for every configured language.

    A repository trending in several languages is returned once. One failing
    language is skipped; the source is unavailable only when all of them fail.
    """
    languages = list(config.params.get("languages") or [""])
    by_id: Dict[str, RawItem] = {}
    failures: List[str] = []

    for language in languages:
        try:
            resp = get_source(
                config.name,
                trending_url(language),
                timeout=config.timeout,
                attempts=config.fetch_attempts,
            )
        except SourceUnavailable as exc:
            logger.warning("Failed to fetch trending for language '%s': %s", language or "all", exc.reason)
            failures.append(exc.reason)
            continue
        repos = parse_trending_page(resp.text, language, config)
        logger.info("Found %d repositories for language '%s'", len(repos), language or "all")
        for repo in repos:
            by_id.setdefault(repo.identifier, repo)

    if failures and len(failures) == len(languages):
        raise SourceUnavailable(config.name, "; ".join(failures))
    return list(by_id.values())[: config.max_items]
