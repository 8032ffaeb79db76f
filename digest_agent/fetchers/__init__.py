"""Source adapters: one fetch function per source kind.

Each adapter maps a ``SourceConfig`` to a bounded list of ``RawItem``s,
skipping malformed entries and raising ``SourceUnavailable`` when the source
cannot be reached at all.
"""

from typing import Callable, List, Mapping

from ..models import RawItem, SourceConfig, SourceKind
from .arxiv import fetch_arxiv
from .custom_site import fetch_custom_site
from .github_trending import fetch_github_trending
from .hacker_news import fetch_hacker_news
from .xai_search import fetch_xai_search

SourceAdapter = Callable[[SourceConfig], List[RawItem]]

ADAPTERS: Mapping[SourceKind, SourceAdapter] = {
    SourceKind.HACKER_NEWS: fetch_hacker_news,
    SourceKind.GITHUB_TRENDING: fetch_github_trending,
    SourceKind.XAI_SEARCH: fetch_xai_search,
    SourceKind.CUSTOM_SITE: fetch_custom_site,
    SourceKind.ARXIV: fetch_arxiv,
}

__all__ = [
    "ADAPTERS",
    "SourceAdapter",
    "fetch_arxiv",
    "fetch_custom_site",
    "fetch_github_trending",
    "fetch_hacker_news",
    "fetch_xai_search",
]
