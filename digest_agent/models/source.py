from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class SourceKind(str, Enum):
    HACKER_NEWS = "hacker_news"
    GITHUB_TRENDING = "github_trending"
    XAI_SEARCH = "xai_search"
    CUSTOM_SITE = "custom_site"
    ARXIV = "arxiv"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    SourceKind.HACKER_NEWS: "Hacker News",
    SourceKind.GITHUB_TRENDING: "GitHub Trending",
    SourceKind.XAI_SEARCH: "xAI News Search",
    SourceKind.CUSTOM_SITE: "Custom Site",
    SourceKind.ARXIV: "arXiv",
}


@dataclass(frozen=True, slots=True)
class SourceConfig:
    """Configuration for one content source, fixed for the duration of a run."""

    kind: SourceKind
    params: Mapping[str, Any] = field(default_factory=dict)
    credential_env: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    timeout: float = 60.0
    max_items: int = 20
    item_concurrency: int = 3
    fetch_attempts: int = 2

    def __post_init__(self) -> None:
        # freeze params so adapters cannot mutate shared config
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def name(self) -> str:
        return self.kind.value
