from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from .source import SourceKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class RawItem:
    kind: SourceKind
    identifier: str
    title: str
    url: Optional[str] = None
    snippet: Optional[str] = None
    discovered_at: datetime = field(default_factory=utcnow)
    metadata: Mapping[str, Any] = field(default_factory=dict)


class ExtractionStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(slots=True)
class ExtractedText:
    identifier: str
    text: str
    status: ExtractionStatus
    detail: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SummaryArtifact:
    identifier: str
    kind: SourceKind
    title: str
    body: str
    generated_at: datetime = field(default_factory=utcnow)
    url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PublishedRecord:
    identifier: str
    kind: SourceKind
    title: str
    path: str
    public_url: str
    published_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "kind": self.kind.value,
            "title": self.title,
            "path": self.path,
            "public_url": self.public_url,
            "published_at": self.published_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, row: Mapping[str, Any]) -> "PublishedRecord":
        return cls(
            identifier=str(row["identifier"]),
            kind=SourceKind(row["kind"]),
            title=str(row.get("title") or ""),
            path=str(row.get("path") or ""),
            public_url=str(row.get("public_url") or ""),
            published_at=datetime.fromisoformat(row["published_at"]) if row.get("published_at") else utcnow(),
        )
