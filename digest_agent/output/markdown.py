from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping, Sequence

from ..models import PublishedRecord, RawItem, SourceKind

# Metadata keys rendered into a document, with their display labels
_METADATA_LABELS = {
    "score": "Score",
    "comments": "Comments",
    "stars": "Stars",
    "language": "Language",
    "authors": "Authors",
    "category": "Category",
    "discussion": "Discussion",
    "abstract_url": "Abstract",
}


def _metadata_lines(metadata: Mapping[str, Any]) -> list[str]:
    lines = []
    for key, label in _METADATA_LABELS.items():
        value = metadata.get(key)
        if value in (None, ""):
            continue
        lines.append(f"- **{label}:** {value}")
    return lines


def format_document_title(item: RawItem) -> str:
    return f"[{item.kind.label}] {item.title}"


def format_document(item: RawItem, summary: str, generated_at: datetime) -> str:
    """Render the published markdown document for one summarized item.

    Sections: title, source details, Summary, Original Source.
    """
    details = [f"- **Source:** {item.kind.label}", *_metadata_lines(item.metadata)]
    details.append(f"- **Generated:** {generated_at.strftime('%Y-%m-%d %H:%M UTC')}")
    original = f"[{item.title}]({item.url})" if item.url else "(no link)"

    return (
        f"# {item.title}\n\n"
        + "\n".join(details)
        + f"\n\n## Summary\n\n{summary.strip()}\n\n"
        f"## Original Source\n\n{original}\n"
    )


def format_digest_title(kind: SourceKind, day: date) -> str:
    return f"{kind.label} digest for {day.isoformat()}"


def format_digest(kind: SourceKind, records: Sequence[PublishedRecord], day: date) -> str:
    """Render the daily index of every document published for a source."""
    entries = "\n".join(f"- [{r.title}]({r.public_url})" for r in records)
    return f"# {format_digest_title(kind, day)}\n\n{entries if entries else '- (nothing new)'}\n"
