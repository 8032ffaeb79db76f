"""Typed models used across the application."""

from .source import SourceConfig, SourceKind
from .item import (
    ExtractedText,
    ExtractionStatus,
    PublishedRecord,
    RawItem,
    SummaryArtifact,
    utcnow,
)

__all__ = [
    "SourceConfig",
    "SourceKind",
    "RawItem",
    "ExtractedText",
    "ExtractionStatus",
    "SummaryArtifact",
    "PublishedRecord",
    "utcnow",
]
