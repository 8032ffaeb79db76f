"""Processing pipeline: normalization, extraction, deduplication, summarization."""

from .normalize import canonical_url, clean_html_to_text, normalize_plain_text
from .dedup import BucketManifestStore, Deduplicator, LocalManifestStore
from .extract import ContentExtractor
from .summarize import Summarizer

__all__ = [
    "BucketManifestStore",
    "ContentExtractor",
    "Deduplicator",
    "LocalManifestStore",
    "Summarizer",
    "canonical_url",
    "clean_html_to_text",
    "normalize_plain_text",
]
