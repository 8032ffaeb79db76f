from __future__ import annotations

import codecs
from typing import List, Optional

import requests
from bs4.dammit import EncodingDetector

from ..fetchers.http import DEFAULT_HEADERS, validated_url
from ..models import ExtractedText, ExtractionStatus, RawItem, SourceKind
from ..utils.logging import get_logger
from .normalize import html_to_paragraphs, join_paragraphs, normalize_plain_text

logger = get_logger("digest.processors.extract")

_TEXT_TYPES = ("text/plain", "text/markdown")
_AFFILIATION_WORDS = ("university", "lab", "department", "institute", "corresponding author")


def _is_paper_body_line(line: str, min_length: int = 100) -> bool:
    if "@" in line or len(line) < min_length:
        return False
    lower = line.lower()
    if any(word in lower for word in _AFFILIATION_WORDS):
        return False
    return "." in line


def paper_body_lines(lines: List[str], *, min_line_length: int = 40) -> List[str]:
    """Skip a paper's title block and affiliations; keep long prose lines.

    The body starts at the first long sentence-like line that does not look
    like an author or affiliation line.
    """
    start = 0
    for i, line in enumerate(lines):
        if len(line) >= min_line_length and _is_paper_body_line(line):
            start = i
            break
    return [line for line in lines[start:] if len(line) >= min_line_length]


def _body_encoding(body: bytes, header_encoding: Optional[str], *, is_html: bool) -> str:
    """Charset from the header, else the one the document declares, else UTF-8."""
    for candidate in (header_encoding, EncodingDetector.find_declared_encoding(body, is_html=is_html)):
        if not candidate:
            continue
        try:
            return codecs.lookup(candidate).name
        except LookupError:
            logger.debug("Ignoring unknown charset %r", candidate)
    return "utf-8"


class ContentExtractor:
    """Fetch a page with a byte ceiling and reduce it to readable text.

    ``extract`` never raises: network and parse problems are reported as
    ``failed`` and pages without usable text as ``empty``.
    """

    def __init__(
        self,
        *,
        max_bytes: int = 2_000_000,
        min_chars: int = 200,
        timeout: float = 20.0,
    ) -> None:
        self.max_bytes = max_bytes
        self.min_chars = min_chars
        self.timeout = timeout

    def _download(self, url: str) -> tuple[str, str]:
        with requests.get(url, headers=DEFAULT_HEADERS, timeout=self.timeout, stream=True) as resp:
            if resp.status_code >= 400:
                raise requests.HTTPError(f"HTTP {resp.status_code} for {url}", response=resp)
            raw_type = resp.headers.get("Content-Type") or ""
            content_type = raw_type.split(";")[0].strip().lower()
            chunks: List[bytes] = []
            size = 0
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if not chunk:
                    continue
                chunks.append(chunk)
                size += len(chunk)
                if size >= self.max_bytes:
                    logger.debug("Truncating %s at %d bytes", url, self.max_bytes)
                    break
            body = b"".join(chunks)[: self.max_bytes]
            # requests reports ISO-8859-1 for any text/* without a charset, so only trust an explicit one
            header_encoding = resp.encoding if "charset=" in raw_type.lower() else None
        encoding = _body_encoding(body, header_encoding, is_html="html" in content_type or not content_type)
        return content_type, body.decode(encoding, errors="replace")

    def _status_for(self, identifier: str, text: str) -> ExtractedText:
        if len(text) < self.min_chars:
            return ExtractedText(identifier, text, ExtractionStatus.EMPTY, f"only {len(text)} characters of text")
        return ExtractedText(identifier, text, ExtractionStatus.OK)

    def extract(self, url: str, *, identifier: Optional[str] = None, paper: bool = False) -> ExtractedText:
        identifier = identifier or url
        try:
            content_type, body = self._download(validated_url(url))
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Extraction failed for %s: %s", url, exc)
            return ExtractedText(identifier, "", ExtractionStatus.FAILED, str(exc))

        if content_type in _TEXT_TYPES:
            return self._status_for(identifier, body.strip())
        if content_type and "html" not in content_type and "xml" not in content_type:
            return ExtractedText(identifier, "", ExtractionStatus.EMPTY, f"unsupported content type {content_type}")

        try:
            lines = html_to_paragraphs(body)
        except Exception as exc:  # noqa: BLE001 - parser failures are item-local
            logger.warning("Could not parse HTML from %s: %s", url, exc)
            return ExtractedText(identifier, "", ExtractionStatus.FAILED, f"parse error: {exc}")
        if paper:
            lines = paper_body_lines(lines)
        return self._status_for(identifier, join_paragraphs(lines))

    def extract_item(self, item: RawItem) -> ExtractedText:
        """Extract text for an item, falling back to its snippet.

        Items without a URL are summarized from their snippet. When the page
        cannot be used and the snippet is long enough on its own, the snippet
        is used instead (e.g. an arXiv abstract when no HTML rendering exists).
        """
        snippet = normalize_plain_text(item.snippet)
        if not item.url:
            return self._status_for(item.identifier, snippet)

        result = self.extract(item.url, identifier=item.identifier, paper=item.kind is SourceKind.ARXIV)
        if result.status is not ExtractionStatus.OK and len(snippet) >= self.min_chars:
            logger.info("Using source snippet for %s (%s)", item.identifier, result.detail)
            return ExtractedText(item.identifier, snippet, ExtractionStatus.OK, f"snippet fallback: {result.detail}")
        return result
