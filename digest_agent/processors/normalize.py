from __future__ import annotations

import html
import re
import unicodedata
from typing import Iterable, List
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup

_whitespace_re = re.compile(r"\s+")
_blank_lines_re = re.compile(r"\n\s*\n+")
_control_chars_re = re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F]")

_PUNCT_TRANSLATION = {
    ord("\u2018"): "'",  # left single quote
    ord("\u2019"): "'",  # right single quote
    ord("\u201C"): '"',  # left double quote
    ord("\u201D"): '"',  # right double quote
    ord("\u2013"): "-",  # en dash
    ord("\u2014"): "-",  # em dash
    ord("\u00A0"): " ",  # non-breaking space
}

TRACKING_PARAMS = frozenset(
    {"utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "fbclid", "gclid", "ref"}
)

BOILERPLATE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "svg", "iframe")


def clean_html_to_text(raw_html: str | None) -> str:
    """Clean an HTML fragment to a single line of plain text.

    - Strip tags
    - Unescape HTML entities
    - Collapse whitespace
    """
    if not raw_html:
        return ""

    soup = BeautifulSoup(raw_html, "html.parser")
    text = soup.get_text(" ")
    text = html.unescape(text)
    text = _whitespace_re.sub(" ", text)
    return text.strip()


def html_to_paragraphs(raw_html: str | None) -> List[str]:
    """Reduce a full HTML page to its readable lines.

    Boilerplate containers are dropped before text is collected; each
    remaining text block becomes one normalized line.
    """
    if not raw_html:
        return []
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(list(BOILERPLATE_TAGS)):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    lines = []
    for chunk in root.get_text("\n").split("\n"):
        line = normalize_plain_text(chunk)
        if line:
            lines.append(line)
    return lines


def normalize_plain_text(text: str | None) -> str:
    """Normalize plain text for downstream processing.

    - Strip BOM
    - Replace curly quotes/dashes and non-breaking spaces
    - Unicode normalize (NFKC)
    - Remove control characters
    - Collapse whitespace
    """
    if not text:
        return ""

    if text.startswith("\ufeff"):
        text = text.lstrip("\ufeff")

    text = text.translate(_PUNCT_TRANSLATION)
    text = unicodedata.normalize("NFKC", text)
    text = _control_chars_re.sub(" ", text)
    return _whitespace_re.sub(" ", text).strip()


def join_paragraphs(lines: Iterable[str]) -> str:
    return _blank_lines_re.sub("\n\n", "\n".join(lines)).strip()


def truncate_words(text: str, max_words: int) -> str:
    words = text.split()
    return " ".join(words[:max_words]) if len(words) > max_words else text


def canonical_url(url: str) -> str:
    """Canonical form of a URL for use as a dedup identifier.

    Lowercases scheme and host, drops tracking parameters, the fragment and a
    trailing slash on the path.
    """
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        return url.strip()
    query = urlencode(
        [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    )
    path = parsed.path.rstrip("/") or ""
    return urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, query, "")
    )
