"""Tests for text normalization and page extraction."""

from unittest.mock import MagicMock, patch

import requests

from digest_agent.models import ExtractionStatus, RawItem, SourceKind
from digest_agent.processors.extract import ContentExtractor, paper_body_lines
from digest_agent.processors.normalize import canonical_url, clean_html_to_text, html_to_paragraphs, truncate_words

PARAGRAPH = "Readable article text that goes on for a while and explains something useful."

ARTICLE_HTML = f"""
<html><head><title>Post</title><script>var tracking = 1;</script></head>
<body>
  <nav>Home | About | Contact</nav>
  <article>
    <h1>A post</h1>
    <p>{PARAGRAPH}</p>
    <p>{PARAGRAPH}</p>
    <p>{PARAGRAPH}</p>
  </article>
  <footer>Copyright</footer>
</body></html>
"""


def _streamed(body, *, status=200, content_type="text/html; charset=utf-8", encoding="utf-8"):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = {"Content-Type": content_type}
    resp.encoding = encoding
    data = body.encode("utf-8") if isinstance(body, str) else body
    resp.iter_content.return_value = [data[i : i + 100] for i in range(0, len(data), 100)]
    resp.__enter__.return_value = resp
    return resp


class TestNormalize:
    def test_canonical_url(self):
        assert canonical_url("HTTPS://Example.COM/a/b/?utm_source=x&id=3#frag") == "https://example.com/a/b?id=3"
        assert canonical_url("not a url") == "not a url"

    def test_clean_html_to_text(self):
        assert clean_html_to_text("<p>Fish &amp; <b>chips</b></p>\n\n<p>today</p>") == "Fish & chips today"
        assert clean_html_to_text(None) == ""

    def test_html_to_paragraphs_drops_boilerplate(self):
        lines = html_to_paragraphs(ARTICLE_HTML)

        assert lines[0] == "A post"
        assert lines.count(PARAGRAPH) == 3
        assert not any("Home" in line or "Copyright" in line or "tracking" in line for line in lines)

    def test_truncate_words(self):
        assert truncate_words("one two three four", 2) == "one two"
        assert truncate_words("one two", 5) == "one two"


class TestPaperBody:
    def test_skips_title_and_affiliations(self):
        lines = [
            "Learning to Plan with Language Models",
            "Ada Lovelace, Department of Computing, University of Somewhere, ada@example.org",
            "Abstract",
            "We study how large language models can be used to plan multi-step tasks in complex environments. " * 2,
            "short",
            "Our results show that planning quality improves with model size across every benchmark we tried.",
        ]

        body = paper_body_lines(lines)

        assert len(body) == 2
        assert body[0].startswith("We study")
        assert body[1].startswith("Our results")


class TestContentExtractor:
    @patch("digest_agent.processors.extract.requests.get")
    def test_html_page_is_ok(self, mock_get):
        mock_get.return_value = _streamed(ARTICLE_HTML)
        extractor = ContentExtractor(min_chars=100)

        result = extractor.extract("https://example.com/post")

        assert result.status is ExtractionStatus.OK
        assert PARAGRAPH in result.text
        assert "Copyright" not in result.text
        _, kwargs = mock_get.call_args
        assert kwargs["stream"] is True

    @patch("digest_agent.processors.extract.requests.get")
    def test_short_page_is_empty(self, mock_get):
        mock_get.return_value = _streamed("<html><body><p>Tiny.</p></body></html>")

        result = ContentExtractor(min_chars=100).extract("https://example.com/tiny")

        assert result.status is ExtractionStatus.EMPTY
        assert "characters" in result.detail

    @patch("digest_agent.processors.extract.requests.get")
    def test_http_error_is_failed(self, mock_get):
        mock_get.return_value = _streamed("gone", status=404)

        result = ContentExtractor().extract("https://example.com/missing")

        assert result.status is ExtractionStatus.FAILED
        assert "HTTP 404" in result.detail

    @patch("digest_agent.processors.extract.requests.get")
    def test_network_error_is_failed(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("connection refused")

        result = ContentExtractor().extract("https://example.com/down")

        assert result.status is ExtractionStatus.FAILED
        assert "refused" in result.detail

    def test_invalid_url_is_failed(self):
        result = ContentExtractor().extract("ftp://example.com/file")

        assert result.status is ExtractionStatus.FAILED

    @patch("digest_agent.processors.extract.requests.get")
    def test_body_is_capped(self, mock_get):
        mock_get.return_value = _streamed("x" * 5000, content_type="text/plain")

        result = ContentExtractor(max_bytes=1000, min_chars=10).extract("https://example.com/big.txt")

        assert result.status is ExtractionStatus.OK
        assert len(result.text) == 1000

    @patch("digest_agent.processors.extract.requests.get")
    def test_meta_charset_used_when_header_has_none(self, mock_get):
        page = f'<html><head><meta charset="utf-8"></head><body><p>Un café. {PARAGRAPH}</p></body></html>'
        # requests fills in ISO-8859-1 for text/html without a charset parameter
        mock_get.return_value = _streamed(page, content_type="text/html", encoding="ISO-8859-1")

        result = ContentExtractor(min_chars=10).extract("https://example.com/cafe")

        assert "Un café." in result.text

    @patch("digest_agent.processors.extract.requests.get")
    def test_undeclared_charset_defaults_to_utf8(self, mock_get):
        mock_get.return_value = _streamed("Crème brûlée " * 5, content_type="text/plain", encoding="ISO-8859-1")

        result = ContentExtractor(min_chars=10).extract("https://example.com/menu.txt")

        assert result.text.startswith("Crème brûlée")

    @patch("digest_agent.processors.extract.requests.get")
    def test_explicit_header_charset_wins(self, mock_get):
        page = f"<html><body><p>Un café. {PARAGRAPH}</p></body></html>".encode("latin-1")
        mock_get.return_value = _streamed(page, content_type="text/html; charset=ISO-8859-1", encoding="ISO-8859-1")

        result = ContentExtractor(min_chars=10).extract("https://example.com/latin")

        assert "Un café." in result.text

    @patch("digest_agent.processors.extract.requests.get")
    def test_binary_content_is_empty(self, mock_get):
        mock_get.return_value = _streamed(b"%PDF-1.7", content_type="application/pdf")

        result = ContentExtractor().extract("https://example.com/paper.pdf")

        assert result.status is ExtractionStatus.EMPTY
        assert "application/pdf" in result.detail

    def test_item_without_url_uses_snippet(self):
        item = RawItem(
            kind=SourceKind.HACKER_NEWS,
            identifier="https://news.ycombinator.com/item?id=1",
            title="Ask HN",
            snippet=PARAGRAPH * 3,
        )

        result = ContentExtractor(min_chars=100).extract_item(item)

        assert result.status is ExtractionStatus.OK
        assert result.identifier == item.identifier

    @patch("digest_agent.processors.extract.requests.get")
    def test_unreachable_page_falls_back_to_long_snippet(self, mock_get):
        mock_get.side_effect = requests.Timeout("timed out")
        item = RawItem(
            kind=SourceKind.ARXIV,
            identifier="arxiv:2601.00001",
            title="A paper",
            url="https://arxiv.org/html/2601.00001",
            snippet=PARAGRAPH * 3,
        )

        result = ContentExtractor(min_chars=100).extract_item(item)

        assert result.status is ExtractionStatus.OK
        assert result.text.startswith("Readable article text")
        assert result.detail.startswith("snippet fallback")

    @patch("digest_agent.processors.extract.requests.get")
    def test_short_snippet_does_not_hide_failure(self, mock_get):
        mock_get.side_effect = requests.Timeout("timed out")
        item = RawItem(
            kind=SourceKind.HACKER_NEWS,
            identifier="https://example.com/a",
            title="Story",
            url="https://example.com/a",
            snippet="Too short.",
        )

        result = ContentExtractor(min_chars=100).extract_item(item)

        assert result.status is ExtractionStatus.FAILED
