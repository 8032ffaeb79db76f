from __future__ import annotations

import time
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import requests

from ..errors import SourceUnavailable
from ..utils.logging import get_logger

logger = get_logger("digest.fetchers.http")


DEFAULT_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/127.0.0.0 Safari/537.36"
    )
}

_RETRY_DELAY_SECONDS = 1.0


def validated_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid URL for HTTP fetch: {url}")
    return url


def request_source(
    kind: str,
    method: str,
    url: str,
    *,
    timeout: float,
    attempts: int = 2,
    headers: Optional[Mapping[str, str]] = None,
    **kwargs: Any,
) -> requests.Response:
    """Issue a request for a source listing, raising ``SourceUnavailable`` on failure.

    Connection errors, timeouts, 429 and 5xx are retried up to ``attempts``
    times; other non-2xx statuses fail straight away.
    """
    merged = {**DEFAULT_HEADERS, **(headers or {})}
    last_reason = "no attempts made"
    for attempt in range(max(1, attempts)):
        try:
            resp = requests.request(method, url, headers=merged, timeout=timeout, **kwargs)
        except requests.RequestException as exc:
            last_reason = f"request error: {exc}"
        else:
            if resp.status_code < 400:
                return resp
            last_reason = f"HTTP {resp.status_code} from {url}"
            if resp.status_code != 429 and resp.status_code < 500:
                break
        if attempt + 1 < attempts:
            logger.warning(
                "%s fetch failed (attempt %s/%s): %s", kind, attempt + 1, attempts, last_reason
            )
            time.sleep(_RETRY_DELAY_SECONDS * (attempt + 1))
    raise SourceUnavailable(kind, last_reason)


def get_source(kind: str, url: str, *, timeout: float, attempts: int = 2, **kwargs: Any) -> requests.Response:
    logger.debug("Fetching %s listing from %s", kind, url)
    return request_source(kind, "GET", url, timeout=timeout, attempts=attempts, **kwargs)
