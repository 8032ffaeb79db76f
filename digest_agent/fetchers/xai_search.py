from __future__ import annotations

from typing import List

from ..errors import SourceUnavailable
from ..models import RawItem, SourceConfig
from ..processors.ai.parsing import parse_json_array
from ..processors.normalize import canonical_url, normalize_plain_text
from ..utils.logging import get_logger
from .http import request_source, validated_url

logger = get_logger("digest.fetchers.xai_search")

XAI_CHAT_URL = "https://api.x.ai/v1/chat/completions"

SEARCH_PROMPT = (
    "Search the web and X for the most important technology and world news of the last 24 hours. "
    "Return at most {limit} stories as a JSON array and nothing else. "
    'Each element must be an object with keys "title" (string), "url" (the original article URL) '
    'and "summary" (one or two sentences). Do not wrap the array in markdown.'
)


def fetch_xai_search(config: SourceConfig) -> List[RawItem]:
    """Ask xAI live search for a list of recent news stories."""
    if not config.api_key:
        raise SourceUnavailable(config.name, f"{config.credential_env or 'API key'} not configured")

    payload = {
        "model": config.params.get("model", "grok-3-latest"),
        "messages": [{"role": "user", "content": SEARCH_PROMPT.format(limit=config.max_items)}],
        "search_parameters": {"mode": "auto"},
        "temperature": 0.2,
    }
    resp = request_source(
        config.name,
        "POST",
        XAI_CHAT_URL,
        timeout=config.timeout,
        attempts=config.fetch_attempts,
        headers={"Authorization": f"Bearer {config.api_key}", "Content-Type": "application/json"},
        json=payload,
    )

    try:
        content = resp.json()["choices"][0]["message"]["content"]
        entries = parse_json_array(content)
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise SourceUnavailable(config.name, f"unusable search response: {exc}") from exc

    items: List[RawItem] = []
    for entry in entries:
        try:
            title = normalize_plain_text(str(entry["title"]))
            url = validated_url(str(entry["url"]).strip())
            if not title:
                raise ValueError("empty title")
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed search entry %r: %s", entry, exc)
            continue
        summary = entry.get("summary") if isinstance(entry, dict) else None
        items.append(
            RawItem(
                kind=config.kind,
                identifier=canonical_url(url),
                title=title,
                url=url,
                snippet=normalize_plain_text(summary) if isinstance(summary, str) else None,
            )
        )
    logger.info("xAI search returned %d usable stories", len(items))
    return items[: config.max_items]
