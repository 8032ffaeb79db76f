from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import yaml

from ..errors import ConfigurationMissing
from ..models import SourceConfig, SourceKind

SUPPORTED_BACKENDS = {"gemini", "ollama"}

# Which env flag enables each source, and its default
_ENABLE_FLAGS: Dict[SourceKind, tuple[str, bool]] = {
    SourceKind.HACKER_NEWS: ("ENABLE_HACKER_NEWS", True),
    SourceKind.GITHUB_TRENDING: ("ENABLE_GITHUB_TRENDING", False),
    SourceKind.XAI_SEARCH: ("ENABLE_XAI_SEARCH", False),
    SourceKind.CUSTOM_SITE: ("ENABLE_CUSTOM_SITE", False),
    SourceKind.ARXIV: ("ENABLE_ARXIV", True),
}

_SOURCE_FIELDS = {"kind", "enabled", "timeout", "max_items", "item_concurrency", "params"}


@dataclass(slots=True)
class Settings:
    """Run-wide settings resolved from the environment (and optional YAML file)."""

    supabase_url: str
    supabase_key: str = field(repr=False)
    bucket: str
    sources: List[SourceConfig] = field(default_factory=list)
    manifest_path: str = "manifest/published.json"
    dedup_store_path: Optional[str] = None
    processing_backend: str = "gemini"
    gemini_api_key: Optional[str] = field(default=None, repr=False)
    gemini_model: str = "gemini-1.5-flash"
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b-instruct"
    run_deadline: float = 900.0
    shutdown_grace: float = 30.0
    max_concurrent_summaries: int = 4
    max_concurrent_publishes: int = 4
    summary_max_attempts: int = 3
    summary_backoff: float = 2.0
    summary_timeout: float = 60.0
    summary_input_words: int = 1500
    publish_max_attempts: int = 3
    publish_retry_delay: float = 1.0
    extract_max_bytes: int = 2_000_000
    extract_min_chars: int = 200
    extract_timeout: float = 20.0


# ---------------- env helpers -----------------
def _require(env: Mapping[str, str], key: str, reason: str = "") -> str:
    value = (env.get(key) or "").strip()
    if not value:
        suffix = f" ({reason})" if reason else ""
        raise ConfigurationMissing(f"{key} must be set{suffix}")
    return value


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationMissing(f"{key} must be a boolean, got '{raw}'")


def _env_number(env: Mapping[str, str], key: str, default: Any, cast: type) -> Any:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ConfigurationMissing(f"{key} must be a {cast.__name__}, got '{raw}'") from None
    if value <= 0:
        raise ConfigurationMissing(f"{key} must be positive, got '{raw}'")
    return value


def _split_csv(raw: str | None) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def _validated_url(key: str, url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationMissing(f"{key} must be an absolute http(s) URL, got '{url}'")
    return url


# ---------------- sources -----------------
def _env_source_defaults(env: Mapping[str, str]) -> Dict[SourceKind, Dict[str, Any]]:
    timeout = _env_number(env, "SOURCE_TIMEOUT_SECONDS", 60.0, float)
    max_items = _env_number(env, "MAX_ITEMS_PER_SOURCE", 20, int)
    item_concurrency = _env_number(env, "ITEM_CONCURRENCY", 3, int)

    params: Dict[SourceKind, Dict[str, Any]] = {
        SourceKind.HACKER_NEWS: {
            "min_score": _env_number(env, "HN_MIN_SCORE", 20, int),
            "min_text_length": 100,
            "max_text_length": 10_000,
        },
        SourceKind.GITHUB_TRENDING: {
            "languages": _split_csv(env.get("LANGUAGES")),
        },
        SourceKind.XAI_SEARCH: {
            "model": env.get("XAI_MODEL") or "grok-3-latest",
        },
        SourceKind.CUSTOM_SITE: {
            "url": (env.get("CUSTOM_SITE_URL") or "").strip(),
            "link_selector": (env.get("CUSTOM_SITE_LINK_SELECTOR") or "").strip() or None,
        },
        SourceKind.ARXIV: {
            "categories": _split_csv(env.get("ARXIV_CATEGORIES")) or ["cs.AI"],
        },
    }

    defaults: Dict[SourceKind, Dict[str, Any]] = {}
    for kind, (flag, default_enabled) in _ENABLE_FLAGS.items():
        defaults[kind] = {
            "enabled": _env_bool(env, flag, default_enabled),
            "timeout": timeout,
            "max_items": max_items,
            "item_concurrency": item_concurrency,
            "params": params[kind],
        }
    return defaults


def _apply_yaml_overrides(
    defaults: Dict[SourceKind, Dict[str, Any]], entries: List[Any]
) -> None:
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigurationMissing(f"Each source must be a mapping, got: {type(entry)}")
        unknown = set(entry) - _SOURCE_FIELDS
        if unknown:
            raise ConfigurationMissing(f"Unknown source fields: {sorted(unknown)} in {entry}")
        try:
            kind = SourceKind(str(entry.get("kind", "")).strip())
        except ValueError:
            allowed = sorted(k.value for k in SourceKind)
            raise ConfigurationMissing(
                f"Invalid source kind '{entry.get('kind')}'. Allowed: {allowed}"
            ) from None

        target = defaults[kind]
        if "enabled" in entry:
            if not isinstance(entry["enabled"], bool):
                raise ConfigurationMissing(f"'enabled' must be a boolean for {kind.value}")
            target["enabled"] = entry["enabled"]
        for key, cast in (("timeout", float), ("max_items", int), ("item_concurrency", int)):
            if key in entry:
                try:
                    value = cast(entry[key])
                except (TypeError, ValueError):
                    raise ConfigurationMissing(f"'{key}' must be a number for {kind.value}") from None
                if value <= 0:
                    raise ConfigurationMissing(f"'{key}' must be positive for {kind.value}")
                target[key] = value
        if entry.get("params") is not None:
            if not isinstance(entry["params"], dict):
                raise ConfigurationMissing(f"'params' must be a mapping for {kind.value}")
            target["params"] = {**target["params"], **entry["params"]}


def _build_source(
    kind: SourceKind, values: Dict[str, Any], env: Mapping[str, str], fetch_attempts: int
) -> SourceConfig:
    params = dict(values["params"])
    credential_env: Optional[str] = None
    api_key: Optional[str] = None

    if kind is SourceKind.GITHUB_TRENDING:
        languages = params.get("languages")
        if isinstance(languages, str):
            languages = _split_csv(languages)
        if not languages:
            raise ConfigurationMissing("LANGUAGES must be set (github_trending is enabled)")
        # "all" selects the language-agnostic trending page
        params["languages"] = tuple("" if lang in ("all", "*") else lang for lang in languages)
    elif kind is SourceKind.XAI_SEARCH:
        credential_env = "XAI_API_KEY"
        api_key = _require(env, credential_env, "xai_search is enabled")
    elif kind is SourceKind.CUSTOM_SITE:
        url = str(params.get("url") or "").strip()
        if not url:
            raise ConfigurationMissing("CUSTOM_SITE_URL must be set (custom_site is enabled)")
        params["url"] = _validated_url("CUSTOM_SITE_URL", url)
    elif kind is SourceKind.ARXIV:
        categories = params.get("categories")
        if isinstance(categories, str):
            categories = _split_csv(categories)
        params["categories"] = tuple(categories or ("cs.AI",))

    return SourceConfig(
        kind=kind,
        params=params,
        credential_env=credential_env,
        api_key=api_key,
        timeout=float(values["timeout"]),
        max_items=int(values["max_items"]),
        item_concurrency=int(values["item_concurrency"]),
        fetch_attempts=fetch_attempts,
    )


def _read_yaml_sources(path: Path | str) -> List[Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationMissing(f"Config file not found: {config_path}")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationMissing(f"Invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationMissing(f"Top level of {config_path} must be a mapping")
    entries = data.get("sources") or []
    if not isinstance(entries, list):
        raise ConfigurationMissing("'sources' must be a list in the YAML configuration")
    return entries


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    config_path: Path | str | None = None,
) -> Settings:
    """Resolve settings from environment variables, failing fast on missing keys.

    If ``config_path`` is given it must point to a YAML file whose top-level
    ``sources`` list overrides per-source settings::

        sources:
          - kind: github_trending
            enabled: true
            max_items: 10
            params:
              languages: [python, rust]

    Unknown top-level keys are ignored for forward compatibility.
    """
    env = os.environ if env is None else env

    supabase_url = _validated_url("SUPABASE_URL", _require(env, "SUPABASE_URL"))
    supabase_key = _require(env, "SUPABASE_SERVICE_ROLE_KEY")
    bucket = _require(env, "SUPABASE_BUCKET_NAME")

    backend = (env.get("PROCESSING_BACKEND") or "gemini").strip().lower()
    if backend not in SUPPORTED_BACKENDS:
        raise ConfigurationMissing(
            f"Unsupported PROCESSING_BACKEND '{backend}'. Use one of {sorted(SUPPORTED_BACKENDS)}."
        )
    gemini_api_key = None
    if backend == "gemini":
        gemini_api_key = _require(env, "GEMINI_API_KEY", "PROCESSING_BACKEND=gemini")

    defaults = _env_source_defaults(env)
    if config_path is not None:
        _apply_yaml_overrides(defaults, _read_yaml_sources(config_path))

    fetch_attempts = _env_number(env, "SOURCE_FETCH_ATTEMPTS", 2, int)
    sources = [
        _build_source(kind, values, env, fetch_attempts)
        for kind, values in defaults.items()
        if values["enabled"]
    ]

    return Settings(
        supabase_url=supabase_url,
        supabase_key=supabase_key,
        bucket=bucket,
        sources=sources,
        manifest_path=(env.get("MANIFEST_PATH") or "manifest/published.json").strip("/"),
        dedup_store_path=(env.get("DEDUP_STORE_PATH") or None),
        processing_backend=backend,
        gemini_api_key=gemini_api_key,
        gemini_model=env.get("GEMINI_MODEL") or "gemini-1.5-flash",
        ollama_host=(env.get("OLLAMA_HOST") or "http://localhost:11434").rstrip("/"),
        ollama_model=env.get("OLLAMA_MODEL") or "llama3.1:8b-instruct",
        run_deadline=_env_number(env, "RUN_DEADLINE_SECONDS", 900.0, float),
        shutdown_grace=_env_number(env, "SHUTDOWN_GRACE_SECONDS", 30.0, float),
        max_concurrent_summaries=_env_number(env, "MAX_CONCURRENT_SUMMARIES", 4, int),
        max_concurrent_publishes=_env_number(env, "MAX_CONCURRENT_PUBLISHES", 4, int),
        summary_max_attempts=_env_number(env, "SUMMARY_MAX_ATTEMPTS", 3, int),
        summary_backoff=_env_number(env, "SUMMARY_BACKOFF_SECONDS", 2.0, float),
        summary_timeout=_env_number(env, "SUMMARY_TIMEOUT_SECONDS", 60.0, float),
        summary_input_words=_env_number(env, "SUMMARY_INPUT_WORDS", 1500, int),
        publish_max_attempts=_env_number(env, "PUBLISH_MAX_ATTEMPTS", 3, int),
        publish_retry_delay=_env_number(env, "PUBLISH_RETRY_DELAY_SECONDS", 1.0, float),
        extract_max_bytes=_env_number(env, "EXTRACT_MAX_BYTES", 2_000_000, int),
        extract_min_chars=_env_number(env, "EXTRACT_MIN_CHARS", 200, int),
        extract_timeout=_env_number(env, "EXTRACT_TIMEOUT_SECONDS", 20.0, float),
    )
