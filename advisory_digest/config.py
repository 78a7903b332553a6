from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any

import yaml

from .errors import ConfigError


DEFAULT_LOOKBACK_DAYS = 31
DEFAULT_CVSS_THRESHOLD = 7.0


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay_ms: int = 1000
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigError("retry.max_retries must be >= 0")
        if self.initial_delay_ms < 0:
            raise ConfigError("retry.initial_delay_ms must be >= 0")
        if self.backoff_multiplier < 1:
            raise ConfigError("retry.backoff_multiplier must be >= 1")


@dataclass(frozen=True)
class FeedConfig:
    id: str
    name: str
    url: str
    keywords: tuple[str, ...] = ()
    docs_url_template: str | None = None
    enrich_cve: bool = False
    cvss_threshold: float = DEFAULT_CVSS_THRESHOLD
    tags: tuple[str, ...] = ()
    retry: RetryConfig | None = None
    release_types: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GhostConfig:
    url: str
    admin_key: str


@dataclass
class Settings:
    request_timeout_seconds: int = 20
    user_agent: str = "advisory-digest/0.1"
    schedule_interval_hours: float | None = None


@dataclass
class Config:
    feeds: list[FeedConfig] = field(default_factory=list)
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    retry: RetryConfig = field(default_factory=RetryConfig)
    ghost: GhostConfig | None = None
    notify: list[str] = field(default_factory=list)
    nvd_api_key: str | None = None
    settings: Settings = field(default_factory=Settings)


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: _expand_env(val) for key, val in value.items()}
    return value


def _get(raw: dict[str, Any], snake: str, camel: str | None = None, default: Any = None) -> Any:
    if snake in raw:
        return raw[snake]
    if camel and camel in raw:
        return raw[camel]
    return default


def _require_dict(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a mapping")
    return value


def _require_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{name} must be a list")
    return [str(item) for item in value]


def _unexpanded(value: str | None) -> bool:
    return not value or "${" in value or value.startswith("$")


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    return parse_config(raw)


def parse_config(raw: Any) -> Config:
    data = _expand_env(raw)
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")

    lookback_days = int(_get(data, "lookback_days", "lookbackDays", DEFAULT_LOOKBACK_DAYS))
    if lookback_days < 1:
        raise ConfigError("lookback_days must be >= 1")

    retry = parse_retry(_require_dict(data.get("retry"), "retry"))
    feeds = _load_feeds(data.get("feeds"))
    nvd_api_key = _get(data, "nvd_api_key", "nvdApiKey")

    return Config(
        feeds=feeds,
        lookback_days=lookback_days,
        retry=retry,
        ghost=_load_ghost(_require_dict(data.get("ghost"), "ghost")),
        notify=_load_notify(data.get("notify")),
        nvd_api_key=None if _unexpanded(nvd_api_key) else str(nvd_api_key),
        settings=_load_settings(_require_dict(data.get("settings"), "settings")),
    )


def parse_retry(raw: dict[str, Any]) -> RetryConfig:
    defaults = RetryConfig()
    try:
        max_retries = int(_get(raw, "max_retries", "maxRetries", defaults.max_retries))
        initial_delay_ms = int(_get(raw, "initial_delay_ms", "initialDelayMs", defaults.initial_delay_ms))
        multiplier = float(_get(raw, "backoff_multiplier", "backoffMultiplier", defaults.backoff_multiplier))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"retry values must be numbers: {exc}") from exc
    return RetryConfig(
        max_retries=max_retries,
        initial_delay_ms=initial_delay_ms,
        backoff_multiplier=multiplier,
    )


def _load_feeds(value: Any) -> list[FeedConfig]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError("feeds must be a list")

    feeds: list[FeedConfig] = []
    seen: set[str] = set()
    for entry in value:
        if not isinstance(entry, dict):
            raise ConfigError("feeds entries must be mappings")
        feed_id = entry.get("id")
        name = entry.get("name")
        url = entry.get("url")
        if not feed_id or not name or not url:
            raise ConfigError("feeds entries must include id, name and url")
        if feed_id in seen:
            raise ConfigError(f"duplicate feed id: {feed_id}")
        seen.add(str(feed_id))

        retry_raw = entry.get("retry")
        feeds.append(
            FeedConfig(
                id=str(feed_id),
                name=str(name),
                url=str(url),
                keywords=tuple(_require_list(entry.get("keywords"), f"feeds.{feed_id}.keywords")),
                docs_url_template=_get(entry, "docs_url_template", "docsUrlTemplate"),
                enrich_cve=bool(_get(entry, "enrich_cve", "enrichCve", False)),
                cvss_threshold=_parse_threshold(
                    _get(entry, "cvss_threshold", "cvssThreshold", DEFAULT_CVSS_THRESHOLD), feed_id
                ),
                tags=tuple(_require_list(entry.get("tags"), f"feeds.{feed_id}.tags")),
                retry=parse_retry(_require_dict(retry_raw, f"feeds.{feed_id}.retry")) if retry_raw else None,
                release_types={
                    str(prefix): str(label)
                    for prefix, label in _require_dict(
                        _get(entry, "release_types", "releaseTypes"), f"feeds.{feed_id}.release_types"
                    ).items()
                },
            )
        )
    return feeds


def _load_notify(value: Any) -> list[str]:
    # notifiers.factory imports Settings from this module
    from .notifiers.factory import parse_target

    targets = [target for target in _require_list(value, "notify") if not _unexpanded(target)]
    for target in targets:
        try:
            parse_target(target)
        except ValueError as exc:
            raise ConfigError(f"notify: {exc}") from exc
    return targets


def _load_ghost(raw: dict[str, Any]) -> GhostConfig | None:
    url = raw.get("url")
    admin_key = _get(raw, "admin_key", "adminKey")
    if _unexpanded(url) or _unexpanded(admin_key):
        return None
    if not (url.startswith("http://") or url.startswith("https://")):
        raise ConfigError("ghost.url must be an http(s) URL")
    return GhostConfig(url=str(url), admin_key=str(admin_key))


def _load_settings(raw: dict[str, Any]) -> Settings:
    interval = raw.get("schedule_interval_hours")
    return Settings(
        request_timeout_seconds=int(raw.get("request_timeout_seconds", 20)),
        user_agent=str(raw.get("user_agent", "advisory-digest/0.1")),
        schedule_interval_hours=float(interval) if interval is not None else None,
    )


def _parse_threshold(value: Any, feed_id: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"feeds.{feed_id}.cvss_threshold must be a number")
