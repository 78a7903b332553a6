from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Iterable, Sequence

import httpx

from ..config import FeedConfig, RetryConfig, Settings
from ..errors import FetchError
from ..firmware import Classifier, extract_firmware, match_title
from .base import FeedItem, FeedResult, RawEntry
from .retry import call_with_retry
from .rss import parse_feed


logger = logging.getLogger(__name__)


async def fetch_feed(
    feed: FeedConfig,
    start: datetime,
    end: datetime,
    retry: RetryConfig | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
    classifier: Classifier | None = None,
) -> FeedResult:
    """Fetch one feed and reduce it to in-window, deduplicated items plus firmware.

    Raises FetchError carrying the last attempt's message once retries run out.
    """
    retry = retry or RetryConfig()
    settings = settings or Settings()

    try:
        if client is not None:
            entries, attempts = await _fetch_entries(client, feed, retry, settings)
        else:
            async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as owned:
                entries, attempts = await _fetch_entries(owned, feed, retry, settings)
    except Exception as exc:
        raise FetchError(feed.id, str(exc) or type(exc).__name__, retry.max_retries + 1, exc) from exc

    kept = dedupe_entries(filter_entries(entries, start, end, feed.keywords))
    items = [_to_item(entry, feed) for entry in kept]
    firmware = []
    for item in items:
        entry = extract_firmware(item, feed, classifier)
        if entry is not None:
            firmware.append(entry)

    logger.debug(
        "Feed %s: %s raw entries, %s kept, %s firmware (attempts=%s)",
        feed.id,
        len(entries),
        len(items),
        len(firmware),
        attempts,
    )
    return FeedResult(items=items, firmware=firmware)


async def _fetch_entries(
    client: httpx.AsyncClient,
    feed: FeedConfig,
    retry: RetryConfig,
    settings: Settings,
) -> tuple[list[RawEntry], int]:
    headers = {"User-Agent": settings.user_agent}

    async def attempt() -> list[RawEntry]:
        response = await client.get(feed.url, headers=headers, follow_redirects=True)
        response.raise_for_status()
        return parse_feed(response.content)

    return await call_with_retry(attempt, retry, label=f"Fetch of {feed.name}")


def filter_entries(
    entries: Iterable[RawEntry],
    start: datetime,
    end: datetime,
    keywords: Sequence[str] | None = None,
) -> list[RawEntry]:
    start = _as_utc(start)
    end = _as_utc(end)
    lowered = [keyword.lower() for keyword in keywords or () if keyword]
    kept: list[RawEntry] = []
    for entry in entries:
        if entry.published is None:
            continue
        published = _as_utc(entry.published)
        if not (start <= published < end):
            continue
        if lowered and not _matches_keyword(entry, lowered):
            continue
        kept.append(entry)
    return kept


def dedupe_entries(entries: Iterable[RawEntry]) -> list[RawEntry]:
    """Keep the first entry per link; entries without a link are always kept."""
    seen: set[str] = set()
    unique: list[RawEntry] = []
    for entry in entries:
        if not entry.link:
            unique.append(entry)
            continue
        if entry.link in seen:
            continue
        seen.add(entry.link)
        unique.append(entry)
    return unique


def _matches_keyword(entry: RawEntry, keywords: list[str]) -> bool:
    text = f"{entry.title}\n{entry.snippet}".lower()
    return any(keyword in text for keyword in keywords)


def _to_item(entry: RawEntry, feed: FeedConfig) -> FeedItem:
    parsed = match_title(entry.title)
    return FeedItem(
        title=entry.title,
        link=entry.link,
        pub_date=_as_utc(entry.published),
        feed_id=feed.id,
        feed_name=feed.name,
        content=entry.snippet or None,
        product=parsed[0].lower() if parsed else None,
        version=parsed[1] if parsed else None,
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
