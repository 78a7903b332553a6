"""Digest orchestration.

One ``DigestRunner.run()`` call resolves the date window, walks the configured
feeds one at a time, enriches with CVEs, builds the digest and drives the
optional publish and notify steps. Every per-feed and per-collaborator failure
is logged and folded into the result; none of them abort the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import partial
import logging
from typing import Any, Awaitable, Callable, Sequence, Union

from .config import Config, FeedConfig, GhostConfig
from .digest import Digest, build_digest
from .errors import PublishError
from .feeds.base import CveEntry, FeedItem, FeedResult, FirmwareEntry
from .feeds.fetcher import fetch_feed as default_fetch_feed
from .feeds.nvd import fetch_cves as default_fetch_cves
from .notifiers.factory import notify as default_notify
from .notifiers.message import build_digest_notification as default_build_notification
from .publishers.ghost import PublishResult, publish_draft as default_publish_draft


@dataclass
class DigestRunResult:
    success: bool
    feeds_processed: int = 0
    total_items: int = 0
    total_cves: int = 0
    total_firmware: int = 0
    ghost_url: str | None = None
    ghost_error: str | None = None
    notified: bool = False
    dry_run: bool = False
    failed_feeds: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "feedsProcessed": self.feeds_processed,
            "totalItems": self.total_items,
            "totalCves": self.total_cves,
            "totalFirmware": self.total_firmware,
            "ghostUrl": self.ghost_url,
            "ghostError": self.ghost_error,
            "notified": self.notified,
            "dryRun": self.dry_run,
            "failedFeeds": list(self.failed_feeds),
        }


@dataclass
class FeedOutcome:
    feed: FeedConfig
    result: FeedResult


@dataclass
class FeedFailure:
    feed: FeedConfig
    error: Exception


FeedRecord = Union[FeedOutcome, FeedFailure]


def resolve_window(now: datetime, lookback_days: int) -> tuple[datetime, datetime]:
    """Return ``(start, end)`` where ``end`` is midnight UTC of ``now``'s day."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    end = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return end - timedelta(days=lookback_days), end


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DigestRunner:
    def __init__(
        self,
        config: Config,
        *,
        logger: logging.Logger | None = None,
        fetch_feed: Callable[..., Awaitable[FeedResult]] | None = None,
        fetch_cves: Callable[..., Awaitable[list[CveEntry]]] | None = None,
        publish_draft: Callable[..., Awaitable[PublishResult]] | None = None,
        notify: Callable[..., Awaitable[None]] | None = None,
        build_notification: Callable[..., str] = default_build_notification,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        settings = config.settings
        self._fetch_feed = fetch_feed or partial(default_fetch_feed, settings=settings)
        self._fetch_cves = fetch_cves or partial(default_fetch_cves, settings=settings)
        self._publish_draft = publish_draft or partial(default_publish_draft, settings=settings)
        self._notify = notify or partial(default_notify, settings=settings)
        self._build_notification = build_notification
        self._clock = clock

    async def run(self, dry_run: bool = False) -> DigestRunResult:
        config = self._config
        if not config.feeds:
            self._logger.warning("No feeds configured; nothing to digest")
            return DigestRunResult(success=True, dry_run=dry_run)

        start, end = resolve_window(self._clock(), config.lookback_days)
        self._logger.info(
            "Building digest for %s feeds from %s to %s%s",
            len(config.feeds),
            start.date().isoformat(),
            end.date().isoformat(),
            " (dry run)" if dry_run else "",
        )

        records = [await self._process_feed(feed, start, end) for feed in config.feeds]
        outcomes = [record for record in records if isinstance(record, FeedOutcome)]
        failures = [record for record in records if isinstance(record, FeedFailure)]

        items: list[FeedItem] = []
        firmware: list[FirmwareEntry] = []
        for outcome in outcomes:
            items.extend(outcome.result.items)
            firmware.extend(outcome.result.firmware)

        cves = await self._enrich(config.feeds, start, end)
        digest = build_digest([outcome.feed for outcome in outcomes], items, firmware, cves, start, end)

        result = DigestRunResult(
            success=True,
            feeds_processed=len(records),
            total_items=len(items),
            total_cves=len(cves),
            total_firmware=len(firmware),
            dry_run=dry_run,
            failed_feeds=[failure.feed.name for failure in failures],
        )

        if dry_run:
            self._logger.info("Dry run: skipping publish and notifications")
        else:
            if config.ghost is not None:
                await self._publish(config.ghost, digest, result)
            if config.notify:
                result.notified = await self._send_notifications(config.notify, digest, result)

        self._logger.info(
            "Digest complete: %s items, %s firmware, %s CVEs, %s of %s feeds failed",
            result.total_items,
            result.total_firmware,
            result.total_cves,
            len(failures),
            result.feeds_processed,
        )
        return result

    async def _process_feed(self, feed: FeedConfig, start: datetime, end: datetime) -> FeedRecord:
        retry = feed.retry or self._config.retry
        try:
            feed_result = await self._fetch_feed(feed, start, end, retry)
        except Exception as exc:
            self._logger.error("Feed %s (%s) failed: %s", feed.name, feed.url, exc)
            return FeedFailure(feed=feed, error=exc)
        self._logger.info(
            "Feed %s: %s items, %s firmware releases",
            feed.name,
            len(feed_result.items),
            len(feed_result.firmware),
        )
        return FeedOutcome(feed=feed, result=feed_result)

    async def _enrich(
        self,
        feeds: Sequence[FeedConfig],
        start: datetime,
        end: datetime,
    ) -> list[CveEntry]:
        cves: list[CveEntry] = []
        for feed in feeds:
            if not feed.enrich_cve:
                continue
            try:
                found = await self._fetch_cves(
                    list(feed.keywords),
                    start,
                    end,
                    feed.cvss_threshold,
                    feed.id,
                    self._config.nvd_api_key,
                )
            except Exception as exc:
                self._logger.error("CVE enrichment for feed %s failed: %s", feed.name, exc)
                continue
            self._logger.info("Feed %s: %s CVEs at or above CVSS %s", feed.name, len(found), feed.cvss_threshold)
            cves.extend(found)
        return cves

    async def _publish(self, target: GhostConfig, digest: Digest, result: DigestRunResult) -> None:
        try:
            result.ghost_url = await self._create_draft(target, digest)
        except PublishError as exc:
            result.ghost_error = str(exc)
            self._logger.error("Ghost publish failed for %s: %s", exc.target, exc)
            return
        self._logger.info("Ghost draft created: %s", result.ghost_url)

    async def _create_draft(self, target: GhostConfig, digest: Digest) -> str | None:
        try:
            outcome = await self._publish_draft(target, digest.title, digest.html, digest.tags)
        except Exception as exc:
            raise PublishError(target.url, str(exc) or type(exc).__name__) from exc
        if not outcome.success:
            raise PublishError(target.url, outcome.error or "unknown error")
        return outcome.post_url

    async def _send_notifications(self, targets: Sequence[str], digest: Digest, result: DigestRunResult) -> bool:
        try:
            message = self._build_notification(result, digest.title)
            await self._notify(list(targets), message)
        except Exception as exc:
            self._logger.error("Notification to %s failed: %s", ", ".join(targets), exc)
            return False
        self._logger.info("Notified %s targets", len(targets))
        return True
