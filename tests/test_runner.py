from __future__ import annotations

import logging
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from advisory_digest.config import Config, FeedConfig, GhostConfig, RetryConfig
from advisory_digest.errors import EnrichmentError, FetchError, NotifyError, PublishError
from advisory_digest.feeds.base import CveEntry, FeedItem, FeedResult, FirmwareEntry
from advisory_digest.publishers.ghost import PublishResult
from advisory_digest.runner import DigestRunner, resolve_window


NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
TWO_DAYS_AGO = NOW - timedelta(days=2)
LOGGER_NAME = "tests.digest"

FORTINET = FeedConfig(
    id="fortinet",
    name="Fortinet",
    url="https://fortinet.example.com/rss.xml",
    keywords=("fortinet", "fortigate"),
    enrich_cve=True,
    cvss_threshold=7.0,
    tags=("security", "fortinet"),
)
BSI = FeedConfig(
    id="bsi",
    name="BSI",
    url="https://bsi.example.com/rss.xml",
    keywords=("security",),
    tags=("security", "bsi"),
)
GHOST = GhostConfig(url="https://blog.example.com/", admin_key="abcd1234:00112233445566778899aabbccddeeff")


def _item(feed: FeedConfig, link: str, title: str = "Advisory") -> FeedItem:
    return FeedItem(title=title, link=link, pub_date=TWO_DAYS_AGO, feed_id=feed.id, feed_name=feed.name)


def _fortinet_result() -> FeedResult:
    return FeedResult(
        items=[
            _item(FORTINET, "https://example.com/a", "FortiGate 7.4.2 release notes"),
            _item(FORTINET, "https://example.com/b", "FortiAnalyzer 7.6.0 release notes"),
        ],
        firmware=[
            FirmwareEntry("FORTIGATE", "7.4.2", "Feature", TWO_DAYS_AGO.isoformat(), "fortinet", "Fortinet"),
            FirmwareEntry("FORTIANALYZER", "7.6.0", "Major", TWO_DAYS_AGO.isoformat(), "fortinet", "Fortinet"),
        ],
    )


def _bsi_result() -> FeedResult:
    return FeedResult(items=[_item(BSI, "https://bsi.example.com/advisory-1")], firmware=[])


def _cves() -> list[CveEntry]:
    return [
        CveEntry(
            id="CVE-2026-1001",
            score=9.8,
            description="Fortinet FortiOS remote code execution.",
            url="https://nvd.nist.gov/vuln/detail/CVE-2026-1001",
            feed_id="fortinet",
        )
    ]


class DigestRunnerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.fetch_feed = AsyncMock()
        self.fetch_cves = AsyncMock(return_value=[])
        self.publish_draft = AsyncMock()
        self.notify = AsyncMock(return_value=None)
        self.build_notification = MagicMock(return_value="Digest notification message")

    def _runner(self, config: Config) -> DigestRunner:
        return DigestRunner(
            config,
            logger=logging.getLogger(LOGGER_NAME),
            fetch_feed=self.fetch_feed,
            fetch_cves=self.fetch_cves,
            publish_draft=self.publish_draft,
            notify=self.notify,
            build_notification=self.build_notification,
            clock=lambda: NOW,
        )

    async def test_full_digest_run(self) -> None:
        self.fetch_feed.side_effect = [_fortinet_result(), _bsi_result()]
        self.fetch_cves.return_value = _cves()
        self.publish_draft.return_value = PublishResult(
            success=True, post_id="ghost-post-1", post_url="https://blog.example.com/p/ghost-post-1/"
        )
        config = Config(
            feeds=[FORTINET, BSI],
            lookback_days=31,
            retry=RetryConfig(max_retries=0),
            ghost=GHOST,
            notify=["slack:https://hooks.example.com/T000"],
            nvd_api_key="test-nvd-key",
        )

        result = await self._runner(config).run()

        self.assertTrue(result.success)
        self.assertEqual(result.feeds_processed, 2)
        self.assertEqual(result.total_items, 3)
        self.assertEqual(result.total_cves, 1)
        self.assertEqual(result.total_firmware, 2)
        self.assertEqual(result.ghost_url, "https://blog.example.com/p/ghost-post-1/")
        self.assertIsNone(result.ghost_error)
        self.assertTrue(result.notified)
        self.assertFalse(result.dry_run)

        self.assertEqual(self.fetch_feed.await_count, 2)
        first_call, second_call = self.fetch_feed.await_args_list
        self.assertIs(first_call.args[0], FORTINET)
        self.assertIs(second_call.args[0], BSI)
        start, end = first_call.args[1], first_call.args[2]
        self.assertEqual(end, datetime(2026, 3, 1, tzinfo=timezone.utc))
        self.assertEqual(end - start, timedelta(days=31))
        self.assertEqual(first_call.args[3], RetryConfig(max_retries=0))

        self.fetch_cves.assert_awaited_once()
        args = self.fetch_cves.await_args.args
        self.assertEqual(args[0], ["fortinet", "fortigate"])
        self.assertEqual((args[1], args[2]), (start, end))
        self.assertEqual(args[3], 7.0)
        self.assertEqual(args[4], "fortinet")
        self.assertEqual(args[5], "test-nvd-key")

        self.publish_draft.assert_awaited_once()
        target, title, html, tags = self.publish_draft.await_args.args
        self.assertEqual(target, GHOST)
        self.assertIn("Fortinet & BSI", title)
        self.assertIn("Security & Firmware Digest", title)
        self.assertIn("CVE-2026-1001", html)
        self.assertEqual(tags, [{"name": "security"}, {"name": "fortinet"}, {"name": "bsi"}])

        self.build_notification.assert_called_once()
        self.notify.assert_awaited_once_with(["slack:https://hooks.example.com/T000"], "Digest notification message")

    async def test_per_feed_retry_override_wins(self) -> None:
        override = RetryConfig(max_retries=5, initial_delay_ms=10)
        feed = FeedConfig(id="custom", name="Custom", url="https://example.com/rss.xml", retry=override)
        self.fetch_feed.return_value = FeedResult()

        await self._runner(Config(feeds=[feed, BSI], retry=RetryConfig(max_retries=1))).run()

        self.assertEqual(self.fetch_feed.await_args_list[0].args[3], override)
        self.assertEqual(self.fetch_feed.await_args_list[1].args[3], RetryConfig(max_retries=1))

    async def test_failing_feed_does_not_stop_the_run(self) -> None:
        failing = FeedConfig(id="failing-feed", name="Failing Feed", url="https://broken.example.com/rss.xml")
        working = FeedConfig(id="working-feed", name="Working Feed", url="https://example.com/rss.xml")
        self.fetch_feed.side_effect = [
            FetchError("failing-feed", "DNS resolution failed", 1),
            FeedResult(items=[_item(working, "https://example.com/item1")]),
        ]

        with self.assertLogs(LOGGER_NAME, level="INFO") as logs:
            result = await self._runner(Config(feeds=[failing, working])).run()

        self.assertTrue(result.success)
        self.assertEqual(result.feeds_processed, 2)
        self.assertEqual(result.total_items, 1)
        self.assertEqual(result.failed_feeds, ["Failing Feed"])
        errors = [record.getMessage() for record in logs.records if record.levelno == logging.ERROR]
        self.assertTrue(any("Failing Feed" in message and "DNS resolution failed" in message for message in errors))
        self.assertIsNone(result.ghost_url)
        self.assertFalse(result.notified)
        self.publish_draft.assert_not_awaited()
        self.notify.assert_not_awaited()

    async def test_empty_feed_result_still_counts_as_processed(self) -> None:
        self.fetch_feed.return_value = FeedResult()
        result = await self._runner(Config(feeds=[BSI])).run()
        self.assertEqual(result.feeds_processed, 1)
        self.assertEqual(result.total_items, 0)

    async def test_dry_run_skips_publish_and_notify(self) -> None:
        self.fetch_feed.return_value = _fortinet_result()
        self.fetch_cves.return_value = _cves()
        config = Config(feeds=[FORTINET], ghost=GHOST, notify=["webhook:https://example.com/hook"])

        result = await self._runner(config).run(dry_run=True)

        self.assertTrue(result.dry_run)
        self.assertTrue(result.success)
        self.assertEqual(result.total_items, 2)
        self.assertEqual(result.total_firmware, 2)
        self.assertEqual(result.total_cves, 1)
        self.assertFalse(result.notified)
        self.publish_draft.assert_not_awaited()
        self.notify.assert_not_awaited()

    async def test_empty_config_calls_no_collaborator(self) -> None:
        config = Config(feeds=[], ghost=GHOST, notify=["webhook:https://example.com/hook"])

        with self.assertLogs(LOGGER_NAME, level="WARNING") as logs:
            result = await self._runner(config).run()

        self.assertTrue(result.success)
        self.assertEqual(
            (result.feeds_processed, result.total_items, result.total_cves, result.total_firmware),
            (0, 0, 0, 0),
        )
        self.assertTrue(any("No feeds configured" in message for message in logs.output))
        self.fetch_feed.assert_not_awaited()
        self.fetch_cves.assert_not_awaited()
        self.publish_draft.assert_not_awaited()
        self.notify.assert_not_awaited()

    async def test_ghost_failure_is_reported_not_raised(self) -> None:
        self.fetch_feed.return_value = FeedResult(items=[_item(BSI, "https://example.com/1")])
        self.publish_draft.return_value = PublishResult(success=False, error="Internal Server Error")

        with self.assertLogs(LOGGER_NAME, level="ERROR") as logs:
            result = await self._runner(Config(feeds=[BSI], ghost=GHOST)).run()

        self.assertTrue(result.success)
        self.assertEqual(result.total_items, 1)
        self.assertIsNone(result.ghost_url)
        self.assertEqual(result.ghost_error, "Internal Server Error")
        self.assertTrue(any("Ghost publish failed" in message for message in logs.output))
        error = logs.records[-1].args[1]
        self.assertIsInstance(error, PublishError)
        self.assertEqual(error.target, GHOST.url)

    async def test_ghost_exception_is_reported_not_raised(self) -> None:
        self.fetch_feed.return_value = FeedResult()
        self.publish_draft.side_effect = RuntimeError("connection reset")

        with self.assertLogs(LOGGER_NAME, level="ERROR") as logs:
            result = await self._runner(Config(feeds=[BSI], ghost=GHOST)).run()

        self.assertTrue(result.success)
        self.assertEqual(result.ghost_error, "connection reset")
        self.assertIsInstance(logs.records[-1].args[1].__cause__, RuntimeError)

    async def test_only_enrich_cve_feeds_are_enriched(self) -> None:
        self.fetch_feed.side_effect = [FeedResult(), FeedResult()]
        other = FeedConfig(id="other", name="Other", url="https://example.com/o.xml", enrich_cve=False)

        await self._runner(Config(feeds=[other, FORTINET], nvd_api_key="key")).run()

        self.fetch_cves.assert_awaited_once()
        self.assertEqual(self.fetch_cves.await_args.args[4], "fortinet")

    async def test_failed_feed_is_still_enriched(self) -> None:
        self.fetch_feed.side_effect = FetchError("fortinet", "HTTP 503", 4)
        self.fetch_cves.return_value = _cves()

        with self.assertLogs(LOGGER_NAME, level="ERROR"):
            result = await self._runner(Config(feeds=[FORTINET], nvd_api_key="key")).run()

        self.fetch_cves.assert_awaited_once()
        self.assertEqual(self.fetch_cves.await_args.args[0], ["fortinet", "fortigate"])
        self.assertEqual(self.fetch_cves.await_args.args[4], "fortinet")
        self.assertEqual(self.fetch_cves.await_args.args[5], "key")
        self.assertEqual(result.failed_feeds, ["Fortinet"])
        self.assertEqual(result.total_items, 0)
        self.assertEqual(result.total_cves, 1)

    async def test_enrichment_failure_is_non_fatal(self) -> None:
        self.fetch_feed.return_value = _fortinet_result()
        self.fetch_cves.side_effect = EnrichmentError("NVD lookup for fortinet failed: 503")

        with self.assertLogs(LOGGER_NAME, level="ERROR") as logs:
            result = await self._runner(Config(feeds=[FORTINET])).run()

        self.assertTrue(result.success)
        self.assertEqual(result.total_cves, 0)
        self.assertEqual(result.total_items, 2)
        self.assertTrue(any("Fortinet" in message for message in logs.output))

    async def test_notify_failure_is_non_fatal(self) -> None:
        self.fetch_feed.return_value = FeedResult()
        self.notify.side_effect = NotifyError("Notification failed for slack:https://x", ["slack:https://x"])

        with self.assertLogs(LOGGER_NAME, level="ERROR"):
            result = await self._runner(Config(feeds=[BSI], notify=["slack:https://x"])).run()

        self.assertTrue(result.success)
        self.assertFalse(result.notified)

    async def test_each_run_owns_its_accumulators(self) -> None:
        self.fetch_feed.side_effect = lambda *args: _bsi_result()
        runner = self._runner(Config(feeds=[BSI]))

        first = await runner.run()
        second = await runner.run()

        self.assertEqual(first.total_items, 1)
        self.assertEqual(second.total_items, 1)


class ResolveWindowTests(unittest.TestCase):
    def test_end_is_start_of_current_utc_day(self) -> None:
        start, end = resolve_window(datetime(2026, 3, 15, 23, 59, tzinfo=timezone.utc), 7)
        self.assertEqual(end, datetime(2026, 3, 15, tzinfo=timezone.utc))
        self.assertEqual(start, datetime(2026, 3, 8, tzinfo=timezone.utc))

    def test_non_utc_clock_is_normalised(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        _, end = resolve_window(datetime(2026, 3, 15, 1, 0, tzinfo=plus_two), 1)
        self.assertEqual(end, datetime(2026, 3, 14, tzinfo=timezone.utc))


if __name__ == "__main__":
    unittest.main()
