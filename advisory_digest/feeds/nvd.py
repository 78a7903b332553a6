from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Sequence

import httpx

from ..config import Settings
from ..errors import EnrichmentError
from .base import CveEntry


NVD_ENDPOINT = "https://services.nvd.nist.gov/rest/json/cves/2.0"
RESULTS_PER_PAGE = 200
# NVD asks unauthenticated clients to pause between requests.
PAGE_DELAY_SECONDS = 1.0

logger = logging.getLogger(__name__)


async def fetch_cves(
    keywords: Sequence[str],
    start: datetime,
    end: datetime,
    cvss_threshold: float,
    feed_id: str,
    api_key: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> list[CveEntry]:
    """Query NVD for CVEs published in [start, end) matching any keyword.

    Results scoring at or above ``cvss_threshold`` are returned once per CVE id,
    highest score first.
    """
    terms = [keyword for keyword in keywords if keyword and keyword.strip()]
    if not terms:
        return []
    settings = settings or Settings()
    headers = {"User-Agent": settings.user_agent}
    if api_key:
        headers["apiKey"] = api_key

    try:
        if client is not None:
            raw = await _query_terms(client, terms, start, end, headers)
        else:
            async with httpx.AsyncClient(timeout=settings.request_timeout_seconds) as owned:
                raw = await _query_terms(owned, terms, start, end, headers)
    except (httpx.HTTPError, ValueError) as exc:
        raise EnrichmentError(f"NVD lookup for {feed_id} failed: {exc}") from exc

    entries: dict[str, CveEntry] = {}
    for vulnerability in raw:
        entry = _parse_entry(vulnerability, feed_id)
        if entry is None or entry.score < cvss_threshold:
            continue
        entries.setdefault(entry.id, entry)

    return sorted(entries.values(), key=lambda item: (-item.score, item.id))


async def _query_terms(
    client: httpx.AsyncClient,
    terms: list[str],
    start: datetime,
    end: datetime,
    headers: dict[str, str],
) -> list[dict[str, Any]]:
    vulnerabilities: list[dict[str, Any]] = []
    for index, term in enumerate(terms):
        if index and "apiKey" not in headers:
            await asyncio.sleep(PAGE_DELAY_SECONDS)
        vulnerabilities.extend(await _query_term(client, term, start, end, headers))
    return vulnerabilities


async def _query_term(
    client: httpx.AsyncClient,
    term: str,
    start: datetime,
    end: datetime,
    headers: dict[str, str],
) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    start_index = 0
    total_results = None
    while total_results is None or start_index < total_results:
        params = {
            "keywordSearch": term,
            "pubStartDate": _to_iso(start),
            "pubEndDate": _to_iso(end),
            "resultsPerPage": RESULTS_PER_PAGE,
            "startIndex": start_index,
        }
        response = await client.get(NVD_ENDPOINT, headers=headers, params=params)
        response.raise_for_status()
        payload = response.json()
        total_results = int(payload.get("totalResults", 0))
        page = payload.get("vulnerabilities", [])
        results.extend(page)
        if not page:
            break
        start_index += len(page)
        if start_index < total_results and "apiKey" not in headers:
            await asyncio.sleep(PAGE_DELAY_SECONDS)
    logger.debug("NVD keyword %r returned %s vulnerabilities", term, len(results))
    return results


def _parse_entry(vulnerability: dict[str, Any], feed_id: str) -> CveEntry | None:
    cve = vulnerability.get("cve", {})
    cve_id = cve.get("id")
    if not cve_id:
        return None
    score = base_score(cve.get("metrics", {}))
    if score is None:
        return None
    return CveEntry(
        id=cve_id,
        score=score,
        description=_english_description(cve.get("descriptions", [])),
        url=f"https://nvd.nist.gov/vuln/detail/{cve_id}",
        feed_id=feed_id,
    )


def base_score(metrics: dict[str, Any]) -> float | None:
    for key in ("cvssMetricV31", "cvssMetricV30", "cvssMetricV2"):
        entries = metrics.get(key)
        if not entries:
            continue
        score = entries[0].get("cvssData", {}).get("baseScore")
        if score is not None:
            return float(score)
    return None


def _english_description(descriptions: list[dict[str, Any]]) -> str:
    for desc in descriptions:
        if desc.get("lang") == "en":
            return desc.get("value", "")
    return ""


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")
