"""Digest document assembly: title, HTML body and tag list."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from importlib import resources
from typing import Iterable, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import FeedConfig
from .feeds.base import CveEntry, FeedItem, FirmwareEntry

TITLE_SUFFIX = "Security & Firmware Digest"

_ENV: Environment | None = None


@dataclass
class Digest:
    title: str
    html: str
    tags: list[dict[str, str]]


@dataclass
class _FeedGroup:
    name: str
    items: list[FeedItem]


def get_environment() -> Environment:
    """Return a cached Jinja environment configured for package templates."""
    global _ENV
    if _ENV is None:
        template_dir = resources.files(__package__) / "templates"
        _ENV = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
    return _ENV


def unique(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def build_title(feed_names: Sequence[str], start: datetime, end: datetime) -> str:
    names = " & ".join(unique(feed_names))
    period = f"({start:%Y-%m-%d} to {end - timedelta(days=1):%Y-%m-%d})"
    if not names:
        return f"{TITLE_SUFFIX} {period}"
    return f"{names} {TITLE_SUFFIX} {period}"


def collect_tags(feeds: Iterable[FeedConfig]) -> list[dict[str, str]]:
    return [{"name": tag} for tag in unique(tag for feed in feeds for tag in feed.tags)]


def render_html(
    items: Sequence[FeedItem],
    firmware: Sequence[FirmwareEntry],
    cves: Sequence[CveEntry],
    start: datetime,
    end: datetime,
) -> str:
    groups: dict[str, _FeedGroup] = {}
    for item in items:
        groups.setdefault(item.feed_id, _FeedGroup(name=item.feed_name, items=[])).items.append(item)
    template = get_environment().get_template("digest.html")
    return template.render(
        start=f"{start:%Y-%m-%d}",
        last_day=f"{end - timedelta(days=1):%Y-%m-%d}",
        groups=list(groups.values()),
        firmware=firmware,
        cves=cves,
    )


def build_digest(
    feeds: Sequence[FeedConfig],
    items: Sequence[FeedItem],
    firmware: Sequence[FirmwareEntry],
    cves: Sequence[CveEntry],
    start: datetime,
    end: datetime,
) -> Digest:
    return Digest(
        title=build_title([feed.name for feed in feeds], start, end),
        html=render_html(items, firmware, cves, start, end),
        tags=collect_tags(feeds),
    )
