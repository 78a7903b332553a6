from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class RawEntry:
    title: str
    link: str
    published: datetime | None
    snippet: str = ""


@dataclass
class FeedItem:
    title: str
    link: str
    pub_date: datetime
    feed_id: str
    feed_name: str
    content: str | None = None
    version: str | None = None
    product: str | None = None


@dataclass
class FirmwareEntry:
    product: str
    version: str
    type: str
    pub_date: str
    feed_id: str
    feed_name: str
    docs_url: str | None = None


@dataclass
class FeedResult:
    items: list[FeedItem] = field(default_factory=list)
    firmware: list[FirmwareEntry] = field(default_factory=list)


@dataclass
class CveEntry:
    id: str
    score: float
    description: str
    url: str
    feed_id: str
