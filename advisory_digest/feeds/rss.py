from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
import re
import xml.etree.ElementTree as ET

from bs4 import BeautifulSoup

from .base import RawEntry


DC_NAMESPACE = "http://purl.org/dc/elements/1.1/"


def parse_feed(payload: str | bytes) -> list[RawEntry]:
    """Parse an RSS 2.0 or Atom document into raw entries, in document order."""
    root = ET.fromstring(payload)
    tag = _strip_namespace(root.tag)
    if tag == "rss":
        return _parse_rss_channel(root)
    if tag == "feed":
        return _parse_atom_feed(root)
    return []


def _parse_rss_channel(root: ET.Element) -> list[RawEntry]:
    channel = root.find("channel")
    if channel is None:
        return []
    entries: list[RawEntry] = []
    for item in channel.findall("item"):
        published = _parse_pubdate(_text(item, "pubDate"))
        if published is None:
            published = _parse_pubdate(_text(item, f"{{{DC_NAMESPACE}}}date"))
        entries.append(
            RawEntry(
                title=_text(item, "title") or "",
                link=_text(item, "link") or _text(item, "guid") or "",
                published=published,
                snippet=strip_html(_text(item, "description") or ""),
            )
        )
    return entries


def _parse_atom_feed(root: ET.Element) -> list[RawEntry]:
    entries: list[RawEntry] = []
    for entry in root.findall("{*}entry"):
        summary = _text(entry, "summary") or _text(entry, "content") or ""
        entries.append(
            RawEntry(
                title=_text(entry, "title") or "",
                link=_atom_link(entry),
                published=_parse_pubdate(_text(entry, "published") or _text(entry, "updated")),
                snippet=strip_html(summary),
            )
        )
    return entries


def _atom_link(entry: ET.Element) -> str:
    fallback = ""
    for link in entry.findall("{*}link"):
        href = link.attrib.get("href")
        if not href:
            continue
        if link.attrib.get("rel", "alternate") == "alternate":
            return href
        fallback = fallback or href
    return fallback


def _parse_pubdate(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        parsed = _parse_iso(value)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_iso(value: str) -> datetime | None:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def strip_html(raw_value: str) -> str:
    if not raw_value:
        return ""
    text = BeautifulSoup(raw_value, "html.parser").get_text(separator=" ", strip=True)
    text = re.sub(r"\s+([.,;:!?])", r"\1", text)
    return re.sub(r"\s{2,}", " ", text).strip()


def _text(node: ET.Element, tag: str) -> str | None:
    child = node.find(tag)
    if child is None and not tag.startswith("{"):
        child = node.find(f"{{*}}{tag}")
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _strip_namespace(tag: str) -> str:
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag
