from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timezone
import re
from typing import Callable, Mapping

from .config import FeedConfig
from .feeds.base import FeedItem, FirmwareEntry


FIRMWARE_TITLE = re.compile(
    r"^\s*(?P<product>[A-Za-z]+)\s+(?P<version>\d+(?:\.\d+)+)\s+release\s+notes\s*$",
    re.IGNORECASE,
)

FEATURE = "Feature"
MAJOR = "Major"
PATCH = "Patch"

# (title, snippet, version) -> release type label
Classifier = Callable[[str, str, str], str]


@dataclass
class ReleaseClassifier:
    """Default release-type heuristic.

    Explicit version-prefix labels win over snippet wording, which wins over
    the shape of the version number.
    """

    prefixes: Mapping[str, str] = field(default_factory=dict)
    default: str = PATCH

    def __call__(self, title: str, snippet: str, version: str) -> str:
        label = self._prefix_label(version)
        if label:
            return label
        text = (snippet or "").lower()
        if "feature" in text:
            return FEATURE
        if "major" in text or version.split(".")[-1] == "0":
            return MAJOR
        return self.default

    def _prefix_label(self, version: str) -> str | None:
        best: str | None = None
        best_len = -1
        for prefix, label in self.prefixes.items():
            if _version_has_prefix(version, prefix) and len(prefix) > best_len:
                best, best_len = label, len(prefix)
        return best


def _version_has_prefix(version: str, prefix: str) -> bool:
    return version == prefix or version.startswith(prefix.rstrip(".") + ".")


def match_title(title: str) -> tuple[str, str] | None:
    """Return (product, version) when the title follows the release-notes naming."""
    match = FIRMWARE_TITLE.match(title or "")
    if not match:
        return None
    return match.group("product"), match.group("version")


def build_docs_url(template: str | None, product: str, version: str) -> str | None:
    if not template:
        return None
    return template.replace("{product}", product.lower()).replace("{version}", version)


def extract_firmware(
    item: FeedItem,
    feed: FeedConfig,
    classifier: Classifier | None = None,
) -> FirmwareEntry | None:
    parsed = match_title(item.title)
    if parsed is None:
        return None
    product, version = parsed
    classify = classifier or ReleaseClassifier(prefixes=feed.release_types)
    published = item.pub_date.astimezone(timezone.utc)
    return FirmwareEntry(
        product=product.upper(),
        version=version,
        type=classify(item.title, item.content or "", version),
        pub_date=published.isoformat().replace("+00:00", "Z"),
        feed_id=feed.id,
        feed_name=feed.name,
        docs_url=build_docs_url(feed.docs_url_template, product, version),
    )
