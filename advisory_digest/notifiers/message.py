from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..runner import DigestRunResult


def build_digest_notification(result: DigestRunResult, title: str | None = None) -> str:
    lines = [title or "Security & Firmware Digest"]
    if result.dry_run:
        lines[0] += " (dry run)"
    lines.append(
        f"{result.feeds_processed} feeds, {result.total_items} items, "
        f"{result.total_firmware} firmware releases, {result.total_cves} CVEs"
    )
    if result.failed_feeds:
        lines.append("Failed feeds: " + ", ".join(result.failed_feeds))
    if result.ghost_url:
        lines.append(f"Draft: {result.ghost_url}")
    elif result.ghost_error:
        lines.append(f"Draft not published: {result.ghost_error}")
    return "\n".join(lines)
