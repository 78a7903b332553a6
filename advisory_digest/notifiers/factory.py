from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Sequence

from ..config import Settings
from ..errors import NotifyError
from .base import BaseNotifier
from .discord import DiscordNotifier, DiscordSettings
from .slack import SlackNotifier, SlackSettings
from .webhook import WebhookNotifier, WebhookSettings


CHANNELS = ("webhook", "slack", "discord")


@dataclass
class NotifierTarget:
    channel: str
    address: str


def parse_target(target: str) -> NotifierTarget:
    """Split a ``<channel>:<address>`` target string."""
    channel, sep, address = target.partition(":")
    channel = channel.strip().lower()
    address = address.strip()
    if not sep or not address:
        raise ValueError(f"Notification target {target!r} must look like '<channel>:<address>'")
    if channel not in CHANNELS:
        raise ValueError(f"Unsupported notification channel {channel!r}")
    if not (address.startswith("http://") or address.startswith("https://")):
        raise ValueError(f"Notification target {target!r} needs an http(s) URL")
    return NotifierTarget(channel=channel, address=address)


def build_notifier(target: NotifierTarget, settings: Settings) -> BaseNotifier:
    if target.channel == "slack":
        return SlackNotifier(
            SlackSettings(
                webhook_url=target.address,
                timeout_seconds=settings.request_timeout_seconds,
                user_agent=settings.user_agent,
            )
        )
    if target.channel == "discord":
        return DiscordNotifier(
            DiscordSettings(
                webhook_url=target.address,
                timeout_seconds=settings.request_timeout_seconds,
                user_agent=settings.user_agent,
            )
        )
    return WebhookNotifier(
        WebhookSettings(
            url=target.address,
            timeout_seconds=settings.request_timeout_seconds,
            user_agent=settings.user_agent,
        )
    )


async def notify(targets: Sequence[str], message: str, settings: Settings | None = None) -> None:
    """Send ``message`` to every target; raise NotifyError listing any that failed."""
    logger = logging.getLogger(__name__)
    settings = settings or Settings()
    failed: list[str] = []

    for target in targets:
        try:
            notifier = build_notifier(parse_target(target), settings)
            success = await notifier.send(message)
        except Exception as exc:
            logger.error("Notifier failed for %s: %s", target, exc)
            success = False
        if success:
            logger.info("Notified %s", target)
        else:
            failed.append(target)

    if failed:
        raise NotifyError(f"Notification failed for {', '.join(failed)}", failed_targets=failed)
