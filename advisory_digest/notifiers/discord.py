from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time

import httpx

from .base import BaseNotifier


# Discord rejects message content longer than this.
MAX_CONTENT_LENGTH = 2000
MAX_ATTEMPTS = 3


@dataclass
class DiscordSettings:
    webhook_url: str
    timeout_seconds: int
    user_agent: str


class DiscordNotifier(BaseNotifier):
    def __init__(self, settings: DiscordSettings) -> None:
        self._settings = settings
        self._logger = logging.getLogger(__name__)
        self._last_sent_at = 0.0
        self.target = f"discord:{settings.webhook_url}"

    async def send(self, message: str) -> bool:
        await self._throttle()
        content = message
        if len(content) > MAX_CONTENT_LENGTH:
            content = content[: MAX_CONTENT_LENGTH - 3] + "..."
        payload = {"content": content}
        headers = {"User-Agent": self._settings.user_agent}

        async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
            for _ in range(MAX_ATTEMPTS):
                response = await client.post(self._settings.webhook_url, json=payload, headers=headers)
                if response.status_code == 429:
                    retry_after = _retry_after(response)
                    self._logger.warning("Discord rate limit hit, sleeping %.2fs", retry_after)
                    await asyncio.sleep(retry_after)
                    continue
                if 200 <= response.status_code < 300:
                    return True
                self._logger.error("Discord webhook failed with status %s", response.status_code)
                return False
            return False

    async def _throttle(self) -> None:
        min_interval = 0.5
        now = time.monotonic()
        elapsed = now - self._last_sent_at
        if elapsed < min_interval:
            await asyncio.sleep(min_interval - elapsed)
        self._last_sent_at = time.monotonic()


def _retry_after(response: httpx.Response) -> float:
    value = response.headers.get("Retry-After") or response.headers.get("X-RateLimit-Reset-After")
    if not value:
        try:
            data = response.json()
        except ValueError:
            return 1.0
        retry_after = data.get("retry_after") if isinstance(data, dict) else None
        if retry_after is None:
            return 1.0
        try:
            return float(retry_after)
        except (TypeError, ValueError):
            return 1.0
    try:
        return float(value)
    except ValueError:
        return 1.0
