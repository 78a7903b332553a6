from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

import httpx

from .base import BaseNotifier


MAX_ATTEMPTS = 3


@dataclass
class SlackSettings:
    webhook_url: str
    timeout_seconds: int
    user_agent: str


class SlackNotifier(BaseNotifier):
    def __init__(self, settings: SlackSettings) -> None:
        self._settings = settings
        self._logger = logging.getLogger(__name__)
        self.target = f"slack:{settings.webhook_url}"

    async def send(self, message: str) -> bool:
        payload = {"text": message, "unfurl_links": False}
        headers = {"User-Agent": self._settings.user_agent}

        async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
            for _ in range(MAX_ATTEMPTS):
                response = await client.post(self._settings.webhook_url, json=payload, headers=headers)
                if response.status_code == 429:
                    retry_after = retry_after_seconds(response)
                    self._logger.warning("Slack rate limit hit, sleeping %.2fs", retry_after)
                    await asyncio.sleep(retry_after)
                    continue
                if 200 <= response.status_code < 300:
                    return True
                self._logger.error("Slack webhook failed with status %s", response.status_code)
                return False
            return False


def retry_after_seconds(response: httpx.Response) -> float:
    value = response.headers.get("Retry-After")
    if not value:
        return 1.0
    try:
        return float(value)
    except ValueError:
        return 1.0
