from __future__ import annotations

from dataclasses import dataclass, field
import logging

import httpx

from .base import BaseNotifier


@dataclass
class WebhookSettings:
    url: str
    timeout_seconds: int
    user_agent: str
    headers: dict[str, str] = field(default_factory=dict)


class WebhookNotifier(BaseNotifier):
    def __init__(self, settings: WebhookSettings) -> None:
        self._settings = settings
        self._logger = logging.getLogger(__name__)
        self.target = f"webhook:{settings.url}"

    async def send(self, message: str) -> bool:
        headers = {"User-Agent": self._settings.user_agent}
        headers.update(self._settings.headers)

        async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
            response = await client.post(self._settings.url, json={"text": message}, headers=headers)
            if 200 <= response.status_code < 300:
                return True
            self._logger.error("Webhook failed with status %s", response.status_code)
            return False
