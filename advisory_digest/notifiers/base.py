from __future__ import annotations

from abc import ABC, abstractmethod


class BaseNotifier(ABC):
    target: str

    @abstractmethod
    async def send(self, message: str) -> bool:
        """Send a plain-text digest notification. Returns True if successful."""
        raise NotImplementedError
