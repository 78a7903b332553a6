from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
import logging
from typing import Any, Awaitable, Callable, Mapping, Protocol

from .config import Config, parse_config
from .runner import DigestRunner


TOOL_NAME = "rss_run_digest"
SERVICE_NAME = "rss_digest_scheduler"


@dataclass
class PluginTool:
    name: str
    description: str
    parameters: dict[str, Any]
    execute: Callable[[Mapping[str, Any]], Awaitable[dict[str, Any]]]


class PluginService(Protocol):
    id: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class PluginApi(Protocol):
    config: Config | Mapping[str, Any]
    logger: logging.Logger

    def register_tool(self, tool: PluginTool) -> None: ...

    def register_service(self, service: PluginService) -> None: ...


class DigestScheduler:
    """Runs the digest every ``schedule_interval_hours`` until stopped."""

    id = SERVICE_NAME

    def __init__(self, runner_factory: Callable[[], DigestRunner], interval_hours: float | None, logger: logging.Logger) -> None:
        self._runner_factory = runner_factory
        self._interval_hours = interval_hours
        self._logger = logger
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if not self._interval_hours:
            self._logger.info("Digest schedule not configured; scheduler idle")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        while True:
            try:
                await self._runner_factory().run()
            except Exception:
                self._logger.exception("Scheduled digest run failed")
            await asyncio.sleep(self._interval_hours * 3600)


def register(api: PluginApi, **collaborators: Any) -> None:
    """Register the digest tool and scheduler service with the host runtime.

    Extra keyword arguments are passed to ``DigestRunner`` (collaborator overrides).
    """
    config = api.config if isinstance(api.config, Config) else parse_config(dict(api.config))
    logger = api.logger

    def runner_factory() -> DigestRunner:
        return DigestRunner(config, logger=logger, **collaborators)

    async def execute(args: Mapping[str, Any] | None = None) -> dict[str, Any]:
        args = args or {}
        dry_run = bool(args.get("dryRun", args.get("dry_run", False)))
        result = await runner_factory().run(dry_run=dry_run)
        return result.as_dict()

    api.register_tool(
        PluginTool(
            name=TOOL_NAME,
            description="Fetch configured security feeds and build the security & firmware digest.",
            parameters={
                "type": "object",
                "properties": {
                    "dryRun": {
                        "type": "boolean",
                        "description": "Build the digest without publishing or notifying.",
                    }
                },
            },
            execute=execute,
        )
    )
    api.register_service(DigestScheduler(runner_factory, config.settings.schedule_interval_hours, logger))
