"""Health reporting utilities for alexa-ev3."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from aiohttp import web

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Tracks component statuses, dispatch state and outcome counters."""

    def __init__(self) -> None:
        self._status: Dict[str, ComponentStatus] = {}
        self._dispatch_state: Optional[str] = None
        self._outcomes: Counter[str] = Counter()
        self._last_command: Optional[str] = None
        self._sensors: Optional[Dict[str, float]] = None
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._status[name] = ComponentStatus(
                name=name, healthy=healthy, detail=detail
            )

    async def set_dispatch_state(self, state: str) -> None:
        async with self._lock:
            self._dispatch_state = state

    async def record_outcome(self, outcome: str, command: Optional[str] = None) -> None:
        async with self._lock:
            self._outcomes[outcome] += 1
            if command is not None:
                self._last_command = command

    async def record_sensors(self, values: Mapping[str, float]) -> None:
        async with self._lock:
            self._sensors = dict(values)

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._status.values()]
            dispatch: Dict[str, object] = {
                "state": self._dispatch_state,
                "outcomes": dict(self._outcomes),
                "lastCommand": self._last_command,
            }
            sensors = dict(self._sensors) if self._sensors is not None else None

        overall = "ok" if all(item["healthy"] for item in components) else "degraded"
        payload: Dict[str, object] = {
            "status": overall,
            "components": components,
            "dispatch": dispatch,
        }
        if sensors is not None:
            payload["sensors"] = sensors
        return payload


class HealthServer:
    """Minimal HTTP server exposing `/healthz` for status checks."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
