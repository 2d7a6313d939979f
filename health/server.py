"""
Health Server — Liveness Endpoint for the Process Monitor

THIS MODULE DEFINES NO COMMANDS.

GET / answers 200 while the process is up; every other path is 404.
"""

from __future__ import annotations

import logging
from typing import Optional

from aiohttp import web

logger = logging.getLogger(__name__)

HEALTH_TEXT = "Discord bot is running!"


async def _handle_root(request: web.Request) -> web.Response:
    return web.Response(text=HEALTH_TEXT)


async def _handle_not_found(request: web.Request) -> web.Response:
    return web.Response(text="Not found", status=404)


def build_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/", _handle_root)
    app.router.add_route("*", "/{tail:.*}", _handle_not_found)
    return app


class HealthServer:
    def __init__(self, port: int, host: str = "0.0.0.0") -> None:
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    @property
    def running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(build_app())
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()
        self._runner = runner
        logger.info("Health check server running on port %s", self._port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
