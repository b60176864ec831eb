"""Local HTTP receiver for raw host tab notifications."""

from __future__ import annotations

import logging
from typing import Any

from aiohttp import web

from trailblazer.events.adapter import TabEventAdapter

logger = logging.getLogger("trailblazer.events.receiver")


class HostEventServer:
    """Aiohttp server that forwards host notifications to the event adapter."""

    def __init__(self, adapter: TabEventAdapter, host: str = "127.0.0.1", port: int = 7331):
        self.adapter = adapter
        self.host = host
        self.port = port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/notifications", self._handle_notification)
        return app

    async def _handle_notification(self, request: web.Request) -> web.Response:
        """Accept one host notification and translate it."""
        try:
            body: dict[str, Any] = await request.json()
        except ValueError:
            return web.json_response({"status": "bad_request"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"status": "bad_request"}, status=400)

        event_name = body.get("event")
        args = body.get("args", [])
        if not isinstance(event_name, str) or not isinstance(args, list):
            return web.json_response({"status": "bad_request"}, status=400)
        if not self.adapter.supports(event_name):
            return web.json_response({"status": "unsupported_event"}, status=400)

        try:
            event = await self.adapter.handle_host_notification(event_name, *args)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Malformed %s notification: %s", event_name, exc)
            return web.json_response({"status": "bad_request"}, status=400)
        return web.json_response({"status": "ok", "type": event.type.value, "occurred": event.occurred})

    async def start(self) -> None:
        """Start aiohttp receiver."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host=self.host, port=self.port)
        await self._site.start()
        logger.info("Host event receiver started at http://%s:%s", self.host, self.port)

    async def stop(self) -> None:
        """Stop aiohttp receiver."""
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.info("Host event receiver stopped")
