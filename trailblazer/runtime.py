"""Compose adapter, bus, store and tracker into one running service."""

from __future__ import annotations

import logging
from typing import Any

from trailblazer.config import TrailblazerConfig
from trailblazer.dispatch.actions import ActionCreators
from trailblazer.dispatch.bus import ActionBus
from trailblazer.events.adapter import EventChannel, Listener, TabEventAdapter, TabHost, get_event_adapter
from trailblazer.events.host_client import HttpTabHost
from trailblazer.events.receiver import HostEventServer
from trailblazer.storage.record_store import RecordStore
from trailblazer.tracker.tab_tracker import TabRecordingTracker

logger = logging.getLogger("trailblazer.runtime")

DRIVER_ACTIONS = {"getLog", "get_state"}


class TrailblazerRuntime:
    """
    Wire host events through the bus into the tab tracker.

    ``created_tab``, ``updated_tab`` and ``closed_tab`` become bus actions.
    ``switched_tab`` only re-broadcasts the tracker snapshot to change
    listeners; focus changes carry no recording transition.

    By default the process-wide adapter is used. It backfills open tabs only
    on its first ``ready()``, so a later runtime sharing it starts from live
    notifications alone. ``stop()`` detaches this runtime's listeners; a
    stopped runtime is not restarted.
    """

    def __init__(
        self,
        config: TrailblazerConfig,
        *,
        adapter: TabEventAdapter | None = None,
        host: TabHost | None = None,
        store: RecordStore | None = None,
        start_receiver: bool = True,
    ):
        self.config = config
        self.adapter = adapter or get_event_adapter()
        if host is not None:
            self.adapter.host = host
        elif self.adapter.host is None and config.host_url:
            self.adapter.host = HttpTabHost(config.host_url)
        self.store = store or RecordStore(config.db_path)
        self.bus = ActionBus()
        self.actions = ActionCreators(self.bus)
        self.tracker = TabRecordingTracker(self.bus, self.store)
        self.receiver: HostEventServer | None = None
        if start_receiver:
            self.receiver = HostEventServer(
                self.adapter,
                host=config.receiver_host,
                port=config.receiver_port,
            )
        self._started = False
        self._connect_adapter()

    def _adapter_bindings(self) -> list[tuple[EventChannel, Listener]]:
        return [
            (self.adapter.on_created_tab, self.actions.tab_created),
            (self.adapter.on_updated_tab, self.actions.tab_updated),
            (self.adapter.on_switched_tab, self.tracker.broadcast_snapshot),
            (self.adapter.on_closed_tab, self.actions.tab_closed),
        ]

    def _connect_adapter(self) -> None:
        for channel, listener in self._adapter_bindings():
            channel.add_listener(listener)

    def _disconnect_adapter(self) -> None:
        for channel, listener in self._adapter_bindings():
            channel.remove_listener(listener)

    async def start(self) -> None:
        if self._started:
            logger.warning("Runtime already started")
            return
        await self.store.initialize()
        if self.receiver is not None:
            await self.receiver.start()
        try:
            await self.adapter.ready(self.config.fire_create_on_ready)
        except Exception:
            if self.receiver is not None:
                await self.receiver.stop()
            raise
        self._started = True
        logger.info("Trailblazer runtime started (api=%s/%s)", self.config.api.base_url, self.config.api.version)

    async def stop(self) -> None:
        """Stop the receiver and detach this runtime from the adapter."""
        if self.receiver is not None:
            await self.receiver.stop()
        self._disconnect_adapter()
        self._started = False
        logger.info("Trailblazer runtime stopped")

    async def handle_driver_request(self, request: dict[str, Any]) -> dict[str, Any]:
        """Answer one driver request, e.g. ``{"action": "getLog"}``."""
        action = request.get("action") if isinstance(request, dict) else None
        if action not in DRIVER_ACTIONS:
            logger.warning("Unsupported driver action: %s", action)
            return {"error": "unsupported action"}
        return {"data": await self.tracker.describe()}
