"""Translate host tab notifications into canonical TabEvents and fan them out."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union

from trailblazer.errors import HostUnavailable
from trailblazer.events.models import (
    ClosedTabData,
    CreatedTabData,
    SwitchedTabData,
    TabEvent,
    TabEventType,
    UpdatedTabData,
    now_ms,
)

logger = logging.getLogger("trailblazer.events.adapter")

Listener = Callable[[TabEvent], Union[None, Awaitable[None]]]

ON_CREATED_TAB = "on_created_tab"
ON_UPDATED_TAB = "on_updated_tab"
ON_SWITCHED_TAB = "on_switched_tab"
ON_CLOSED_TAB = "on_closed_tab"

HOST_TABS_ON_CREATED = "tabs.onCreated"
HOST_TABS_ON_UPDATED = "tabs.onUpdated"
HOST_TABS_ON_ACTIVATED = "tabs.onActivated"
HOST_TABS_ON_REMOVED = "tabs.onRemoved"


class TabHost(Protocol):
    """Host browser queries needed to backfill existing tabs."""

    async def query_tabs(self, window_type: str = "normal") -> list[dict[str, Any]]:
        ...

    async def get_last_focused_window(self, populate: bool = True) -> dict[str, Any] | None:
        ...


class EventChannel:
    """Subscription handle exposed for one declared event."""

    def __init__(self, listeners: list[Listener]):
        self._listeners = listeners

    def add_listener(self, listener: Listener) -> None:
        # Duplicates are kept; a handler added twice fires twice.
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        """Remove one registration of ``listener``; unknown listeners are ignored."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            logger.debug("Listener %r was not registered", listener)


class TabEventAdapter:
    """
    Single subscription point for host tab lifecycle notifications.

    Each host notification is translated into a ``TabEvent`` and passed to
    every listener registered on the matching channel, in registration order.
    Nothing is delivered until ``ready()`` has been called; events arriving
    before that are dropped.
    """

    def __init__(self, host: TabHost | None = None):
        self._host = host
        self._ready = False
        self._listeners: dict[str, list[Listener]] = {}

        self.declare_event(ON_CREATED_TAB)
        self.declare_event(ON_UPDATED_TAB)
        self.declare_event(ON_SWITCHED_TAB)
        self.declare_event(ON_CLOSED_TAB)

        self._translators: dict[str, Callable[..., Awaitable[TabEvent]]] = {
            HOST_TABS_ON_CREATED: self._on_created_tab,
            HOST_TABS_ON_UPDATED: self._on_updated_tab,
            HOST_TABS_ON_ACTIVATED: self._on_switched_tab,
            HOST_TABS_ON_REMOVED: self._on_closed_tab,
        }

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def host(self) -> TabHost | None:
        return self._host

    @host.setter
    def host(self, host: TabHost | None) -> None:
        self._host = host

    def declare_event(self, name: str) -> EventChannel:
        """Declare channel ``name`` and expose it as ``self.<name>``."""
        listeners = self._listeners.setdefault(name, [])
        channel = EventChannel(listeners)
        setattr(self, name, channel)
        return channel

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, []))

    def supports(self, host_event: str) -> bool:
        return host_event in self._translators

    async def ready(self, fire_create: bool = False) -> None:
        """
        Start delivering events to listeners.

        With ``fire_create`` a ``created_tab`` is synthesized for every open
        tab, followed by one ``switched_tab`` for the focused tab. Only the
        first call has any effect.
        """
        if self._ready:
            logger.warning("TabEventAdapter.ready() called multiple times. Skipping.")
            return
        self._ready = True
        logger.info("Tab event adapter ready (fire_create=%s)", fire_create)
        if not fire_create:
            return
        if self._host is None:
            logger.warning("No tab host configured; skipping created_tab backfill.")
            return

        try:
            await self._backfill()
        except HostUnavailable:
            logger.warning("Tab host unavailable; skipping created_tab backfill.", exc_info=True)

    async def _backfill(self) -> None:
        tabs = await self._host.query_tabs(window_type="normal")
        for tab in tabs:
            await self._on_created_tab(tab)

        window = await self._host.get_last_focused_window(populate=True)
        if not window or window.get("type") != "normal":
            return
        active = next((tab for tab in window.get("tabs") or [] if tab.get("active")), None)
        if active is None:
            logger.debug("Focused window %s has no active tab", window.get("id"))
            return
        await self._on_switched_tab({"windowId": window.get("id"), "tabId": active["id"]})

    async def handle_host_notification(self, name: str, *args: Any) -> TabEvent:
        """Translate a raw host notification such as ``tabs.onCreated``."""
        translator = self._translators.get(name)
        if translator is None:
            raise ValueError(f"Unsupported host notification: {name}")
        return await translator(*args)

    async def _emit(self, channel: str, event: TabEvent) -> None:
        if not self._ready:
            logger.debug("Adapter not ready, dropping %s", event.type.value)
            return
        for listener in list(self._listeners[channel]):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Listener failed for %s (tab_id=%s)", event.type.value, event.data.tab_id)

    async def _on_created_tab(self, tab: dict[str, Any]) -> TabEvent:
        event = TabEvent(
            type=TabEventType.CREATED_TAB,
            occurred=now_ms(),
            data=CreatedTabData(
                tab_id=tab["id"],
                parent_tab_id=tab.get("openerTabId"),
                url=tab.get("url"),
                title=tab.get("title"),
            ),
        )
        await self._emit(ON_CREATED_TAB, event)
        return event

    async def _on_updated_tab(
        self,
        tab_id: int,
        change_info: dict[str, Any] | None,
        tab: dict[str, Any],
    ) -> TabEvent:
        event = TabEvent(
            type=TabEventType.UPDATED_TAB,
            occurred=now_ms(),
            data=UpdatedTabData(tab_id=tab.get("id", tab_id), url=tab.get("url"), title=tab.get("title")),
        )
        await self._emit(ON_UPDATED_TAB, event)
        return event

    async def _on_switched_tab(self, active_info: dict[str, Any]) -> TabEvent:
        event = TabEvent(
            type=TabEventType.SWITCHED_TAB,
            occurred=now_ms(),
            data=SwitchedTabData(tab_id=active_info["tabId"], window_id=active_info.get("windowId")),
        )
        await self._emit(ON_SWITCHED_TAB, event)
        return event

    async def _on_closed_tab(self, tab_id: int, remove_info: dict[str, Any] | None = None) -> TabEvent:
        event = TabEvent(
            type=TabEventType.CLOSED_TAB,
            occurred=now_ms(),
            data=ClosedTabData(tab_id=tab_id),
        )
        await self._emit(ON_CLOSED_TAB, event)
        return event


_GLOBAL_EVENT_ADAPTER = TabEventAdapter()


def get_event_adapter() -> TabEventAdapter:
    """Return the process-wide event adapter."""
    return _GLOBAL_EVENT_ADAPTER
