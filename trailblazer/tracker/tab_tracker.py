"""Per-tab recording state machine driven by bus actions."""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

from trailblazer.dispatch.actions import TRACKER_ACTIONS, Action, ActionCreators, ActionType
from trailblazer.dispatch.bus import ActionBus
from trailblazer.errors import TransactionFailure, UnimplementedTransition, UnknownStoreError
from trailblazer.failures import ERROR_ALREADY_RECORDING, build_failure, classify_failure
from trailblazer.storage.models import AssignmentRecord, NodeRecord
from trailblazer.storage.record_store import ASSIGNMENTS, MODE_READWRITE, NODES, RecordStore
from trailblazer.tracker.state import TabState
from trailblazer.util import random_name

logger = logging.getLogger("trailblazer.tracker.tab_tracker")

ChangeListener = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]


class TabRecordingTracker:
    """
    Owns the tab id -> recording state mapping.

    Every consumed action type has exactly one handler; the table is checked
    for completeness when the tracker is built. Start, stop and close for the
    same tab are serialized by a per-tab lock so an in-flight transaction
    always finishes before the next transition for that tab is applied.
    """

    def __init__(
        self,
        bus: ActionBus,
        store: RecordStore,
        *,
        name_generator: Callable[[], str] = random_name.get,
    ):
        self.bus = bus
        self.store = store
        self.actions = ActionCreators(bus)
        self._name_generator = name_generator
        self._tabs: dict[int, TabState] = {}
        # inherited tab -> tab whose recording it inherited
        self._lineage: dict[int, int] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._change_listeners: list[ChangeListener] = []

        self._handlers = self._build_handler_table()
        for action_type, handler in self._handlers.items():
            bus.subscribe(action_type, handler)

    def _build_handler_table(self) -> dict[ActionType, Callable[[Action], Awaitable[Any]]]:
        table: dict[ActionType, Callable[[Action], Awaitable[Any]]] = {
            ActionType.TAB_CREATED: self.handle_tab_created,
            ActionType.TAB_UPDATED: self.handle_tab_updated,
            ActionType.TAB_CLOSED: self.handle_tab_closed,
            ActionType.TAB_SWITCHED: self.handle_unimplemented,
            ActionType.TAB_REPLACED: self.handle_unimplemented,
            ActionType.CREATED_NAVIGATION_TARGET: self.handle_unimplemented,
            ActionType.HISTORY_STATE_UPDATED: self.handle_unimplemented,
            ActionType.WEB_NAV_COMMITTED: self.handle_unimplemented,
            ActionType.START_RECORDING: self.handle_start_recording,
            ActionType.STOP_RECORDING: self.handle_stop_recording,
            ActionType.REQUEST_TAB_STATE: self.handle_request_tab_state,
        }
        missing = TRACKER_ACTIONS - set(table)
        extra = set(table) - TRACKER_ACTIONS
        if missing or extra:
            raise RuntimeError(
                "tracker handler table out of sync: "
                f"missing={sorted(a.value for a in missing)} extra={sorted(a.value for a in extra)}"
            )
        return table

    # read accessors

    def state_of(self, tab_id: int) -> TabState:
        return self._tabs.get(int(tab_id), TabState.UNTRACKED)

    def is_recording(self, tab_id: int) -> bool:
        return self.state_of(tab_id) == TabState.RECORDING

    def get_state(self) -> dict[str, Any]:
        """Snapshot of every tracked tab, passed to change listeners."""
        return {"tabs": {tab_id: state.value for tab_id, state in self._tabs.items()}}

    async def describe(self) -> dict[str, Any]:
        """Snapshot including the assignment linked to each recording tab."""
        tabs: list[dict[str, Any]] = []
        for tab_id, state in list(self._tabs.items()):
            entry: dict[str, Any] = {"tab_id": tab_id, "state": state.value, "assignment": None}
            if state == TabState.RECORDING:
                assignment = await self._resolve_assignment(tab_id)
                entry["assignment"] = assignment.model_dump() if assignment else None
                entry["inherited_from"] = self._lineage.get(tab_id)
            tabs.append(entry)
        return {"tabs": tabs}

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._change_listeners.append(listener)

    async def broadcast_snapshot(self, *_: Any) -> None:
        await self._emit_change()

    # lifecycle handlers

    async def handle_tab_created(self, action: Action) -> TabState:
        tab_id = int(action.payload["tab_id"])
        parent_id = action.payload.get("parent_tab_id")
        logger.info("handle_tab_created: tab_id=%s parent_tab_id=%s", tab_id, parent_id)

        if tab_id in self._tabs:
            logger.debug("Tab %s already tracked as %s", tab_id, self._tabs[tab_id].value)
            return self._tabs[tab_id]

        if parent_id is not None and self.is_recording(parent_id):
            parent_id = int(parent_id)
            self._tabs[tab_id] = TabState.RECORDING
            self._lineage[tab_id] = self._lineage.get(parent_id, parent_id)
            await self._emit_change()
        else:
            self._tabs[tab_id] = TabState.IDLE
        return self._tabs[tab_id]

    async def handle_tab_updated(self, action: Action) -> dict[str, Any]:
        logger.debug("handle_tab_updated: tab_id=%s", action.payload.get("tab_id"))
        await self._emit_change()
        return self.get_state()

    async def handle_tab_closed(self, action: Action) -> TabState:
        tab_id = int(action.payload["tab_id"])
        logger.info("handle_tab_closed: tab_id=%s", tab_id)
        async with self._lock_for(tab_id):
            self._tabs.pop(tab_id, None)
            self._lineage.pop(tab_id, None)
        self._locks.pop(tab_id, None)
        return TabState.UNTRACKED

    async def handle_unimplemented(self, action: Action) -> None:
        logger.error("handle_unimplemented: %s tab_id=%s", action.type.value, action.payload.get("tab_id"))
        raise UnimplementedTransition(action.type.value)

    # recording commands

    async def handle_start_recording(self, action: Action) -> dict[str, Any]:
        """Create an assignment and its first node in one transaction."""
        tab_id = int(action.payload["tab_id"])
        tab = action.payload.get("tab") or {}
        logger.info("handle_start_recording: tab_id=%s", tab_id)

        async with self._lock_for(tab_id):
            if self.state_of(tab_id) == TabState.RECORDING:
                failure = build_failure(
                    error_class="recording_rejected",
                    error_code=ERROR_ALREADY_RECORDING,
                    tab_id=tab_id,
                    message=f"tab {tab_id} is already recording",
                )
                created = None
            else:
                try:
                    created = await self._create_assignment_with_node(tab_id, tab)
                    failure = None
                    self._tabs[tab_id] = TabState.RECORDING
                    self._lineage.pop(tab_id, None)
                except (TransactionFailure, UnknownStoreError) as exc:
                    exc.tab_id = tab_id
                    failure = classify_failure(error=exc, tab_id=tab_id)
                    created = None
                    self._tabs[tab_id] = TabState.IDLE

        # Outcomes go out after the lock is released so subscribers may
        # dispatch further commands for this tab.
        if created is None:
            logger.warning("handle_start_recording: failed tab_id=%s code=%s", tab_id, failure["error_code"])
            await self.actions.start_recording_fail(tab_id, failure)
            return {"status": "failed", "tab_id": tab_id, "failure": failure}

        assignment, node = created
        logger.info(
            "handle_start_recording: success tab_id=%s assignment=%s node=%s",
            tab_id,
            assignment.local_id,
            node.local_id,
        )
        await self.actions.create_assignment_success(assignment)
        await self.actions.create_node_success(node)
        await self.actions.start_recording_success(tab_id)
        await self._emit_change()
        return {"status": "recording", "tab_id": tab_id, "assignment": assignment, "node": node}

    async def _create_assignment_with_node(
        self,
        tab_id: int,
        tab: dict[str, Any],
    ) -> tuple[AssignmentRecord, NodeRecord]:
        now = datetime.now(timezone.utc)
        assignment = AssignmentRecord(
            title=f"Untitled ({self._name_generator()})",
            description=f"Created {now.strftime('%a %b %d %Y')}",
            created_at=now.isoformat(),
        )
        async with self.store.transaction(MODE_READWRITE, [ASSIGNMENTS, NODES]) as tx:
            assignment_id = await tx.object_store(ASSIGNMENTS).add(assignment)
            node = NodeRecord(
                local_assignment_id=assignment_id,
                tab_id=tab_id,
                title=tab.get("title"),
                url=tab.get("url"),
            )
            node_id = await tx.object_store(NODES).add(node)

        # Identifiers are only trusted once the commit went through.
        return (
            assignment.model_copy(update={"local_id": assignment_id}),
            node.model_copy(update={"local_id": node_id}),
        )

    async def handle_stop_recording(self, action: Action) -> TabState:
        """Run the completion callback, then return the tab to idle."""
        tab_id = int(action.payload["tab_id"])
        on_done = action.payload.get("on_done")
        logger.info("handle_stop_recording: tab_id=%s", tab_id)

        was_recording = False
        try:
            async with self._lock_for(tab_id):
                was_recording = self.is_recording(tab_id)
                if not was_recording:
                    logger.warning("handle_stop_recording: tab %s is not recording", tab_id)
                try:
                    if on_done is not None:
                        result = on_done()
                        if inspect.isawaitable(result):
                            await result
                finally:
                    if was_recording:
                        self._tabs[tab_id] = TabState.IDLE
                        self._lineage.pop(tab_id, None)
        finally:
            # A raising callback still ends the command with its outcome.
            await self.actions.stop_recording_success(tab_id)
            if was_recording:
                await self._emit_change()
        return self.state_of(tab_id)

    async def handle_request_tab_state(self, action: Action) -> dict[str, Any]:
        tab_id = int(action.payload["tab_id"])
        logger.info("handle_request_tab_state: tab_id=%s", tab_id)
        if self.is_recording(tab_id):
            state: dict[str, Any] = {
                "recording": True,
                "assignment": await self._resolve_assignment(tab_id),
            }
        else:
            state = {"recording": False}
        await self.actions.request_tab_state_response(tab_id, state)
        return state

    # helpers

    async def _resolve_assignment(self, tab_id: int) -> AssignmentRecord | None:
        source_tab_id = self._lineage.get(tab_id, tab_id)
        nodes = await self.store.index_lookup(NODES, "tab_id", source_tab_id)
        if not nodes:
            logger.info("No stored node for tab %s (source tab %s)", tab_id, source_tab_id)
            return None
        return await self.store.get(ASSIGNMENTS, nodes[0].local_assignment_id)

    def _lock_for(self, tab_id: int) -> asyncio.Lock:
        lock = self._locks.get(tab_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tab_id] = lock
        return lock

    async def _emit_change(self) -> None:
        snapshot = self.get_state()
        for listener in list(self._change_listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Change listener failed")
