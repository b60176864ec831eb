"""Tests for the per-tab recording state machine."""

from __future__ import annotations

import asyncio
import re
import tempfile
import unittest
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from trailblazer.dispatch.actions import TRACKER_ACTIONS, Action, ActionCreators, ActionType
from trailblazer.dispatch.bus import ActionBus
from trailblazer.errors import UnimplementedTransition
from trailblazer.storage.database import connect
from trailblazer.storage.record_store import ASSIGNMENTS, NODES, RecordStore
from trailblazer.tracker.state import TabState
from trailblazer.tracker.tab_tracker import TabRecordingTracker


class _FailingNodeStore:
    def __init__(self, tx):
        self._tx = tx

    def object_store(self, name: str):
        if name == NODES:
            return self
        return self._tx.object_store(name)

    async def add(self, record) -> int:
        raise RuntimeError("disk I/O error")


class _NodeWriteFailsStore(RecordStore):
    """Record store whose node insert always fails after the assignment insert."""

    @asynccontextmanager
    async def transaction(self, mode, store_names):
        async with super().transaction(mode, store_names) as tx:
            yield _FailingNodeStore(tx)


class _ImpatientStore(RecordStore):
    """Record store that gives up quickly on a locked database."""

    def __init__(self, db_path):
        super().__init__(db_path, timeout=0.1)


class TabTrackerTestCase(unittest.IsolatedAsyncioTestCase):
    store_class = RecordStore

    async def asyncSetUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.store = self.store_class(Path(self._tmpdir.name) / "trailblazer.db")
        await self.store.initialize()
        self.bus = ActionBus()
        self.dispatched: list[Action] = []
        self.bus.subscribe_all(self.dispatched.append)
        self.tracker = TabRecordingTracker(self.bus, self.store, name_generator=lambda: "misty meadow")
        self.actions = ActionCreators(self.bus)

    async def asyncTearDown(self) -> None:
        self._tmpdir.cleanup()

    async def create_tab(self, tab_id: int, parent_tab_id: int | None = None) -> None:
        await self.bus.dispatch(
            Action(type=ActionType.TAB_CREATED, payload={"tab_id": tab_id, "parent_tab_id": parent_tab_id})
        )

    async def start(self, tab_id: int, title: str = "Example", url: str = "http://x") -> dict:
        results = await self.actions.start_recording(tab_id, {"title": title, "url": url})
        return results[0]

    async def request_state(self, tab_id: int) -> dict:
        results = await self.actions.request_tab_state(tab_id)
        return results[0]

    def outcome_types(self) -> list[ActionType]:
        return [action.type for action in self.dispatched]


class TabLifecycleTests(TabTrackerTestCase):
    """Creation, inheritance and closure transitions."""

    async def test_unobserved_tab_is_untracked_and_not_recording(self) -> None:
        self.assertEqual(self.tracker.state_of(42), TabState.UNTRACKED)
        state = await self.request_state(42)
        self.assertEqual(state, {"recording": False})
        response = self.dispatched[-1]
        self.assertEqual(response.type, ActionType.REQUEST_TAB_STATE_RESPONSE)
        self.assertEqual(response.payload["tab_id"], 42)

    async def test_created_tab_without_parent_is_idle(self) -> None:
        await self.create_tab(1)
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)

    async def test_created_tab_with_idle_parent_is_idle(self) -> None:
        await self.create_tab(1)
        await self.create_tab(2, parent_tab_id=1)
        self.assertEqual(self.tracker.state_of(2), TabState.IDLE)

    async def test_created_tab_with_unknown_parent_is_idle(self) -> None:
        await self.create_tab(2, parent_tab_id=77)
        self.assertEqual(self.tracker.state_of(2), TabState.IDLE)

    async def test_child_of_recording_tab_inherits_without_store_writes(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        await self.create_tab(2, parent_tab_id=1)
        self.assertEqual(self.tracker.state_of(2), TabState.RECORDING)
        self.assertEqual(await self.store.count(ASSIGNMENTS), 1)
        self.assertEqual(await self.store.count(NODES), 1)

    async def test_inherited_tab_reports_parent_assignment(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        await self.create_tab(2, parent_tab_id=1)
        await self.create_tab(3, parent_tab_id=2)
        await self.bus.dispatch(Action(type=ActionType.TAB_CLOSED, payload={"tab_id": 2}))

        state = await self.request_state(3)
        self.assertTrue(state["recording"])
        self.assertEqual(state["assignment"].local_id, 1)

    async def test_recording_tab_without_stored_node_reports_no_assignment(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        async with connect(self.store.db_path) as db:
            await db.execute("DELETE FROM nodes")

        state = await self.request_state(1)
        self.assertEqual(state, {"recording": True, "assignment": None})

    async def test_closed_tab_is_forgotten(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        await self.create_tab(2, parent_tab_id=1)
        await self.bus.dispatch(Action(type=ActionType.TAB_CLOSED, payload={"tab_id": 2}))

        self.assertEqual(self.tracker.state_of(2), TabState.UNTRACKED)
        self.assertNotIn(2, self.tracker.get_state()["tabs"])
        self.assertEqual(await self.request_state(2), {"recording": False})
        self.assertEqual(self.tracker.state_of(1), TabState.RECORDING)

    async def test_closing_untracked_tab_is_harmless(self) -> None:
        await self.bus.dispatch(Action(type=ActionType.TAB_CLOSED, payload={"tab_id": 9}))
        self.assertEqual(self.tracker.state_of(9), TabState.UNTRACKED)

    async def test_updated_tab_broadcasts_snapshot_without_transition(self) -> None:
        snapshots: list[dict] = []
        self.tracker.add_change_listener(snapshots.append)
        await self.create_tab(1)
        await self.bus.dispatch(Action(type=ActionType.TAB_UPDATED, payload={"tab_id": 1}))
        self.assertEqual(snapshots, [{"tabs": {1: "idle"}}])
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)

    async def test_unimplemented_transitions_raise(self) -> None:
        await self.create_tab(1)
        for action_type in (
            ActionType.TAB_SWITCHED,
            ActionType.CREATED_NAVIGATION_TARGET,
            ActionType.HISTORY_STATE_UPDATED,
            ActionType.WEB_NAV_COMMITTED,
            ActionType.TAB_REPLACED,
        ):
            with self.subTest(action_type=action_type):
                with self.assertRaises(UnimplementedTransition) as ctx:
                    await self.bus.dispatch(Action(type=action_type, payload={"tab_id": 1}))
                self.assertEqual(ctx.exception.action_type, action_type.value)
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)

    async def test_handler_table_covers_every_tracker_action(self) -> None:
        for action_type in TRACKER_ACTIONS:
            self.assertTrue(self.bus.has_handlers(action_type), action_type)


class StartRecordingTests(TabTrackerTestCase):
    """Atomic assignment and node creation."""

    async def test_start_recording_persists_assignment_and_node(self) -> None:
        await self.create_tab(1)
        outcome = await self.start(1, title="Example", url="http://x")

        self.assertEqual(outcome["status"], "recording")
        assignment = outcome["assignment"]
        node = outcome["node"]
        self.assertEqual(assignment.local_id, 1)
        self.assertRegex(assignment.title, r"^Untitled \(.+\)$")
        self.assertEqual(assignment.title, "Untitled (misty meadow)")
        self.assertTrue(assignment.description.startswith("Created "))
        self.assertEqual(node.local_id, 1)
        self.assertEqual(node.local_assignment_id, 1)
        self.assertEqual(node.tab_id, 1)
        self.assertEqual(node.title, "Example")
        self.assertEqual(node.url, "http://x")
        self.assertEqual(self.tracker.state_of(1), TabState.RECORDING)

        stored_node = (await self.store.index_lookup(NODES, "tab_id", 1))[0]
        self.assertEqual(stored_node, node)
        stored_assignment = await self.store.get(ASSIGNMENTS, 1)
        self.assertEqual(stored_assignment, assignment)

    async def test_outcomes_carry_assigned_identifiers(self) -> None:
        await self.create_tab(1)
        await self.start(1)

        outcomes = [a for a in self.dispatched if a.type != ActionType.START_RECORDING]
        self.assertEqual(
            [a.type for a in outcomes],
            [
                ActionType.TAB_CREATED,
                ActionType.CREATE_ASSIGNMENT_SUCCESS,
                ActionType.CREATE_NODE_SUCCESS,
                ActionType.START_RECORDING_SUCCESS,
            ],
        )
        self.assertEqual(outcomes[1].payload["assignment"].local_id, 1)
        self.assertEqual(outcomes[2].payload["node"].local_id, 1)
        self.assertEqual(outcomes[2].payload["node"].local_assignment_id, 1)
        self.assertEqual(outcomes[3].payload["tab_id"], 1)

    async def test_untracked_tab_starts_as_lazily_idle(self) -> None:
        outcome = await self.start(5)
        self.assertEqual(outcome["status"], "recording")
        self.assertEqual(self.tracker.state_of(5), TabState.RECORDING)

    async def test_second_start_while_recording_is_rejected(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        outcome = await self.start(1)

        self.assertEqual(outcome["status"], "failed")
        self.assertEqual(outcome["failure"]["error_code"], "REC_ALREADY_RECORDING")
        self.assertEqual(self.outcome_types()[-1], ActionType.START_RECORDING_FAIL)
        self.assertEqual(await self.store.count(ASSIGNMENTS), 1)
        self.assertEqual(self.tracker.state_of(1), TabState.RECORDING)

    async def test_request_tab_state_returns_assignment(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        state = await self.request_state(1)
        self.assertTrue(state["recording"])
        self.assertEqual(state["assignment"].local_id, 1)
        self.assertEqual(state["assignment"].title, "Untitled (misty meadow)")

    async def test_request_tab_state_uses_most_recent_node(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        await self.actions.stop_recording(1, lambda: None)
        await self.start(1)
        state = await self.request_state(1)
        self.assertEqual(state["assignment"].local_id, 2)

    async def test_describe_links_assignments(self) -> None:
        await self.create_tab(1)
        await self.create_tab(2)
        await self.start(1)
        described = await self.tracker.describe()
        by_tab = {entry["tab_id"]: entry for entry in described["tabs"]}
        self.assertEqual(by_tab[1]["state"], "recording")
        self.assertEqual(by_tab[1]["assignment"]["local_id"], 1)
        self.assertEqual(by_tab[2]["state"], "idle")
        self.assertIsNone(by_tab[2]["assignment"])


class StartRecordingFailureTests(TabTrackerTestCase):
    """A failed transaction leaves nothing behind."""

    store_class = _NodeWriteFailsStore

    async def test_failed_transaction_persists_nothing_and_stays_idle(self) -> None:
        await self.create_tab(1)
        outcome = await self.start(1)

        self.assertEqual(outcome["status"], "failed")
        self.assertEqual(outcome["failure"]["error_code"], "TX_ABORTED")
        self.assertEqual(outcome["failure"]["tab_id"], 1)
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)
        self.assertEqual(await self.store.count(ASSIGNMENTS), 0)
        self.assertEqual(await self.store.count(NODES), 0)

        fail = self.dispatched[-1]
        self.assertEqual(fail.type, ActionType.START_RECORDING_FAIL)
        self.assertEqual(fail.payload["tab_id"], 1)
        self.assertNotIn(ActionType.CREATE_ASSIGNMENT_SUCCESS, self.outcome_types())
        self.assertNotIn(ActionType.START_RECORDING_SUCCESS, self.outcome_types())

    async def test_failed_start_reports_not_recording(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        self.assertEqual(await self.request_state(1), {"recording": False})


class LockedDatabaseTests(TabTrackerTestCase):
    """Another connection holds the database write lock."""

    store_class = _ImpatientStore

    async def test_locked_database_yields_fail_outcome(self) -> None:
        await self.create_tab(1)
        async with aiosqlite.connect(self.store.db_path, isolation_level=None) as other:
            await other.execute("BEGIN EXCLUSIVE")
            outcome = await self.start(1)
            await other.execute("ROLLBACK")

        self.assertEqual(outcome["status"], "failed")
        self.assertEqual(outcome["failure"]["error_code"], "TX_ABORTED")
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)
        self.assertEqual(
            self.outcome_types(),
            [ActionType.TAB_CREATED, ActionType.START_RECORDING, ActionType.START_RECORDING_FAIL],
        )
        self.assertEqual(self.dispatched[-1].payload["tab_id"], 1)
        self.assertEqual(await self.store.count(ASSIGNMENTS), 0)


class StopRecordingTests(TabTrackerTestCase):
    """Completion callback ordering and per-tab serialization."""

    async def test_callback_fires_once_before_idle(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        seen: list[TabState] = []

        def _on_done() -> None:
            seen.append(self.tracker.state_of(1))

        results = await self.actions.stop_recording(1, _on_done)
        self.assertEqual(seen, [TabState.RECORDING])
        self.assertEqual(results[0], TabState.IDLE)
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)
        self.assertEqual(self.outcome_types()[-1], ActionType.STOP_RECORDING_SUCCESS)

    async def test_async_callback_is_awaited(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        seen: list[TabState] = []

        async def _on_done() -> None:
            await asyncio.sleep(0)
            seen.append(self.tracker.state_of(1))

        await self.actions.stop_recording(1, _on_done)
        self.assertEqual(seen, [TabState.RECORDING])
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)

    async def test_stop_on_idle_tab_still_fires_callback(self) -> None:
        await self.create_tab(1)
        calls: list[int] = []
        await self.actions.stop_recording(1, lambda: calls.append(1))
        self.assertEqual(calls, [1])
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)

    async def test_raising_callback_still_completes_stop(self) -> None:
        await self.create_tab(1)
        await self.start(1)
        snapshots: list[dict] = []
        self.tracker.add_change_listener(snapshots.append)

        def _on_done() -> None:
            raise RuntimeError("callback bug")

        with self.assertRaises(RuntimeError):
            await self.actions.stop_recording(1, _on_done)
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)
        self.assertEqual(self.outcome_types()[-1], ActionType.STOP_RECORDING_SUCCESS)
        self.assertEqual(snapshots, [{"tabs": {1: "idle"}}])

    async def test_stop_waits_for_inflight_start(self) -> None:
        await self.create_tab(1)
        seen: list[TabState] = []
        await asyncio.gather(
            self.start(1),
            self.actions.stop_recording(1, lambda: seen.append(self.tracker.state_of(1))),
        )
        self.assertEqual(seen, [TabState.RECORDING])
        self.assertEqual(self.tracker.state_of(1), TabState.IDLE)

    async def test_close_waits_for_inflight_start(self) -> None:
        await self.create_tab(1)
        await asyncio.gather(
            self.start(1),
            self.bus.dispatch(Action(type=ActionType.TAB_CLOSED, payload={"tab_id": 1})),
        )
        self.assertEqual(self.tracker.state_of(1), TabState.UNTRACKED)
        self.assertEqual(await self.store.count(ASSIGNMENTS), 1)


if __name__ == "__main__":
    unittest.main()
