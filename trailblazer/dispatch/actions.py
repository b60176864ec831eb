"""Closed set of bus actions and the creators that build them."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict, Field

from trailblazer.contracts import ACTION_SCHEMA_V1
from trailblazer.events.models import TabEvent

if TYPE_CHECKING:
    from trailblazer.dispatch.bus import ActionBus
    from trailblazer.storage.models import AssignmentRecord, NodeRecord


class ActionType(str, Enum):
    # tab lifecycle
    TAB_CREATED = "TAB_CREATED"
    TAB_UPDATED = "TAB_UPDATED"
    TAB_SWITCHED = "TAB_SWITCHED"
    TAB_CLOSED = "TAB_CLOSED"
    TAB_REPLACED = "TAB_REPLACED"
    CREATED_NAVIGATION_TARGET = "CREATED_NAVIGATION_TARGET"
    HISTORY_STATE_UPDATED = "HISTORY_STATE_UPDATED"
    WEB_NAV_COMMITTED = "WEB_NAV_COMMITTED"

    # recording commands
    START_RECORDING = "START_RECORDING"
    STOP_RECORDING = "STOP_RECORDING"
    REQUEST_TAB_STATE = "REQUEST_TAB_STATE"

    # outcomes
    START_RECORDING_SUCCESS = "START_RECORDING_SUCCESS"
    START_RECORDING_FAIL = "START_RECORDING_FAIL"
    STOP_RECORDING_SUCCESS = "STOP_RECORDING_SUCCESS"
    CREATE_ASSIGNMENT_SUCCESS = "CREATE_ASSIGNMENT_SUCCESS"
    CREATE_NODE_SUCCESS = "CREATE_NODE_SUCCESS"
    REQUEST_TAB_STATE_RESPONSE = "REQUEST_TAB_STATE_RESPONSE"


TRACKER_ACTIONS = frozenset(
    {
        ActionType.TAB_CREATED,
        ActionType.TAB_UPDATED,
        ActionType.TAB_SWITCHED,
        ActionType.TAB_CLOSED,
        ActionType.TAB_REPLACED,
        ActionType.CREATED_NAVIGATION_TARGET,
        ActionType.HISTORY_STATE_UPDATED,
        ActionType.WEB_NAV_COMMITTED,
        ActionType.START_RECORDING,
        ActionType.STOP_RECORDING,
        ActionType.REQUEST_TAB_STATE,
    }
)

OnDone = Callable[[], Union[None, Awaitable[None]]]


class Action(BaseModel):
    """One message on the dispatch bus."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: ActionType
    payload: dict[str, Any] = Field(default_factory=dict)
    schema_version: str = ACTION_SCHEMA_V1

    @property
    def tab_id(self) -> int | None:
        value = self.payload.get("tab_id")
        return int(value) if value is not None else None


class ActionCreators:
    """Build and dispatch named actions on a bus."""

    def __init__(self, bus: "ActionBus"):
        self.bus = bus

    async def _dispatch(self, action_type: ActionType, **payload: Any) -> list[Any]:
        return await self.bus.dispatch(Action(type=action_type, payload=payload))

    # lifecycle events
    async def tab_created(self, event: TabEvent) -> list[Any]:
        data = event.data
        return await self._dispatch(
            ActionType.TAB_CREATED,
            tab_id=data.tab_id,
            parent_tab_id=getattr(data, "parent_tab_id", None),
            url=getattr(data, "url", None),
            title=getattr(data, "title", None),
            occurred=event.occurred,
        )

    async def tab_updated(self, event: TabEvent) -> list[Any]:
        data = event.data
        return await self._dispatch(
            ActionType.TAB_UPDATED,
            tab_id=data.tab_id,
            url=getattr(data, "url", None),
            title=getattr(data, "title", None),
            occurred=event.occurred,
        )

    async def tab_switched(self, event: TabEvent) -> list[Any]:
        return await self._dispatch(ActionType.TAB_SWITCHED, tab_id=event.data.tab_id, occurred=event.occurred)

    async def tab_closed(self, event: TabEvent) -> list[Any]:
        return await self._dispatch(ActionType.TAB_CLOSED, tab_id=event.data.tab_id, occurred=event.occurred)

    # commands
    async def start_recording(self, tab_id: int, tab: dict[str, Any]) -> list[Any]:
        return await self._dispatch(ActionType.START_RECORDING, tab_id=tab_id, tab=dict(tab))

    async def stop_recording(self, tab_id: int, on_done: OnDone) -> list[Any]:
        return await self._dispatch(ActionType.STOP_RECORDING, tab_id=tab_id, on_done=on_done)

    async def request_tab_state(self, tab_id: int) -> list[Any]:
        return await self._dispatch(ActionType.REQUEST_TAB_STATE, tab_id=tab_id)

    # outcomes
    async def start_recording_success(self, tab_id: int) -> list[Any]:
        return await self._dispatch(ActionType.START_RECORDING_SUCCESS, tab_id=tab_id)

    async def start_recording_fail(self, tab_id: int, failure: dict[str, Any]) -> list[Any]:
        return await self._dispatch(ActionType.START_RECORDING_FAIL, tab_id=tab_id, failure=failure)

    async def stop_recording_success(self, tab_id: int) -> list[Any]:
        return await self._dispatch(ActionType.STOP_RECORDING_SUCCESS, tab_id=tab_id)

    async def create_assignment_success(self, assignment: "AssignmentRecord") -> list[Any]:
        return await self._dispatch(ActionType.CREATE_ASSIGNMENT_SUCCESS, assignment=assignment)

    async def create_node_success(self, node: "NodeRecord") -> list[Any]:
        return await self._dispatch(ActionType.CREATE_NODE_SUCCESS, node=node)

    async def request_tab_state_response(self, tab_id: int, state: dict[str, Any]) -> list[Any]:
        return await self._dispatch(ActionType.REQUEST_TAB_STATE_RESPONSE, tab_id=tab_id, state=state)
