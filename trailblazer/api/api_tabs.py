"""HTTP endpoints for tab recording commands and queries."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from trailblazer.runtime import TrailblazerRuntime
from trailblazer.storage.record_store import ASSIGNMENTS

logger = logging.getLogger("trailblazer.api.api_tabs")

router = APIRouter()


class StartRecordingRequest(BaseModel):
    """Tab details captured into the first node."""

    title: Optional[str] = None
    url: Optional[str] = None


def _runtime(request: Request) -> TrailblazerRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime not started")
    return runtime


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


@router.get("/state")
async def get_state(request: Request):
    return await _runtime(request).tracker.describe()


@router.post("/driver")
async def driver_request(request: Request, body: dict[str, Any]):
    return await _runtime(request).handle_driver_request(body)


@router.get("/tabs/{tab_id}/state")
async def request_tab_state(request: Request, tab_id: int):
    results = await _runtime(request).actions.request_tab_state(tab_id)
    state = dict(results[0])
    if "assignment" in state:
        state["assignment"] = _dump(state["assignment"])
    return state


@router.post("/tabs/{tab_id}/recording")
async def start_recording(request: Request, tab_id: int, body: StartRecordingRequest):
    results = await _runtime(request).actions.start_recording(tab_id, body.model_dump())
    outcome = results[0]
    if outcome["status"] != "recording":
        raise HTTPException(status_code=409, detail=outcome["failure"])
    return {
        "status": outcome["status"],
        "tab_id": tab_id,
        "assignment": _dump(outcome["assignment"]),
        "node": _dump(outcome["node"]),
    }


@router.delete("/tabs/{tab_id}/recording")
async def stop_recording(request: Request, tab_id: int):
    runtime = _runtime(request)
    stopped: list[int] = []

    def _on_done() -> None:
        stopped.append(tab_id)

    results = await runtime.actions.stop_recording(tab_id, _on_done)
    return {"tab_id": tab_id, "state": results[0].value, "callback_fired": bool(stopped)}


@router.get("/assignments")
async def list_assignments(request: Request, limit: int = 50):
    records = await _runtime(request).store.list_records(ASSIGNMENTS, limit=limit)
    return [record.model_dump() for record in records]
