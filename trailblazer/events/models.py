"""Canonical tab lifecycle event envelopes."""

from __future__ import annotations

import time
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict


class TabEventType(str, Enum):
    CREATED_TAB = "created_tab"
    UPDATED_TAB = "updated_tab"
    SWITCHED_TAB = "switched_tab"
    CLOSED_TAB = "closed_tab"


class _EventData(BaseModel):
    model_config = ConfigDict(frozen=True)

    tab_id: int


class CreatedTabData(_EventData):
    parent_tab_id: Optional[int] = None
    url: Optional[str] = None
    title: Optional[str] = None


class UpdatedTabData(_EventData):
    url: Optional[str] = None
    title: Optional[str] = None


class SwitchedTabData(_EventData):
    window_id: Optional[int] = None


class ClosedTabData(_EventData):
    pass


TabEventData = Union[CreatedTabData, UpdatedTabData, SwitchedTabData, ClosedTabData]


class TabEvent(BaseModel):
    """
    Immutable envelope delivered to adapter listeners.

    ``occurred`` is wall-clock epoch milliseconds taken when the host
    notification was translated, not when the host fired it.
    """

    model_config = ConfigDict(frozen=True)

    type: TabEventType
    occurred: int
    data: TabEventData


def now_ms() -> int:
    return int(time.time() * 1000)
