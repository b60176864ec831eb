"""Per-tab recording states."""

from enum import Enum


class TabState(str, Enum):
    UNTRACKED = "untracked"
    IDLE = "idle"
    RECORDING = "recording"
