"""Session-related data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .audio import RecordingSource


class RecordingState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"
    AUTO_RECORDING = "auto_recording"


class RecordingMode(Enum):
    MANUAL = "manual"
    AUTO = "auto"


@dataclass
class RecordingStatus:
    """Answer to an is-recording query."""
    session_id: str
    active: bool
    state: RecordingState = RecordingState.IDLE
    source: Optional[RecordingSource] = None
    mode: Optional[RecordingMode] = None
    started_at: Optional[datetime] = None
    paused: bool = False
    consecutive_failures: int = 0
