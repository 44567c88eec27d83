"""Event models for the pub/sub notification topics."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any, Dict

from .transcription import TranscriptFragment


@dataclass
class FragmentEvent:
    """A fragment was appended to a session's transcript buffer."""
    fragment: TranscriptFragment
    mode: str  # "manual" | "auto"
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class SessionEvent:
    """Recording lifecycle event."""
    session_id: str
    event_type: str  # "started", "stopped", "escalated", "closed"
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorEvent:
    """A user-visible pipeline error."""
    session_id: str
    code: str
    message: str
    recoverable: bool = True
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=datetime.now)
