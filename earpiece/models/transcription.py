"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .audio import RecordingSource


@dataclass
class TranscriptFragment:
    """One sanitized unit of transcribed text."""
    fragment_id: str
    session_id: str
    source: RecordingSource
    raw_text: str
    text: str                   # sanitized
    captured_at: float          # Unix timestamp of the audio window's end
    segment_id: Optional[str] = None
    is_final: bool = False


@dataclass
class DispatchResult:
    """Text handed to the coaching collaborator and its reply."""
    session_id: str
    text: str
    source: RecordingSource
    reply: str
    fragment_count: int
    dispatched_at: datetime = field(default_factory=datetime.now)
