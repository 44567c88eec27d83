"""Data models for the Earpiece pipeline."""

from .audio import RecordingSource, AudioSegment
from .session import RecordingState, RecordingMode, RecordingStatus
from .transcription import TranscriptFragment, DispatchResult
from .events import FragmentEvent, SessionEvent, ErrorEvent

__all__ = [
    "RecordingSource",
    "AudioSegment",
    "RecordingState",
    "RecordingMode",
    "RecordingStatus",
    "TranscriptFragment",
    "DispatchResult",
    "FragmentEvent",
    "SessionEvent",
    "ErrorEvent",
]
