"""Audio-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Tuple


class RecordingSource(Enum):
    """Where captured audio comes from."""
    INTERVIEWER = "internal"     # system/loopback audio
    INTERVIEWEE = "microphone"
    BOTH = "both"
    SYSTEM = "system"            # interviewer capture used standalone

    def capture_sources(self) -> Tuple["RecordingSource", ...]:
        """Sources that each need their own capture process."""
        if self is RecordingSource.BOTH:
            return (RecordingSource.INTERVIEWER, RecordingSource.INTERVIEWEE)
        return (self,)

    @property
    def captures_loopback(self) -> bool:
        return self in (RecordingSource.INTERVIEWER, RecordingSource.SYSTEM)

    @classmethod
    def parse(cls, value) -> "RecordingSource":
        """Accept an enum member, its value or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown recording source: {value!r}")


@dataclass
class AudioSegment:
    """A bounded slice of a capture file, extracted for one transcription attempt."""
    segment_id: str
    session_id: str
    source: RecordingSource
    source_path: str
    path: str
    start_offset: float
    duration: float
    is_final: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.duration
