"""Services layer: recording sessions, orchestration and coaching."""

from .recording_session import RecordingSession, CaptureSettings
from .session_registry import SessionRegistry
from .orchestrator import PipelineOrchestrator, PipelineSettings, SessionWorker
from .coaching import CoachingCollaborator, ChatCompletionsCoach, EchoCoach, create_coach

__all__ = [
    "RecordingSession",
    "CaptureSettings",
    "SessionRegistry",
    "PipelineOrchestrator",
    "PipelineSettings",
    "SessionWorker",
    "CoachingCollaborator",
    "ChatCompletionsCoach",
    "EchoCoach",
    "create_coach",
]
