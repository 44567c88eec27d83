"""Error taxonomy for the capture and transcription pipeline."""

from typing import Optional


class EarpieceError(Exception):
    """Base class for all Earpiece errors."""

    code = "EARPIECE_ERROR"

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id

    def __str__(self) -> str:
        if self.session_id:
            return f"{self.message} (session {self.session_id})"
        return self.message


class ConfigError(EarpieceError):
    code = "CONFIG_ERROR"


class LaunchError(EarpieceError):
    """An external process could not be started."""

    code = "LAUNCH_FAILED"

    def __init__(self, message: str, session_id: Optional[str] = None,
                 executable: Optional[str] = None, stderr: Optional[str] = None):
        super().__init__(message, session_id)
        self.executable = executable
        self.stderr = stderr


class ExecutableNotFoundError(LaunchError):
    code = "EXECUTABLE_NOT_FOUND"


class DeviceUnavailableError(LaunchError):
    """Capture device is missing or held by another application."""

    code = "DEVICE_UNAVAILABLE"

    def __init__(self, message: str, session_id: Optional[str] = None,
                 executable: Optional[str] = None, stderr: Optional[str] = None,
                 busy: bool = False):
        super().__init__(message, session_id, executable, stderr)
        self.busy = busy


class CaptureLostError(LaunchError):
    """A capture process exited while its session was still recording."""

    code = "CAPTURE_LOST"

    def __init__(self, message: str, session_id: Optional[str] = None,
                 executable: Optional[str] = None, stderr: Optional[str] = None,
                 returncode: Optional[int] = None):
        super().__init__(message, session_id, executable, stderr)
        self.returncode = returncode


class ProcessTimeoutError(EarpieceError):
    code = "PROCESS_TIMEOUT"

    def __init__(self, message: str, session_id: Optional[str] = None,
                 timeout: Optional[float] = None):
        super().__init__(message, session_id)
        self.timeout = timeout


class ProbeFailedError(EarpieceError):
    """Duration probe failed or returned a non-positive duration."""

    code = "PROBE_FAILED"


class SegmentExtractionError(EarpieceError):
    code = "EXTRACTION_FAILED"


class TranscriptionFailedError(EarpieceError):
    code = "TRANSCRIPTION_FAILED"


class BackendUnavailableError(TranscriptionFailedError):
    """Speech-to-text backend cannot run at all (missing model, binary or credentials)."""

    code = "BACKEND_UNAVAILABLE"


class SessionError(EarpieceError):
    code = "SESSION_ERROR"


class AlreadyRecordingError(SessionError):
    code = "ALREADY_RECORDING"


class NotRecordingError(SessionError):
    code = "NOT_RECORDING"


class RecordingModeError(SessionError):
    """Operation does not apply to the session's current recording mode."""

    code = "WRONG_RECORDING_MODE"


class SessionNotFoundError(SessionError):
    code = "SESSION_NOT_FOUND"


class CoachingError(EarpieceError):
    """The coaching collaborator could not produce a reply."""

    code = "COACHING_FAILED"


class SustainedFailureError(EarpieceError):
    """Per-cycle failures kept recurring until the threshold was reached."""

    code = "SUSTAINED_FAILURE"

    def __init__(self, message: str, session_id: Optional[str] = None,
                 failures: int = 0, last_error: Optional[BaseException] = None):
        super().__init__(message, session_id)
        self.failures = failures
        self.last_error = last_error


# Errors a single polling tick may raise and recover from.
TRANSIENT_CYCLE_ERRORS = (
    ProbeFailedError,
    SegmentExtractionError,
    TranscriptionFailedError,
    ProcessTimeoutError,
)
