"""Abstract base class for speech-to-text backends."""

from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """Abstract base class for transcription backends."""

    service_name = "unknown"

    def __init__(self, language: str = "auto"):
        """Initialize backend with language preference."""
        self.language = language

    @abstractmethod
    def transcribe_file(self, session_id: str, audio_path: str) -> str:
        """Transcribe one audio file and return the raw backend text.

        Args:
            session_id: Session the audio belongs to (used to own any helper process)
            audio_path: Path to a WAV segment

        Returns:
            Raw transcription text, possibly with timestamps or other markup

        Raises:
            BackendUnavailableError: the backend cannot run at all
            TranscriptionFailedError: this particular call failed
        """
        pass

    @abstractmethod
    def initialize(self) -> bool:
        """Initialize backend resources and verify configuration.

        Returns:
            True if initialization successful, False otherwise
        """
        pass

    def cleanup(self) -> None:
        """Clean up backend resources."""
        pass

    def get_display_info(self) -> str:
        """Short human-readable description of the backend."""
        return f"{self.service_name} ({self.language})"
