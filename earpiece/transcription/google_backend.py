"""Google Speech-to-Text transcription backend."""

import time
import wave
import logging
from typing import Optional

from .base import AbstractTranscriptionBackend
from ..errors import BackendUnavailableError, TranscriptionFailedError

from google.cloud import speech
from google.api_core import exceptions as gax_exceptions
from google.oauth2 import service_account

logger = logging.getLogger(__name__)


class GoogleSpeechBackend(AbstractTranscriptionBackend):
    """Google Speech-to-Text API backend for segment files."""

    service_name = "Google Speech-to-Text"

    def __init__(self,
                 credentials_path: Optional[str] = None,
                 language: str = "en-US",
                 use_enhanced: bool = True,
                 enable_automatic_punctuation: bool = True,
                 timeout: float = 10.0):
        """Initialize Google Speech backend.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            language: Language code (e.g., 'en-US', 'es-ES')
            use_enhanced: Whether to use enhanced model (costs more but better quality)
            enable_automatic_punctuation: Enable automatic punctuation
            timeout: Per-request deadline in seconds
        """
        super().__init__(language)
        self.credentials_path = credentials_path
        if not self.credentials_path:
            raise ValueError("Google credentials path is required - cannot initialize without credentials")
        self.use_enhanced = use_enhanced
        self.enable_automatic_punctuation = enable_automatic_punctuation
        self.timeout = timeout
        self.client = None
        self.project_id = None

    def initialize(self) -> bool:
        """Initialize Google Speech client and verify credentials."""
        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        try:
            credentials = service_account.Credentials.from_service_account_file(self.credentials_path)
        except (OSError, ValueError) as e:
            logger.error(f"Invalid Google credentials {self.credentials_path}: {e}")
            return False

        self.client = speech.SpeechClient(credentials=credentials)
        self.project_id = credentials.project_id
        logger.info(f"Using Google Cloud project: {self.project_id}")
        return True

    def _recognition_config(self, sample_rate: int, channels: int) -> speech.RecognitionConfig:
        return speech.RecognitionConfig(
            encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
            sample_rate_hertz=sample_rate,
            audio_channel_count=channels,
            language_code=self.language,
            use_enhanced=self.use_enhanced,
            enable_automatic_punctuation=self.enable_automatic_punctuation,
            model="latest_short",
        )

    def transcribe_file(self, session_id: str, audio_path: str) -> str:
        if self.client is None:
            raise BackendUnavailableError("Google Speech client is not initialized", session_id)

        try:
            with wave.open(audio_path, "rb") as wf:
                sample_rate = wf.getframerate()
                channels = wf.getnchannels()
                frames = wf.readframes(wf.getnframes())
        except (OSError, EOFError, wave.Error) as e:
            raise TranscriptionFailedError(f"Unreadable segment {audio_path}: {e}", session_id) from e

        start_time = time.time()
        audio = speech.RecognitionAudio(content=frames)
        try:
            response = self.client.recognize(config=self._recognition_config(sample_rate, channels),
                                             audio=audio, timeout=self.timeout)
        except gax_exceptions.DeadlineExceeded as e:
            logger.error("Google STT recognize deadline exceeded for %s", audio_path)
            raise TranscriptionFailedError(f"Google Speech recognize timeout: {e}", session_id) from e
        except gax_exceptions.ServiceUnavailable as e:
            logger.error("Google STT service unavailable for %s", audio_path)
            raise TranscriptionFailedError(f"Google Speech service unavailable: {e}", session_id) from e
        except gax_exceptions.GoogleAPICallError as e:
            logger.error("Google STT API call error for %s: %s", audio_path, e)
            raise TranscriptionFailedError(f"Google Speech API error: {e}", session_id) from e

        processing_time = time.time() - start_time
        if not response.results:
            logger.debug(f"No speech detected in {audio_path} ({processing_time:.3f}s)")
            return ""

        # Synchronous recognition splits long audio into consecutive results
        text = " ".join(result.alternatives[0].transcript.strip()
                        for result in response.results if result.alternatives)
        logger.debug(f"Google transcription for {audio_path}: '{text}' ({processing_time:.3f}s)")
        return text

    def cleanup(self) -> None:
        self.client = None
