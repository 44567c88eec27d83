"""Transcription adapter: one segment file in, raw backend text out."""

import os
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from .base import AbstractTranscriptionBackend
from ..audio.launcher import ProcessLauncher
from ..errors import ConfigError
from ..models.audio import AudioSegment

logger = logging.getLogger(__name__)

# Anything smaller is a WAV header with (almost) no audio behind it
MIN_SEGMENT_BYTES = 1000


@contextmanager
def owned_segment(segment: AudioSegment) -> Iterator[AudioSegment]:
    """Yield the segment and delete its file afterwards, whatever happened."""
    try:
        yield segment
    finally:
        try:
            os.unlink(segment.path)
            logger.debug(f"Deleted segment file {segment.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete segment file {segment.path}: {e}")


class TranscriptionAdapter:
    """Hands extracted segments to a speech-to-text backend."""

    def __init__(self, backend: AbstractTranscriptionBackend, min_segment_bytes: int = MIN_SEGMENT_BYTES):
        self.backend = backend
        self.min_segment_bytes = min_segment_bytes

    def transcribe(self, segment: AudioSegment) -> Optional[str]:
        """Transcribe a segment; its file is gone when this returns or raises.

        Returns:
            Raw backend text, or None when the segment is missing or too small
            to hold speech (the backend is not called)

        Raises:
            TranscriptionFailedError: the backend failed on this segment
        """
        with owned_segment(segment):
            try:
                size = os.path.getsize(segment.path)
            except OSError:
                logger.warning(f"Segment file missing, skipping: {segment.path}")
                return None

            if size < self.min_segment_bytes:
                logger.debug(f"Segment {segment.segment_id} too small ({size} bytes), skipping")
                return None

            logger.debug(f"Transcribing {segment.segment_id} ({size} bytes, {segment.duration:.2f}s) "
                         f"with {self.backend.service_name}")
            return self.backend.transcribe_file(segment.session_id, segment.path)


def create_backend(config, launcher: ProcessLauncher) -> AbstractTranscriptionBackend:
    """Build the backend named by ``transcription.backend``.

    Raises:
        ConfigError: the backend name is unknown or its configuration is incomplete
    """
    name = str(config.get('transcription.backend', 'whisper')).lower()
    language = config.get('transcription.language', 'auto')

    if name == "whisper":
        from .whisper_backend import WhisperCliBackend
        return WhisperCliBackend(
            launcher=launcher,
            executable=config.get('tools.whisper_cli'),
            model_path=config.get('tools.whisper_model'),
            language=language,
            timeout=config.get_float('pipeline.transcription_timeout_seconds'),
            threads=config.get('transcription.threads'),
        )

    if name == "google":
        # Imported lazily so whisper-only setups never load the Google client
        from .google_backend import GoogleSpeechBackend
        try:
            credentials_path = config.get_google_credentials_path()
        except FileNotFoundError as e:
            raise ConfigError(str(e)) from e
        return GoogleSpeechBackend(
            credentials_path=credentials_path,
            language=config.get('google_cloud.language', 'en-US'),
            use_enhanced=config.get('google_cloud.use_enhanced_model', True),
            enable_automatic_punctuation=config.get('google_cloud.enable_automatic_punctuation', True),
            timeout=config.get_float('pipeline.transcription_timeout_seconds'),
        )

    raise ConfigError(f"Unknown transcription backend: {name!r} (expected 'whisper' or 'google')")
