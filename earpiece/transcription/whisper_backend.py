"""whisper.cpp command-line transcription backend."""

import os
import shutil
import logging
from typing import Optional

from .base import AbstractTranscriptionBackend
from ..audio.commands import WhisperCommand
from ..audio.launcher import ProcessLauncher
from ..errors import (
    BackendUnavailableError,
    ExecutableNotFoundError,
    ProcessTimeoutError,
    TranscriptionFailedError,
)

logger = logging.getLogger(__name__)


class WhisperCliBackend(AbstractTranscriptionBackend):
    """Runs ``whisper-cli`` once per segment through the process launcher."""

    service_name = "whisper.cpp"

    def __init__(self,
                 launcher: ProcessLauncher,
                 executable: str = "whisper-cli",
                 model_path: str = "",
                 language: str = "auto",
                 timeout: float = 10.0,
                 threads: Optional[int] = None):
        """Initialize whisper backend.

        Args:
            launcher: Launcher that owns the whisper processes
            executable: whisper-cli binary name or path
            model_path: ggml model file
            language: Spoken language code or "auto"
            timeout: Seconds one transcription may take before it is killed
            threads: Optional CPU thread count for whisper
        """
        super().__init__(language)
        self.launcher = launcher
        self.executable = executable
        self.model_path = model_path
        self.timeout = timeout
        self.threads = threads

    def initialize(self) -> bool:
        """Check the executable resolves and the model file exists."""
        if not (os.path.sep in self.executable and os.path.exists(self.executable)) \
                and shutil.which(self.executable) is None:
            logger.error(f"whisper executable not found: {self.executable}")
            return False
        if not self.model_path or not os.path.exists(self.model_path):
            logger.error(f"Whisper model not found at {self.model_path}. "
                         f"Configure WHISPER_MODEL_PATH or tools.whisper_model")
            return False
        logger.info(f"whisper backend ready: {self.executable} with model {self.model_path}")
        return True

    def transcribe_file(self, session_id: str, audio_path: str) -> str:
        if not self.model_path or not os.path.exists(self.model_path):
            raise BackendUnavailableError(f"Whisper model not found at {self.model_path}", session_id)

        command = WhisperCommand(
            executable=self.executable,
            model_path=self.model_path,
            input_path=audio_path,
            language=self.language,
            threads=self.threads,
        )
        try:
            result = self.launcher.run(command, session_id, "transcribe", self.timeout)
            if not result.ok:
                raise TranscriptionFailedError(
                    f"whisper-cli exited with code {result.returncode}: {result.stderr.strip()[-500:]}",
                    session_id,
                )
            text = result.stdout.strip()
            if not text:
                text = self._read_transcript_file(command)
        except ExecutableNotFoundError as e:
            raise BackendUnavailableError(f"whisper-cli not available: {e.message}", session_id) from e
        except ProcessTimeoutError as e:
            raise TranscriptionFailedError(f"Transcription timed out after {self.timeout}s", session_id) from e
        finally:
            self._remove_transcript_files(command)

        logger.debug(f"whisper produced {len(text)} chars for {audio_path}")
        return text

    def _read_transcript_file(self, command: WhisperCommand) -> str:
        for path in command.transcript_paths():
            if os.path.exists(path):
                try:
                    with open(path, "r", encoding="utf-8", errors="ignore") as f:
                        return f.read().strip()
                except OSError as e:
                    logger.warning(f"Failed to read transcription file {path}: {e}")
        return ""

    def _remove_transcript_files(self, command: WhisperCommand) -> None:
        for path in command.transcript_paths():
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to remove transcription file {path}: {e}")

    def get_display_info(self) -> str:
        return f"{self.service_name} ({os.path.basename(self.model_path) or 'no model'}, {self.language})"
