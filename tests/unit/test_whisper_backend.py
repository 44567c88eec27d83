"""Unit tests for WhisperCliBackend."""

from pathlib import Path
from unittest.mock import Mock

import pytest

from earpiece.audio.launcher import CompletedRun
from earpiece.errors import (
    BackendUnavailableError,
    ExecutableNotFoundError,
    ProcessTimeoutError,
    TranscriptionFailedError,
)
from earpiece.transcription.whisper_backend import WhisperCliBackend


@pytest.fixture
def model_file(temp_data_dir):
    path = Path(temp_data_dir) / "ggml-base.en.bin"
    path.write_bytes(b"model")
    return str(path)


@pytest.fixture
def segment_file(temp_data_dir):
    path = Path(temp_data_dir) / "seg.wav"
    path.write_bytes(b"\x00" * 2000)
    return str(path)


@pytest.mark.unit
class TestWhisperCliBackend:

    def test_transcribe_from_stdout(self, model_file, segment_file):
        launcher = Mock()
        launcher.run.return_value = CompletedRun(0, "  hello there \n", "")
        backend = WhisperCliBackend(launcher, "whisper-cli", model_file, timeout=7.0)

        assert backend.transcribe_file("s1", segment_file) == "hello there"
        command, session_id, purpose, timeout = launcher.run.call_args[0]
        assert command.input_path == segment_file
        assert command.model_path == model_file
        assert (session_id, purpose, timeout) == ("s1", "transcribe", 7.0)

    def test_transcribe_falls_back_to_txt_file(self, model_file, segment_file):
        launcher = Mock()

        def _run(command, session_id, purpose, timeout):
            Path(command.transcript_paths()[0]).write_text("from the file\n")
            return CompletedRun(0, "", "")
        launcher.run.side_effect = _run
        backend = WhisperCliBackend(launcher, "whisper-cli", model_file)

        assert backend.transcribe_file("s1", segment_file) == "from the file"
        assert not Path(segment_file + ".txt").exists()

    def test_non_zero_exit(self, model_file, segment_file):
        launcher = Mock()
        launcher.run.return_value = CompletedRun(3, "", "failed to load model")

        with pytest.raises(TranscriptionFailedError):
            WhisperCliBackend(launcher, "whisper-cli", model_file).transcribe_file("s1", segment_file)

    def test_timeout(self, model_file, segment_file):
        launcher = Mock()
        launcher.run.side_effect = ProcessTimeoutError("slow", "s1", timeout=10.0)

        with pytest.raises(TranscriptionFailedError):
            WhisperCliBackend(launcher, "whisper-cli", model_file).transcribe_file("s1", segment_file)

    def test_missing_executable(self, model_file, segment_file):
        launcher = Mock()
        launcher.run.side_effect = ExecutableNotFoundError("not found", "s1", executable="whisper-cli")

        with pytest.raises(BackendUnavailableError):
            WhisperCliBackend(launcher, "whisper-cli", model_file).transcribe_file("s1", segment_file)

    def test_missing_model(self, temp_data_dir, segment_file):
        launcher = Mock()
        backend = WhisperCliBackend(launcher, "whisper-cli", str(Path(temp_data_dir) / "none.bin"))

        with pytest.raises(BackendUnavailableError):
            backend.transcribe_file("s1", segment_file)
        launcher.run.assert_not_called()
        assert not backend.initialize()

    def test_initialize(self, model_file, temp_data_dir):
        executable = Path(temp_data_dir) / "whisper-cli"
        executable.write_text("")

        assert WhisperCliBackend(Mock(), str(executable), model_file).initialize()
        assert not WhisperCliBackend(Mock(), "definitely-not-a-real-whisper-binary", model_file).initialize()
