"""Unit tests for the command line entry point."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from earpiece.config import EarpieceConfig
from earpiece.main import Server, main, setup_logging
from earpiece.models.audio import RecordingSource
from earpiece.models.session import RecordingStatus


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(temp_data_dir):
    path = Path(temp_data_dir) / "earpiece.yaml"
    path.write_text(yaml.safe_dump({
        "storage": {"temp_directory": "audio"},
        "logging": {"file_path": "logs/earpiece.log", "level": "DEBUG", "console_output": False},
    }))
    return str(path)


@pytest.mark.unit
class TestSetupLogging:

    def test_file_and_console_handlers(self, temp_data_dir):
        log_file = Path(temp_data_dir) / "logs" / "run.log"
        config = EarpieceConfig.from_dict({"logging": {"file_path": str(log_file)}})

        setup_logging(config, "info")

        root = logging.getLogger()
        assert root.level == logging.INFO
        levels = sorted(h.level for h in root.handlers)
        assert levels == [logging.DEBUG, logging.WARNING]
        assert log_file.exists()


@pytest.mark.unit
class TestServer:

    def test_paths_resolve_against_config_file(self, config_file, temp_data_dir):
        server = Server(config_file)

        assert server.config.get_temp_directory() == str(Path(temp_data_dir) / "audio")
        assert (Path(temp_data_dir) / "logs" / "earpiece.log").exists()
        assert server.session_id.startswith("cli-")

    def test_manual_run(self, config_file):
        with patch("earpiece.main.PipelineOrchestrator") as orchestrator_class:
            orchestrator = orchestrator_class.return_value
            orchestrator.stop_recording.return_value = "final words"
            server = Server(config_file)
            server.init()

            transcript = server.run(RecordingSource.INTERVIEWEE, duration=0, auto=False, flush_every=None)
            server.cleanup()

        assert transcript == "final words"
        orchestrator.start.assert_called_once()
        orchestrator.on_session_created.assert_called_once_with(server.session_id)
        orchestrator.start_recording.assert_called_once_with(server.session_id, RecordingSource.INTERVIEWEE)
        orchestrator.shutdown.assert_called_once()

    def test_auto_run_flushes(self, config_file):
        with patch("earpiece.main.PipelineOrchestrator") as orchestrator_class:
            orchestrator = orchestrator_class.return_value
            orchestrator.is_recording.return_value = RecordingStatus(session_id="x", active=True)
            orchestrator.toggle_auto_recorder.return_value = "auto words"
            server = Server(config_file)
            server.init()

            transcript = server.run(RecordingSource.SYSTEM, duration=1, auto=True, flush_every=1)

        assert transcript == "auto words"
        assert orchestrator.toggle_auto_recorder.call_args_list[0][0] == (server.session_id, True,
                                                                          RecordingSource.SYSTEM)
        assert orchestrator.toggle_auto_recorder.call_args_list[-1][0] == (server.session_id, False)
        orchestrator.flush_auto_recorder.assert_called_with(server.session_id)

    def test_recording_that_ends_early(self, config_file):
        with patch("earpiece.main.PipelineOrchestrator") as orchestrator_class:
            orchestrator = orchestrator_class.return_value
            orchestrator.is_recording.return_value = RecordingStatus(session_id="x", active=False)
            server = Server(config_file)
            server.init()

            assert server.run(RecordingSource.INTERVIEWEE, duration=5, auto=False, flush_every=None) == ""
        orchestrator.stop_recording.assert_not_called()


@pytest.mark.unit
def test_missing_config_file_exits_with_config_error(temp_data_dir):
    argv = ["earpiece", "--config", str(Path(temp_data_dir) / "missing.yaml")]
    with patch("sys.argv", argv):
        with pytest.raises(SystemExit) as exc_info:
            main()
    assert exc_info.value.code == 2
