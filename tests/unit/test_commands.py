"""Unit tests for the external tool command builders."""

import pytest

from earpiece.audio.commands import (
    CaptureCommand,
    ExtractCommand,
    ProbeCommand,
    WhisperCommand,
    format_seconds,
)


@pytest.mark.unit
class TestCommandBuilders:

    def test_capture_command(self):
        command = CaptureCommand("ffmpeg", "avfoundation", ":1", "/tmp/capture.wav")

        argv = command.argv()

        assert argv[0] == "ffmpeg"
        assert argv[argv.index("-f") + 1] == "avfoundation"
        assert argv[argv.index("-i") + 1] == ":1"
        assert argv[argv.index("-ar") + 1] == "16000"
        assert argv[argv.index("-ac") + 1] == "1"
        assert argv[argv.index("-acodec") + 1] == "pcm_s16le"
        assert argv[-1] == "/tmp/capture.wav"

    def test_probe_command(self):
        argv = ProbeCommand("ffprobe", "/tmp/capture.wav").argv()

        assert argv == ["ffprobe", "-v", "error", "-show_entries", "format=duration",
                        "-of", "csv=p=0", "/tmp/capture.wav"]

    def test_extract_command_offsets(self):
        argv = ExtractCommand("ffmpeg", "/tmp/in.wav", "/tmp/out.wav", 7.25, 5).argv()

        assert argv[argv.index("-i") + 1] == "/tmp/in.wav"
        assert argv[argv.index("-ss") + 1] == "7.250"
        assert argv[argv.index("-t") + 1] == "5.000"
        assert argv[argv.index("-acodec") + 1] == "copy"
        assert argv[-1] == "/tmp/out.wav"
        # Seeking happens after the input so the copy is frame accurate
        assert argv.index("-ss") > argv.index("-i")

    @pytest.mark.parametrize("start,duration", [(-0.5, 5.0), (0.0, 0.0), (1.0, -2.0)])
    def test_extract_command_rejects_invalid_window(self, start, duration):
        with pytest.raises(ValueError):
            ExtractCommand("ffmpeg", "/tmp/in.wav", "/tmp/out.wav", start, duration)

    def test_extract_command_rejects_overwriting_source(self):
        with pytest.raises(ValueError):
            ExtractCommand("ffmpeg", "/tmp/in.wav", "/tmp/in.wav", 0.0, 5.0)

    def test_whisper_command(self):
        command = WhisperCommand("whisper-cli", "/models/base.bin", "/tmp/seg.wav", threads=4)

        argv = command.argv()

        assert argv[:3] == ["whisper-cli", "--model", "/models/base.bin"]
        assert argv[argv.index("--language") + 1] == "auto"
        assert "--output-txt" in argv
        assert "--no-prints" in argv
        assert argv[argv.index("--threads") + 1] == "4"
        assert argv[-1] == "/tmp/seg.wav"
        assert command.transcript_paths() == ["/tmp/seg.wav.txt", "/tmp/seg.txt"]

    def test_whisper_command_without_threads(self):
        assert "--threads" not in WhisperCommand("whisper-cli", "m.bin", "seg.wav").argv()

    def test_format_seconds(self):
        assert format_seconds(0) == "0.000"
        assert format_seconds(12.3456) == "12.346"
