"""Pytest configuration and fixtures for Earpiece tests."""

import stat
import itertools
import sys
import time
import wave
import logging
import tempfile
from pathlib import Path
from typing import Dict
from unittest.mock import Mock

import numpy as np
import pytest

from earpiece.audio.launcher import ExitInfo
from earpiece.config import EarpieceConfig
from earpiece.models.audio import AudioSegment, RecordingSource
from earpiece.models.transcription import TranscriptFragment


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external processes")
    config.addinivalue_line("markers", "integration: tests that run fake tool executables")


def generate_audio(pattern: str = "sine", duration_seconds: float = 1.0, sample_rate: int = 16000) -> bytes:
    """Generate 16-bit mono audio data for testing.

    Args:
        pattern: Type of audio pattern ('sine', 'noise', 'silence')
        duration_seconds: Duration of audio
        sample_rate: Sample rate in Hz
    """
    samples = int(duration_seconds * sample_rate)

    if pattern == "sine":
        t = np.linspace(0, duration_seconds, samples, False)
        wave_data = np.sin(2 * np.pi * 440 * t)  # 440 Hz sine wave
    elif pattern == "noise":
        wave_data = np.random.uniform(-1, 1, samples)
    elif pattern == "silence":
        wave_data = np.zeros(samples)
    else:
        raise ValueError(f"Unknown pattern: {pattern}")

    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


def write_wav(path, duration_seconds: float, pattern: str = "sine", sample_rate: int = 16000) -> str:
    with wave.open(str(path), 'wb') as wf:
        wf.setnchannels(1)  # Mono
        wf.setsampwidth(2)  # 16-bit
        wf.setframerate(sample_rate)
        wf.writeframes(generate_audio(pattern, duration_seconds, sample_rate))
    return str(path)


def make_fragment(session_id: str = "s1", text: str = "hello", captured_at: float = None,
                  source: RecordingSource = RecordingSource.INTERVIEWEE, fragment_id: str = None) -> TranscriptFragment:
    captured_at = time.time() if captured_at is None else captured_at
    return TranscriptFragment(
        fragment_id=fragment_id or f"f-{captured_at}",
        session_id=session_id,
        source=source,
        raw_text=text,
        text=text,
        captured_at=captured_at,
    )


@pytest.fixture
def fragment_factory():
    """Build TranscriptFragments with explicit capture times."""
    return make_fragment


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def audio_test_data():
    """Generate various audio test data patterns."""
    return generate_audio


@pytest.fixture
def wav_factory():
    """Write a mono 16-bit WAV of the given length."""
    return write_wav


@pytest.fixture
def sample_audio_file(temp_data_dir):
    """A 6 second WAV file."""
    return write_wav(Path(temp_data_dir) / "test_audio.wav", 6.0)


@pytest.fixture
def make_config(temp_data_dir):
    """Build an EarpieceConfig rooted in the temp directory with fast timings."""
    def _make(**sections) -> EarpieceConfig:
        values = {
            "storage": {"temp_directory": str(Path(temp_data_dir) / "audio")},
            "logging": {"file_path": str(Path(temp_data_dir) / "logs" / "earpiece.log")},
            "capture": {"startup_grace_seconds": 1.0, "stop_grace_seconds": 1.0},
            "pipeline": {
                "segment_seconds": 0.1,
                "dispatch_interval_seconds": 0.1,
                "cycle_wait_seconds": 2.0,
            },
        }
        for section, overrides in sections.items():
            values.setdefault(section, {}).update(overrides)
        return EarpieceConfig.from_dict(values)
    return _make


@pytest.fixture
def segment_factory(temp_data_dir):
    """Create segment files of a given size."""
    counter = {"n": 0}

    def _make(session_id: str = "s1", size: int = 4000, source: RecordingSource = RecordingSource.INTERVIEWEE,
              start: float = 0.0, duration: float = 5.0, final: bool = False) -> AudioSegment:
        counter["n"] += 1
        path = Path(temp_data_dir) / f"segment-{counter['n']}.wav"
        if size >= 0:
            path.write_bytes(b"\x00" * size)
        return AudioSegment(
            segment_id=f"seg-{counter['n']}",
            session_id=session_id,
            source=source,
            source_path=str(Path(temp_data_dir) / "capture.wav"),
            path=str(path),
            start_offset=start,
            duration=duration,
            is_final=final,
        )
    return _make


@pytest.fixture
def mock_backend():
    """Transcription backend that returns whisper-style output."""
    backend = Mock()
    backend.service_name = "mock"
    backend.initialize.return_value = True
    backend.get_display_info.return_value = "mock backend"
    backend.transcribe_file.return_value = "[00:00:00.000 --> 00:00:05.000]  hello world"
    return backend


@pytest.fixture
def mock_launcher():
    """ProcessLauncher stand-in whose captures always start."""
    launcher = Mock()
    launcher.start.side_effect = lambda command, session_id, purpose: Mock(name=purpose, argv=command.argv())
    launcher.stop.return_value = ExitInfo(returncode=0)
    launcher.terminate_session.return_value = []
    return launcher


@pytest.fixture
def mock_extractor(segment_factory):
    """SegmentExtractor stand-in for a capture that grows 5s per cycle.

    Windows end at 12, 17, 22, ... seconds; the tail is the 1.5s after the covered offset.
    """
    ends = itertools.count(12.0, 5.0)
    extractor = Mock()
    extractor.extract_trailing.side_effect = \
        lambda session_id, source, path, window, covered_until=0.0: segment_factory(
            session_id, source=source, start=next(ends) - 5.0, duration=5.0)
    extractor.extract_tail.side_effect = \
        lambda session_id, source, path, covered_until: segment_factory(
            session_id, source=source, start=covered_until, duration=1.5, final=True)
    return extractor


_FAKE_FFMPEG = '''#!{python}
import os
import sys
import time
import wave
import array
import signal
import threading

# The capture gains GROW_SECONDS of audio every GROW_EVERY seconds
GROW_EVERY = 0.25
GROW_SECONDS = 0.5
# A ":dies" device fails this long after startup, past the launcher's startup grace
DIES_AFTER = 2.0


def arg(name):
    return sys.argv[sys.argv.index(name) + 1]


def write_capture(path, rate, seconds):
    # Every 16 frames share a sample value, so windows at different offsets differ
    samples = array.array("h", ((i // 16) % 32768 for i in range(int(seconds * rate))))
    partial = path + ".part"
    with wave.open(partial, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(samples.tobytes())
    os.replace(partial, path)


def wait_for_quit(quit_event):
    sys.stdin.read(1)
    quit_event.set()


out = sys.argv[-1]
if "-f" in sys.argv:
    device = arg("-i")
    if "busy" in device:
        sys.stderr.write("[avfoundation] " + device + ": Device or resource busy\\n")
        sys.exit(1)
    if "broken" in device:
        sys.stderr.write("unexpected failure\\n")
        sys.exit(1)
    rate = int(arg("-ar"))
    signal.signal(signal.SIGTERM, lambda *args: sys.exit(0))
    quit_event = threading.Event()
    threading.Thread(target=wait_for_quit, args=(quit_event,), daemon=True).start()
    started = time.time()
    seconds = {capture_seconds}
    while True:
        write_capture(out, rate, seconds)
        if quit_event.wait(GROW_EVERY):
            sys.exit(0)
        if "dies" in device and time.time() - started >= DIES_AFTER:
            sys.stderr.write("[avfoundation] " + device + ": Input/output error\\n")
            sys.exit(1)
        seconds += GROW_SECONDS

source = arg("-i")
start = float(arg("-ss"))
duration = float(arg("-t"))
with wave.open(source, "rb") as src:
    params = src.getparams()
    rate = src.getframerate()
    src.setpos(min(int(start * rate), src.getnframes()))
    frames = src.readframes(int(duration * rate))
with wave.open(out, "wb") as dst:
    dst.setparams(params)
    dst.writeframes(frames)
'''

_FAKE_FFPROBE = '''#!{python}
import sys
import wave

try:
    with wave.open(sys.argv[-1], "rb") as wf:
        print("%.6f" % (wf.getnframes() / float(wf.getframerate())))
except (OSError, EOFError, wave.Error) as e:
    sys.stderr.write(str(e) + "\\n")
    sys.exit(1)
'''

_FAKE_WHISPER = '''#!{python}
import sys
import wave
import hashlib

# The text names the audio it was given, so identical windows read identically
with wave.open(sys.argv[-1], "rb") as wf:
    digest = hashlib.sha1(wf.readframes(wf.getnframes())).hexdigest()[:8]
print("[00:00:00.000 --> 00:00:05.000]   \\x1b[38;5;160mhello from the fake model\\x1b[0m " + digest)
'''


def _write_script(path: Path, content: str) -> str:
    path.write_text(content.replace("{python}", sys.executable))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def fake_tools(temp_data_dir) -> Dict[str, str]:
    """Python scripts standing in for ffmpeg, ffprobe and whisper-cli."""
    if sys.platform == "win32":
        pytest.skip("fake tool scripts need a POSIX shebang")
    bin_dir = Path(temp_data_dir) / "bin"
    bin_dir.mkdir()
    model = bin_dir / "ggml-fake.bin"
    model.write_bytes(b"model")
    return {
        "ffmpeg": _write_script(bin_dir / "ffmpeg", _FAKE_FFMPEG.replace("{capture_seconds}", "12")),
        "ffprobe": _write_script(bin_dir / "ffprobe", _FAKE_FFPROBE),
        "whisper_cli": _write_script(bin_dir / "whisper-cli", _FAKE_WHISPER),
        "whisper_model": str(model),
    }
