"""Typed command builders for the external audio tools.

Each builder only assembles an argument vector; running it is the launcher's job,
so argument construction can be checked without spawning anything.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional


def format_seconds(value: float) -> str:
    """Format an offset for ffmpeg with millisecond precision."""
    return f"{value:.3f}"


@dataclass(frozen=True)
class CaptureCommand:
    """Continuous recording from one input device into a growing WAV file."""
    executable: str
    input_format: str
    device: str
    output_path: str
    sample_rate: int = 16000
    channels: int = 1
    codec: str = "pcm_s16le"

    def argv(self) -> List[str]:
        return [
            self.executable,
            "-hide_banner",
            "-nostats",
            "-loglevel", "error",
            "-y",
            "-f", self.input_format,
            "-i", self.device,
            "-ac", str(self.channels),
            "-ar", str(self.sample_rate),
            "-acodec", self.codec,
            self.output_path,
        ]


@dataclass(frozen=True)
class ProbeCommand:
    """Read-only duration probe."""
    executable: str
    input_path: str

    def argv(self) -> List[str]:
        return [
            self.executable,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "csv=p=0",
            self.input_path,
        ]


@dataclass(frozen=True)
class ExtractCommand:
    """Stream-copy ``[start, start + duration]`` of the input into a new file."""
    executable: str
    input_path: str
    output_path: str
    start: float
    duration: float

    def __post_init__(self):
        if self.start < 0:
            raise ValueError(f"Extraction start must not be negative: {self.start}")
        if self.duration <= 0:
            raise ValueError(f"Extraction duration must be positive: {self.duration}")
        if Path(self.output_path) == Path(self.input_path):
            raise ValueError("Extraction output must differ from its input")

    def argv(self) -> List[str]:
        return [
            self.executable,
            "-hide_banner",
            "-nostats",
            "-loglevel", "error",
            "-y",
            "-i", self.input_path,
            "-ss", format_seconds(self.start),
            "-t", format_seconds(self.duration),
            "-acodec", "copy",  # no re-encoding
            self.output_path,
        ]


@dataclass(frozen=True)
class WhisperCommand:
    """whisper.cpp CLI invocation for one segment file."""
    executable: str
    model_path: str
    input_path: str
    language: str = "auto"
    threads: Optional[int] = None

    def argv(self) -> List[str]:
        args = [
            self.executable,
            "--model", self.model_path,
            "--language", self.language,
            "--output-txt",
            "--no-prints",
        ]
        if self.threads:
            args += ["--threads", str(self.threads)]
        args.append(self.input_path)  # input file comes last
        return args

    def transcript_paths(self) -> List[str]:
        """Text files whisper may leave next to the input."""
        path = Path(self.input_path)
        return [str(path) + ".txt", str(path.with_suffix(".txt"))]
