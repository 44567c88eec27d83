"""Trailing-window segment extraction from a capture file that is still growing."""

import os
import uuid
import logging
from typing import Optional, Tuple

from .commands import ProbeCommand, ExtractCommand
from .launcher import ProcessLauncher
from ..errors import ProbeFailedError, SegmentExtractionError, ProcessTimeoutError
from ..models.audio import AudioSegment, RecordingSource
from ..storage.file_manager import FileManager

logger = logging.getLogger(__name__)

# Shorter tails are not worth a transcription call
MIN_TAIL_SECONDS = 0.1


def compute_window_start(total: float, window: float) -> float:
    """Start offset of the trailing ``window`` seconds of a ``total``-second file."""
    if window <= 0:
        raise ValueError(f"Window must be positive: {window}")
    return max(0.0, total - window)


def compute_tail(total: float, covered_until: float) -> Tuple[float, float]:
    """Start and duration of the audio after ``covered_until``, clamped into the file."""
    start = min(max(0.0, covered_until), max(0.0, total))
    return start, max(0.0, total - start)


class SegmentExtractor:
    """Cuts segments out of a capture file without touching the file itself.

    The source is only read (by the probe and by a stream-copying ffmpeg), and every
    segment goes to a fresh path from the FileManager.
    """

    def __init__(self,
                 launcher: ProcessLauncher,
                 file_manager: FileManager,
                 ffmpeg_path: str = "ffmpeg",
                 ffprobe_path: str = "ffprobe",
                 probe_timeout: float = 2.0,
                 extract_timeout: float = 2.0):
        self.launcher = launcher
        self.file_manager = file_manager
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.probe_timeout = probe_timeout
        self.extract_timeout = extract_timeout

    def probe_duration(self, session_id: str, source_path: str) -> float:
        """Total duration in seconds of ``source_path``.

        Raises:
            ProbeFailedError: the file is missing, the probe failed or timed out,
                or the duration is not positive
        """
        if not os.path.exists(source_path):
            raise ProbeFailedError(f"Capture file does not exist yet: {source_path}", session_id)

        try:
            result = self.launcher.run(ProbeCommand(self.ffprobe_path, source_path),
                                       session_id, "probe", self.probe_timeout)
        except ProcessTimeoutError as e:
            raise ProbeFailedError(f"Duration probe timed out after {self.probe_timeout}s", session_id) from e

        if not result.ok:
            raise ProbeFailedError(f"Duration probe failed with exit code {result.returncode}: "
                                   f"{result.stderr.strip()}", session_id)

        output = result.stdout.strip().splitlines()
        try:
            duration = float(output[0].strip()) if output else 0.0
        except ValueError as e:
            raise ProbeFailedError(f"Invalid audio duration: {result.stdout.strip()!r}", session_id) from e

        if duration <= 0:
            raise ProbeFailedError(f"Invalid audio duration: {duration}", session_id)
        return duration

    def extract_trailing(self,
                         session_id: str,
                         source: RecordingSource,
                         source_path: str,
                         window: float,
                         covered_until: float = 0.0) -> Optional[AudioSegment]:
        """Extract the most recent ``window`` seconds of the capture file.

        Returns:
            The segment, or None when the file has not grown past ``covered_until``
        """
        total = self.probe_duration(session_id, source_path)
        if total - covered_until < MIN_TAIL_SECONDS:
            logger.debug(f"No new audio for session {session_id} ({source.name}): "
                         f"total={total:.2f}s covered={covered_until:.2f}s")
            return None
        start = compute_window_start(total, window)
        return self._extract(session_id, source, source_path, start, total - start, final=False)

    def extract_tail(self,
                     session_id: str,
                     source: RecordingSource,
                     source_path: str,
                     covered_until: float) -> Optional[AudioSegment]:
        """Extract everything after ``covered_until`` (the whole file when it is 0).

        Returns:
            The segment, or None when less than MIN_TAIL_SECONDS remain
        """
        total = self.probe_duration(session_id, source_path)
        start, duration = compute_tail(total, covered_until)
        if duration < MIN_TAIL_SECONDS:
            logger.debug(f"No untranscribed tail left for session {session_id} "
                         f"({source.name}): total={total:.2f}s covered={covered_until:.2f}s")
            return None
        return self._extract(session_id, source, source_path, start, duration, final=True)

    def _extract(self,
                 session_id: str,
                 source: RecordingSource,
                 source_path: str,
                 start: float,
                 duration: float,
                 final: bool) -> AudioSegment:
        output_path = self.file_manager.segment_path(session_id, source, final=final)
        command = ExtractCommand(self.ffmpeg_path, source_path, output_path, start, duration)
        purpose = "extract-final" if final else "extract"

        try:
            result = self.launcher.run(command, session_id, purpose, self.extract_timeout)
        except ProcessTimeoutError as e:
            self.file_manager.remove(output_path)
            raise SegmentExtractionError(f"Segment extraction timed out after {self.extract_timeout}s",
                                         session_id) from e

        if not result.ok or not os.path.exists(output_path):
            self.file_manager.remove(output_path)
            raise SegmentExtractionError(f"Segment extraction failed with exit code {result.returncode}: "
                                         f"{result.stderr.strip()}", session_id)

        segment = AudioSegment(
            segment_id=f"{session_id}-{source.name.lower()}-{uuid.uuid4().hex[:8]}",
            session_id=session_id,
            source=source,
            source_path=source_path,
            path=output_path,
            start_offset=start,
            duration=duration,
            is_final=final,
        )
        logger.debug(f"Extracted {segment.segment_id}: [{start:.3f}s, {segment.end_offset:.3f}s] "
                     f"-> {output_path}")
        return segment
