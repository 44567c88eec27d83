"""Recording session: capture processes and state for one interview session."""

import time
import uuid
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..audio.commands import CaptureCommand
from ..audio.extractor import SegmentExtractor
from ..audio.launcher import ProcessHandle, ProcessLauncher
from ..errors import (
    AlreadyRecordingError,
    CaptureLostError,
    EarpieceError,
    LaunchError,
    NotRecordingError,
    ProbeFailedError,
    TRANSIENT_CYCLE_ERRORS,
)
from ..models.audio import AudioSegment, RecordingSource
from ..models.session import RecordingMode, RecordingState, RecordingStatus
from ..models.transcription import TranscriptFragment
from ..storage.file_manager import FileManager
from ..transcription.adapter import TranscriptionAdapter
from ..transcription.sanitizer import sanitize, is_meaningful

logger = logging.getLogger(__name__)


@dataclass
class CaptureSettings:
    """How capture processes are launched and stopped."""
    ffmpeg_path: str = "ffmpeg"
    input_format: str = "avfoundation"
    interviewer_device: str = ":0"
    interviewee_device: str = ":1"
    sample_rate: int = 16000
    channels: int = 1
    codec: str = "pcm_s16le"
    stop_grace_seconds: float = 2.0
    cycle_wait_seconds: float = 5.0

    @classmethod
    def from_config(cls, config) -> "CaptureSettings":
        return cls(
            ffmpeg_path=config.get('tools.ffmpeg'),
            input_format=config.get('capture.input_format'),
            interviewer_device=str(config.get('capture.interviewer_device')),
            interviewee_device=str(config.get('capture.interviewee_device')),
            sample_rate=config.get_int('capture.sample_rate'),
            channels=config.get_int('capture.channels'),
            codec=config.get('capture.codec'),
            stop_grace_seconds=config.get_float('capture.stop_grace_seconds'),
            cycle_wait_seconds=config.get_float('pipeline.cycle_wait_seconds'),
        )

    def device_for(self, source: RecordingSource) -> str:
        if source.captures_loopback:
            return self.interviewer_device
        return self.interviewee_device


@dataclass
class _Capture:
    """One running capture process and the file it grows."""
    source: RecordingSource
    handle: ProcessHandle
    path: str
    started_at: float = field(default_factory=time.time)
    covered_until: float = 0.0


class RecordingSession:
    """State machine for one session's recording.

    IDLE -> RECORDING | AUTO_RECORDING -> STOPPING -> IDLE. A ``BOTH`` recording owns
    two capture processes that start and stop together.
    """

    def __init__(self,
                 session_id: str,
                 launcher: ProcessLauncher,
                 extractor: SegmentExtractor,
                 adapter: TranscriptionAdapter,
                 file_manager: FileManager,
                 settings: Optional[CaptureSettings] = None):
        self.session_id = session_id
        self.launcher = launcher
        self.extractor = extractor
        self.adapter = adapter
        self.file_manager = file_manager
        self.settings = settings or CaptureSettings()

        self.state = RecordingState.IDLE
        self.source: Optional[RecordingSource] = None
        self.mode: Optional[RecordingMode] = None
        self.started_at: Optional[datetime] = None
        self.consecutive_failures = 0
        self.paused = False

        self._captures: Dict[RecordingSource, _Capture] = {}
        self._lock = threading.RLock()
        # Held for a whole cycle including the caller's append step
        self.cycle_lock = threading.RLock()
        self.cancel_event = threading.Event()

    def _transition(self, new_state: RecordingState) -> None:
        logger.info(f"Session {self.session_id}: {self.state.name} -> {new_state.name}")
        self.state = new_state

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self.state in (RecordingState.RECORDING, RecordingState.AUTO_RECORDING)

    def capture_paths(self) -> Dict[RecordingSource, str]:
        with self._lock:
            return {source: capture.path for source, capture in self._captures.items()}

    def start(self, source: RecordingSource, mode: RecordingMode = RecordingMode.MANUAL) -> None:
        """Launch the capture process(es) for ``source``.

        Raises:
            AlreadyRecordingError: the session is not IDLE
            DeviceUnavailableError: a capture device is busy or missing
            LaunchError: any other launch failure
        """
        with self._lock:
            if self.state is not RecordingState.IDLE:
                raise AlreadyRecordingError(
                    f"Already recording ({self.mode.value if self.mode else self.state.value}, "
                    f"source {self.source.value if self.source else 'unknown'})",
                    self.session_id,
                )

            launched: Dict[RecordingSource, _Capture] = {}
            for capture_source in source.capture_sources():
                path = self.file_manager.capture_path(self.session_id, capture_source)
                command = CaptureCommand(
                    executable=self.settings.ffmpeg_path,
                    input_format=self.settings.input_format,
                    device=self.settings.device_for(capture_source),
                    output_path=path,
                    sample_rate=self.settings.sample_rate,
                    channels=self.settings.channels,
                    codec=self.settings.codec,
                )
                try:
                    handle = self.launcher.start(command, self.session_id,
                                                 f"capture-{capture_source.name.lower()}")
                except LaunchError:
                    self.file_manager.remove(path)
                    self._teardown(launched)
                    logger.error(f"Session {self.session_id}: could not start {source.value} recording, "
                                 f"stopped {len(launched)} already launched capture(s)")
                    raise
                launched[capture_source] = _Capture(source=capture_source, handle=handle, path=path)

            self._captures = launched
            self.source = source
            self.mode = mode
            self.started_at = datetime.now()
            self.consecutive_failures = 0
            self.paused = False
            self.cancel_event.clear()
            self._transition(RecordingState.AUTO_RECORDING if mode is RecordingMode.AUTO
                             else RecordingState.RECORDING)

    def _teardown(self, captures: Dict[RecordingSource, _Capture]) -> None:
        for capture in captures.values():
            self.launcher.stop(capture.handle, self.settings.stop_grace_seconds)
            self.file_manager.remove(capture.path)

    def run_cycle(self, window: float) -> List[TranscriptFragment]:
        """Transcribe the trailing ``window`` seconds of every capture.

        Steps run in order per capture: probe, extract, transcribe, sanitize. A capture
        whose file has not grown since the last cycle is skipped.

        Raises:
            CaptureLostError: a capture process is no longer running
            The last transient error when every capture failed this cycle
        """
        with self.cycle_lock:
            with self._lock:
                if self.state not in (RecordingState.RECORDING, RecordingState.AUTO_RECORDING):
                    return []
                captures = list(self._captures.values())

            for capture in captures:
                if not capture.handle.is_running:
                    raise self._capture_lost(capture)

            fragments: List[TranscriptFragment] = []
            failures: List[EarpieceError] = []
            for capture in captures:
                if self.cancel_event.is_set():
                    break
                try:
                    fragment = self._transcribe_window(capture, window)
                except TRANSIENT_CYCLE_ERRORS as e:
                    if isinstance(e, ProbeFailedError):
                        logger.debug(f"Session {self.session_id} ({capture.source.name}): skipped segment: {e}")
                    else:
                        logger.warning(f"Session {self.session_id} ({capture.source.name}): cycle failed: {e}")
                    failures.append(e)
                    continue
                if fragment is not None:
                    fragments.append(fragment)

            if self.cancel_event.is_set():
                logger.debug(f"Session {self.session_id}: cycle cancelled by stop")
                return fragments
            if failures and len(failures) == len(captures):
                raise failures[-1]
            return fragments

    def _capture_lost(self, capture: _Capture) -> CaptureLostError:
        handle = capture.handle
        returncode = handle.process.poll()
        stderr = handle.read_stderr()
        last_line = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        logger.error(f"Session {self.session_id}: {handle.purpose} (pid {handle.pid}) exited "
                     f"with code {returncode} while recording: {stderr.strip()}")
        return CaptureLostError(
            f"Recording interrupted: {handle.purpose} exited with code {returncode} ({last_line})",
            self.session_id, executable=handle.argv[0], stderr=stderr, returncode=returncode,
        )

    def _transcribe_window(self, capture: _Capture, window: float) -> Optional[TranscriptFragment]:
        segment = self.extractor.extract_trailing(self.session_id, capture.source, capture.path, window,
                                                  covered_until=capture.covered_until)
        if segment is None:
            return None
        fragment = self._transcribe_segment(capture, segment)
        capture.covered_until = max(capture.covered_until, segment.end_offset)
        return fragment

    def _transcribe_segment(self, capture: _Capture, segment: AudioSegment) -> Optional[TranscriptFragment]:
        raw = self.adapter.transcribe(segment)
        if not raw:
            return None
        text = sanitize(raw)
        if not is_meaningful(text):
            logger.debug(f"Segment {segment.segment_id} held no speech")
            return None
        return TranscriptFragment(
            fragment_id=uuid.uuid4().hex[:12],
            session_id=self.session_id,
            source=capture.source,
            raw_text=raw,
            text=text,
            captured_at=capture.started_at + segment.end_offset,
            segment_id=segment.segment_id,
            is_final=segment.is_final,
        )

    def stop(self) -> List[TranscriptFragment]:
        """Stop capturing and transcribe the tail nobody has transcribed yet.

        Returns:
            Fragments from the final pass (not yet accumulated)

        Raises:
            NotRecordingError: the session is IDLE or already stopping
        """
        with self._lock:
            if self.state not in (RecordingState.RECORDING, RecordingState.AUTO_RECORDING):
                raise NotRecordingError(f"Not recording (state {self.state.value})", self.session_id)
            self._transition(RecordingState.STOPPING)
            self.cancel_event.set()
            captures = list(self._captures.values())

        cycle_acquired = False
        tail: List[TranscriptFragment] = []
        try:
            for capture in captures:
                info = self.launcher.stop(capture.handle, self.settings.stop_grace_seconds)
                if info.forced:
                    logger.warning(f"Session {self.session_id}: capture {capture.source.name} had to be killed")
            # Cancels any in-flight probe/extract/transcribe of the session
            self.launcher.terminate_session(self.session_id, self.settings.stop_grace_seconds)

            cycle_acquired = self.cycle_lock.acquire(timeout=self.settings.cycle_wait_seconds)
            if not cycle_acquired:
                logger.warning(f"Session {self.session_id}: in-flight cycle did not finish within "
                               f"{self.settings.cycle_wait_seconds}s, running final pass anyway")

            for capture in captures:
                fragment = self._final_pass(capture)
                if fragment is not None:
                    tail.append(fragment)
        finally:
            for capture in captures:
                self.file_manager.remove(capture.path)
            self.launcher.terminate_session(self.session_id, self.settings.stop_grace_seconds)
            self.file_manager.cleanup_session(self.session_id)
            with self._lock:
                self._captures = {}
                self.source = None
                self.mode = None
                self.started_at = None
                self.paused = False
                self._transition(RecordingState.IDLE)
            if cycle_acquired:
                self.cycle_lock.release()

        logger.info(f"Session {self.session_id}: stopped, final pass produced {len(tail)} fragment(s)")
        return tail

    def _final_pass(self, capture: _Capture) -> Optional[TranscriptFragment]:
        try:
            segment = self.extractor.extract_tail(self.session_id, capture.source, capture.path,
                                                  capture.covered_until)
            if segment is None:
                return None
            return self._transcribe_segment(capture, segment)
        except EarpieceError as e:
            logger.warning(f"Session {self.session_id}: final pass for {capture.source.name} failed: {e}")
            return None

    def record_failure(self) -> int:
        with self._lock:
            self.consecutive_failures += 1
            return self.consecutive_failures

    def record_success(self) -> None:
        with self._lock:
            self.consecutive_failures = 0

    def status(self) -> RecordingStatus:
        with self._lock:
            return RecordingStatus(
                session_id=self.session_id,
                active=self.state in (RecordingState.RECORDING, RecordingState.AUTO_RECORDING),
                state=self.state,
                source=self.source,
                mode=self.mode,
                started_at=self.started_at,
                paused=self.paused,
                consecutive_failures=self.consecutive_failures,
            )
