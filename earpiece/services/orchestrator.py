"""Pipeline orchestrator: drives recording cycles and hands text to the coach.

Each active session gets a SessionWorker thread that runs one
probe -> extract -> transcribe -> sanitize -> accumulate cycle per tick. A single
dispatcher thread forwards fragments of manual sessions to the coaching
collaborator and stops sessions whose cycles keep failing or whose capture died.
"""

import queue
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .coaching import CoachingCollaborator
from .recording_session import CaptureSettings, RecordingSession
from .session_registry import SessionRegistry
from ..audio.extractor import SegmentExtractor
from ..audio.launcher import ProcessLauncher
from ..errors import (
    BackendUnavailableError,
    CaptureLostError,
    CoachingError,
    EarpieceError,
    NotRecordingError,
    RecordingModeError,
    SessionNotFoundError,
    SustainedFailureError,
)
from ..models.audio import RecordingSource
from ..models.events import ErrorEvent, FragmentEvent, SessionEvent
from ..models.session import RecordingMode, RecordingState, RecordingStatus
from ..models.transcription import DispatchResult, TranscriptFragment
from ..storage.file_manager import FileManager
from ..transcription.accumulator import TranscriptAccumulator, combine
from ..transcription.adapter import TranscriptionAdapter, create_backend
from ..transcription.base import AbstractTranscriptionBackend
from ..transcription.publisher import PipelinePublisher

logger = logging.getLogger(__name__)


@dataclass
class PipelineSettings:
    """Cadence and failure policy of the polling loop."""
    segment_seconds: float = 5.0
    dispatch_interval: float = 2.0
    backoff_after: int = 3
    max_backoff: float = 30.0
    max_consecutive_failures: int = 6
    cycle_wait: float = 5.0

    @classmethod
    def from_config(cls, config) -> "PipelineSettings":
        return cls(
            segment_seconds=config.get_float('pipeline.segment_seconds'),
            dispatch_interval=config.get_float('pipeline.dispatch_interval_seconds'),
            backoff_after=config.get_int('pipeline.backoff_after'),
            max_backoff=config.get_float('pipeline.max_backoff_seconds'),
            max_consecutive_failures=config.get_int('pipeline.max_consecutive_failures'),
            cycle_wait=config.get_float('pipeline.cycle_wait_seconds'),
        )


def backoff_delay(interval: float, failures: int, backoff_after: int, max_backoff: float) -> float:
    """Delay before the next tick after ``failures`` consecutive failed cycles."""
    if failures < backoff_after:
        return interval
    return min(max_backoff, interval * 2 ** (failures - backoff_after))


class SessionWorker:
    """Runs one session's cycles on its own thread until stopped."""

    def __init__(self, orchestrator: "PipelineOrchestrator", session: RecordingSession, interval: float):
        self.orchestrator = orchestrator
        self.session = session
        self.interval = interval
        self._stop_event = threading.Event()
        self.thread = threading.Thread(
            target=self._run,
            name=f"earpiece-worker-{session.session_id}",
            daemon=True,
        )

    def start(self) -> None:
        self.thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self.thread.is_alive() and self.thread is not threading.current_thread():
            self.thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _run(self) -> None:
        session_id = self.session.session_id
        logger.debug(f"Worker for session {session_id} starting")
        delay = self.interval
        while not self._stop_event.wait(delay):
            try:
                delay = self.orchestrator._tick(self.session)
            except Exception as e:
                logger.error(f"Unhandled exception in cycle for session {session_id}: {e}", exc_info=True)
                delay = self.orchestrator._on_cycle_failure(self.session, e)
            if delay is None:
                break
        logger.debug(f"Worker for session {session_id} exiting")


class PipelineOrchestrator:
    """Public entry point of the capture and transcription pipeline.

    All methods are synchronous and thread-safe.
    """

    def __init__(self,
                 config,
                 coach: CoachingCollaborator,
                 launcher: Optional[ProcessLauncher] = None,
                 backend: Optional[AbstractTranscriptionBackend] = None,
                 registry: Optional[SessionRegistry] = None,
                 accumulator: Optional[TranscriptAccumulator] = None,
                 publisher: Optional[PipelinePublisher] = None,
                 file_manager: Optional[FileManager] = None,
                 extractor: Optional[SegmentExtractor] = None):
        """Initialize the orchestrator.

        Args:
            config: EarpieceConfig
            coach: Collaborator that receives dispatched text
            launcher, backend, registry, accumulator, publisher, file_manager, extractor:
                Collaborators built from ``config`` when not given
        """
        self.config = config
        self.coach = coach
        self.settings = PipelineSettings.from_config(config)
        self.capture_settings = CaptureSettings.from_config(config)

        self.file_manager = file_manager or FileManager(config.get_temp_directory())
        self.launcher = launcher or ProcessLauncher(
            log_dir=str(self.file_manager.temp_dir),
            startup_grace=config.get_float('capture.startup_grace_seconds'),
        )
        self.extractor = extractor or SegmentExtractor(
            self.launcher,
            self.file_manager,
            ffmpeg_path=config.get('tools.ffmpeg'),
            ffprobe_path=config.get('tools.ffprobe'),
            probe_timeout=config.get_float('pipeline.probe_timeout_seconds'),
            extract_timeout=config.get_float('pipeline.extract_timeout_seconds'),
        )
        self.backend = backend or create_backend(config, self.launcher)
        self.adapter = TranscriptionAdapter(self.backend, config.get_int('pipeline.min_segment_bytes'))
        self.registry = registry or SessionRegistry()
        self.accumulator = accumulator or TranscriptAccumulator()
        self.publisher = publisher or PipelinePublisher()

        self._workers: Dict[str, SessionWorker] = {}
        self._workers_lock = threading.Lock()
        # Fragments of a manual session already forwarded to the coach
        self._delivered: Dict[str, int] = {}
        self._dispatch_lock = threading.RLock()
        # (session_id, reason) of recordings the dispatcher must stop
        self._pending_stops: "queue.Queue[Tuple[str, str]]" = queue.Queue()
        self._shutdown_event = threading.Event()
        self._dispatcher: Optional[threading.Thread] = None
        self._backend_ready = False

        logger.info(f"PipelineOrchestrator initialized with backend {self.backend.get_display_info()}")

    # lifecycle

    def start(self) -> None:
        """Verify the backend and start the dispatcher thread.

        Raises:
            BackendUnavailableError: the transcription backend cannot run
        """
        self._ensure_backend()
        if self._dispatcher is not None and self._dispatcher.is_alive():
            return
        self._shutdown_event.clear()
        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="earpiece-dispatcher", daemon=True)
        self._dispatcher.start()
        logger.info(f"Dispatcher started (every {self.settings.dispatch_interval}s)")

    def _ensure_backend(self) -> None:
        if self._backend_ready:
            return
        if not self.backend.initialize():
            raise BackendUnavailableError(f"{self.backend.service_name} backend failed to initialize")
        self._backend_ready = True

    def shutdown(self) -> None:
        """Stop every recording, the dispatcher and all processes."""
        logger.info("Shutting down pipeline...")
        for session in self.registry.active_sessions():
            try:
                self._stop_session(session, reason="shutdown", forward=True)
            except NotRecordingError:
                pass

        self._shutdown_event.set()
        if self._dispatcher is not None:
            self._dispatcher.join(timeout=self.settings.dispatch_interval + self.settings.cycle_wait)
            self._dispatcher = None

        self.launcher.shutdown(self.capture_settings.stop_grace_seconds)
        self.backend.cleanup()
        self.file_manager.cleanup_all()
        logger.info("Pipeline shut down")

    # session lifecycle collaborator

    def on_session_created(self, session_id: str) -> None:
        if self.registry.open(session_id):
            self.publisher.publish_session(SessionEvent(session_id=session_id, event_type="created"))

    def on_session_closed(self, session_id: str) -> None:
        """Tear down any recording of a closed session and forget its text.

        Raises:
            SessionNotFoundError: the session was never registered
        """
        session = self.registry.close(session_id)
        if session is not None and session.is_active:
            try:
                self._stop_session(session, reason="closed", forward=False)
            except NotRecordingError:
                pass

        with self._dispatch_lock:
            self._delivered.pop(session_id, None)
        self.accumulator.discard(session_id)
        forget = getattr(self.coach, "forget", None)
        if callable(forget):
            forget(session_id)
        self.publisher.publish_session(SessionEvent(session_id=session_id, event_type="closed"))

    # public API

    def start_recording(self, session_id: str, source: RecordingSource) -> None:
        """Start a manual recording whose fragments are forwarded as they arrive.

        Raises:
            SessionNotFoundError: the session is not registered
            AlreadyRecordingError: the session is already recording (either mode)
            DeviceUnavailableError: a capture device is busy or missing
        """
        self._start(session_id, RecordingSource.parse(source), RecordingMode.MANUAL)

    def stop_recording(self, session_id: str) -> str:
        """Stop a manual recording.

        Returns:
            The complete transcript of the recording, tail included

        Raises:
            RecordingModeError: the session is in auto-recorder mode
            NotRecordingError: the session is not recording
        """
        session = self._recording_for(session_id)
        if session.status().mode is RecordingMode.AUTO:
            raise RecordingModeError("Session is auto-recording; toggle the auto recorder off instead",
                                     session_id)
        return self._stop_session(session, reason="stopped", forward=True)

    def toggle_auto_recorder(self, session_id: str, active: bool,
                             source: Optional[RecordingSource] = None) -> Optional[str]:
        """Start or stop auto-recorder mode.

        Returns:
            None when starting; the complete transcript when stopping (nothing is dispatched)
        """
        if active:
            if source is None:
                source = self.config.get('auto_recorder.default_source', 'system')
            self._start(session_id, RecordingSource.parse(source), RecordingMode.AUTO)
            return None

        session = self._recording_for(session_id)
        status = session.status()
        if status.state is RecordingState.RECORDING:
            raise RecordingModeError("Session is recording manually; stop the recording instead", session_id)
        if status.state is not RecordingState.AUTO_RECORDING:
            raise NotRecordingError("Auto recorder is not active", session_id)
        return self._stop_session(session, reason="stopped", forward=False)

    def flush_auto_recorder(self, session_id: str) -> Optional[DispatchResult]:
        """Dispatch everything the auto recorder accumulated as one combined text.

        Returns:
            The dispatch, or None when nothing was accumulated

        Raises:
            NotRecordingError: the session is not auto-recording
            CoachingError: the coach failed; the fragments stay accumulated
        """
        session = self._recording_for(session_id)
        if session.status().state is not RecordingState.AUTO_RECORDING:
            raise NotRecordingError("Auto recorder is not active", session_id)

        acquired = session.cycle_lock.acquire(timeout=self.settings.cycle_wait)
        if not acquired:
            logger.warning(f"Session {session_id}: flushing while a cycle is still running")
        try:
            fragments = self.accumulator.drain(session_id)
            if not fragments:
                logger.debug(f"Nothing to flush for session {session_id}")
                return None
            try:
                return self._dispatch(session_id, fragments, session.source)
            except CoachingError:
                self.accumulator.restore(session_id, fragments)
                raise
        finally:
            if acquired:
                session.cycle_lock.release()

    def is_recording(self, session_id: str) -> RecordingStatus:
        if session_id not in self.registry:
            raise SessionNotFoundError("Unknown session", session_id)
        session = self.registry.find(session_id)
        if session is None:
            return RecordingStatus(session_id=session_id, active=False)
        return session.status()

    # internals

    def _new_session(self, session_id: str) -> RecordingSession:
        return RecordingSession(
            session_id=session_id,
            launcher=self.launcher,
            extractor=self.extractor,
            adapter=self.adapter,
            file_manager=self.file_manager,
            settings=self.capture_settings,
        )

    def _recording_for(self, session_id: str) -> RecordingSession:
        if session_id not in self.registry:
            raise SessionNotFoundError("Unknown session", session_id)
        session = self.registry.find(session_id)
        if session is None:
            raise NotRecordingError("Session has never recorded", session_id)
        return session

    def _start(self, session_id: str, source: RecordingSource, mode: RecordingMode) -> None:
        self._ensure_backend()
        session = self.registry.get_or_create(session_id, self._new_session)
        session.start(source, mode)

        with self._dispatch_lock:
            self._delivered[session_id] = self.accumulator.count(session_id)
        worker = SessionWorker(self, session, self.settings.segment_seconds)
        with self._workers_lock:
            previous = self._workers.pop(session_id, None)
            self._workers[session_id] = worker
        if previous is not None:
            previous.stop()
        worker.start()

        logger.info(f"Session {session_id}: {mode.value} recording started ({source.value})")
        self.publisher.publish_session(SessionEvent(
            session_id=session_id, event_type="started",
            metadata={"source": source.value, "mode": mode.value},
        ))

    def _stop_session(self, session: RecordingSession, reason: str, forward: bool) -> str:
        session_id = session.session_id
        mode = session.status().mode
        with self._workers_lock:
            worker = self._workers.pop(session_id, None)
        if worker is not None:
            worker.stop()

        tail = session.stop()
        if worker is not None:
            worker.join(timeout=self.settings.cycle_wait)

        for fragment in tail:
            self._accumulate(fragment, mode)

        if forward and mode is RecordingMode.MANUAL:
            self._forward_manual(session_id)

        with self._dispatch_lock:
            fragments = self.accumulator.drain(session_id)
            self._delivered.pop(session_id, None)
        transcript = combine(fragments)

        logger.info(f"Session {session_id}: recording {reason}, transcript has {len(fragments)} fragment(s)")
        self.publisher.publish_session(SessionEvent(
            session_id=session_id, event_type="stopped",
            metadata={"reason": reason, "transcript": transcript, "fragments": len(fragments)},
        ))
        return transcript

    def _accumulate(self, fragment: TranscriptFragment, mode: Optional[RecordingMode]) -> None:
        if self.accumulator.append(fragment):
            self.publisher.publish_fragment(FragmentEvent(
                fragment=fragment, mode=mode.value if mode else RecordingMode.MANUAL.value,
            ))

    def _tick(self, session: RecordingSession) -> Optional[float]:
        """Run one cycle and append its fragments.

        Returns:
            Seconds until the next tick, or None when the worker should exit
        """
        with session.cycle_lock:
            status = session.status()
            if not status.active:
                return None
            try:
                fragments = session.run_cycle(self.settings.segment_seconds)
            except CaptureLostError as e:
                self._on_capture_lost(session, e)
                return None
            except EarpieceError as e:
                return self._on_cycle_failure(session, e)

            session.record_success()
            for fragment in fragments:
                self._accumulate(fragment, status.mode)
        return self.settings.segment_seconds

    def _on_cycle_failure(self, session: RecordingSession, error: BaseException) -> Optional[float]:
        failures = session.record_failure()
        session_id = session.session_id
        if failures >= self.settings.max_consecutive_failures:
            self._escalate(session, failures, error)
            return None

        delay = backoff_delay(self.settings.segment_seconds, failures,
                              self.settings.backoff_after, self.settings.max_backoff)
        if failures >= self.settings.backoff_after:
            logger.warning(f"Session {session_id}: {failures} consecutive failed cycles, "
                           f"next attempt in {delay:.1f}s")
        return delay

    def _escalate(self, session: RecordingSession, failures: int, error: BaseException) -> None:
        session_id = session.session_id
        session.paused = True
        escalation = SustainedFailureError(
            f"Transcription failed {failures} times in a row; recording stopped: {error}",
            session_id, failures=failures, last_error=error,
        )
        logger.error(str(escalation))
        self.publisher.publish_error(ErrorEvent(
            session_id=session_id, code=escalation.code, message=escalation.message,
            recoverable=False, error=escalation,
        ))
        self.publisher.publish_session(SessionEvent(
            session_id=session_id, event_type="escalated", metadata={"failures": failures},
        ))
        self._pending_stops.put((session_id, "escalated"))

    def _on_capture_lost(self, session: RecordingSession, error: CaptureLostError) -> None:
        """Report a capture that died mid-recording and have the dispatcher stop the session."""
        session_id = session.session_id
        session.paused = True
        logger.error(str(error))
        self.publisher.publish_error(ErrorEvent(
            session_id=session_id, code=error.code, message=error.message, recoverable=False, error=error,
        ))
        self._pending_stops.put((session_id, "capture_lost"))

    def _dispatch_loop(self) -> None:
        logger.debug("Dispatcher thread starting")
        while not self._shutdown_event.wait(self.settings.dispatch_interval):
            try:
                self._process_pending_stops()
                self.dispatch_pending()
            except Exception as e:
                logger.error(f"Unhandled exception in dispatcher: {e}", exc_info=True)
        logger.debug("Dispatcher thread exiting")

    def _process_pending_stops(self) -> None:
        while True:
            try:
                session_id, reason = self._pending_stops.get_nowait()
            except queue.Empty:
                return
            session = self.registry.find(session_id)
            if session is None or not session.is_active:
                continue
            try:
                self._stop_session(session, reason=reason, forward=True)
            except NotRecordingError:
                pass

    def dispatch_pending(self) -> None:
        """Forward new fragments of every manual session to the coach."""
        for session in self.registry.active_sessions():
            if session.status().mode is RecordingMode.MANUAL:
                self._forward_manual(session.session_id)

    def _forward_manual(self, session_id: str) -> List[DispatchResult]:
        """Submit each not yet forwarded fragment, in order, one call per fragment."""
        results: List[DispatchResult] = []
        with self._dispatch_lock:
            pending = self.accumulator.peek(session_id)
            start = self._delivered.get(session_id, 0)
            for index, fragment in enumerate(pending[start:], start):
                try:
                    results.append(self._dispatch(session_id, [fragment], fragment.source))
                except CoachingError:
                    # Retried on the next poll
                    break
                self._delivered[session_id] = index + 1
        return results

    def _dispatch(self, session_id: str, fragments: List[TranscriptFragment],
                  source: Optional[RecordingSource]) -> DispatchResult:
        text = combine(fragments)
        try:
            reply = self.coach.submit(session_id, text, source)
        except CoachingError as e:
            logger.error(f"Coaching failed for session {session_id}: {e}")
            self._publish_coaching_error(session_id, e)
            raise
        except Exception as e:
            logger.error(f"Coaching collaborator raised for session {session_id}: {e}", exc_info=True)
            error = CoachingError(f"Coaching collaborator failed: {e}", session_id)
            self._publish_coaching_error(session_id, error)
            raise error from e

        result = DispatchResult(
            session_id=session_id,
            text=text,
            source=source or RecordingSource.BOTH,
            reply=reply,
            fragment_count=len(fragments),
            dispatched_at=datetime.now(),
        )
        logger.info(f"Dispatched {len(fragments)} fragment(s) for session {session_id}")
        self.publisher.publish_dispatch(result)
        return result

    def _publish_coaching_error(self, session_id: str, error: CoachingError) -> None:
        self.publisher.publish_error(ErrorEvent(
            session_id=session_id, code=error.code, message=error.message, recoverable=True, error=error,
        ))
