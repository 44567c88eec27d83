"""Registry of interview sessions and their recording sessions."""

import logging
import threading
from typing import Callable, Dict, List, Optional

from .recording_session import RecordingSession
from ..errors import SessionNotFoundError

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns the RecordingSession of every known interview session.

    A session id is registered when the lifecycle collaborator reports the
    interview session; its RecordingSession is created on the first recording
    request and forgotten when the interview session closes.
    """

    def __init__(self):
        self._known: Dict[str, Optional[RecordingSession]] = {}
        self._lock = threading.RLock()

    def open(self, session_id: str) -> bool:
        """Register an interview session.

        Returns:
            False if it was already registered
        """
        with self._lock:
            if session_id in self._known:
                return False
            self._known[session_id] = None
        logger.info(f"Registered session {session_id}")
        return True

    def get(self, session_id: str) -> RecordingSession:
        """Recording session of a registered session.

        Raises:
            SessionNotFoundError: the session is unknown or has never recorded
        """
        with self._lock:
            recording = self._known.get(session_id)
            if recording is None:
                if session_id in self._known:
                    raise SessionNotFoundError("Session has no recording", session_id)
                raise SessionNotFoundError("Unknown session", session_id)
            return recording

    def find(self, session_id: str) -> Optional[RecordingSession]:
        with self._lock:
            return self._known.get(session_id)

    def get_or_create(self, session_id: str, factory: Callable[[str], RecordingSession]) -> RecordingSession:
        """Recording session of a registered session, created on first use.

        Raises:
            SessionNotFoundError: the session was never registered
        """
        with self._lock:
            if session_id not in self._known:
                raise SessionNotFoundError("Unknown session", session_id)
            recording = self._known[session_id]
            if recording is None:
                recording = factory(session_id)
                self._known[session_id] = recording
                logger.debug(f"Created recording session for {session_id}")
            return recording

    def close(self, session_id: str) -> Optional[RecordingSession]:
        """Forget a session and hand back its recording session (if any) for teardown."""
        with self._lock:
            if session_id not in self._known:
                raise SessionNotFoundError("Unknown session", session_id)
            recording = self._known.pop(session_id)
        logger.info(f"Unregistered session {session_id}")
        return recording

    def active_sessions(self) -> List[RecordingSession]:
        """Recording sessions currently in RECORDING or AUTO_RECORDING."""
        with self._lock:
            recordings = [r for r in self._known.values() if r is not None]
        return [r for r in recordings if r.is_active]

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._known)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._known

    def __len__(self) -> int:
        with self._lock:
            return len(self._known)
