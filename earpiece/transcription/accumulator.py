"""Per-session buffer of sanitized transcript fragments."""

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List

from ..models.transcription import TranscriptFragment

logger = logging.getLogger(__name__)


def combine(fragments: Iterable[TranscriptFragment]) -> str:
    """Join fragment texts into one transcript."""
    return " ".join(f.text for f in fragments if f.text)


class TranscriptAccumulator:
    """Holds each session's fragments in capture order until they are drained.

    ``drain`` is the only operation that removes fragments; every read returns
    copies so polling never loses text.
    """

    def __init__(self):
        self._fragments: Dict[str, List[TranscriptFragment]] = {}
        self.lock = threading.RLock()

    def append(self, fragment: TranscriptFragment) -> bool:
        """Add a fragment to the end of its session's sequence.

        Returns:
            False when the fragment has no text and was dropped
        """
        if not fragment.text or not fragment.text.strip():
            logger.debug(f"Dropping empty fragment {fragment.fragment_id} for session {fragment.session_id}")
            return False

        with self.lock:
            sequence = self._fragments.setdefault(fragment.session_id, [])
            if sequence and fragment.captured_at < sequence[-1].captured_at:
                # Keep drained timestamps non-decreasing
                fragment = replace(fragment, captured_at=sequence[-1].captured_at)
            sequence.append(fragment)
            logger.debug(f"Accumulated fragment {fragment.fragment_id} for session {fragment.session_id} "
                         f"({len(sequence)} pending): {fragment.text[:50]}")
        return True

    def drain(self, session_id: str) -> List[TranscriptFragment]:
        """Atomically return and clear the session's fragments."""
        with self.lock:
            fragments = self._fragments.pop(session_id, [])
        if fragments:
            logger.debug(f"Drained {len(fragments)} fragments for session {session_id}")
        return fragments

    def restore(self, session_id: str, fragments: Iterable[TranscriptFragment]) -> None:
        """Put drained fragments back ahead of anything appended since the drain."""
        with self.lock:
            merged = list(fragments) + self._fragments.get(session_id, [])
            for i in range(1, len(merged)):
                if merged[i].captured_at < merged[i - 1].captured_at:
                    merged[i] = replace(merged[i], captured_at=merged[i - 1].captured_at)
            if merged:
                self._fragments[session_id] = merged
        logger.debug(f"Restored fragments for session {session_id} ({len(merged)} pending)")

    def peek(self, session_id: str) -> List[TranscriptFragment]:
        with self.lock:
            return list(self._fragments.get(session_id, []))

    def peek_pending(self, session_id: str) -> bool:
        """True when the session has fragments that were not drained yet."""
        with self.lock:
            return bool(self._fragments.get(session_id))

    def count(self, session_id: str) -> int:
        with self.lock:
            return len(self._fragments.get(session_id, []))

    def sessions(self) -> List[str]:
        with self.lock:
            return [sid for sid, fragments in self._fragments.items() if fragments]

    def discard(self, session_id: str) -> int:
        """Drop everything held for a closed session."""
        dropped = len(self.drain(session_id))
        if dropped:
            logger.info(f"Discarded {dropped} undelivered fragments of closed session {session_id}")
        return dropped
