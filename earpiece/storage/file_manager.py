"""File management for capture and segment files."""

import os
import re
import uuid
import hashlib
import logging
from pathlib import Path
from datetime import datetime
from typing import List, Optional

from ..models.audio import RecordingSource


logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def safe_name(value: str) -> str:
    """Make a session id usable as a file name component."""
    cleaned = _UNSAFE_CHARS.sub("_", value).strip("._")
    return cleaned or "session"


def session_dirname(session_id: str) -> str:
    """Directory name owned by exactly one session id."""
    digest = hashlib.sha1(session_id.encode("utf-8")).hexdigest()[:12]
    return f"{safe_name(session_id)[:48]}-{digest}"


class FileManager:
    """Owns the private temp directory where capture and segment audio lives.

    Every session writes into its own subdirectory, so a session's files can be
    found and removed as a group without touching another session's. Nothing
    written here outlives the session that wrote it.
    """

    def __init__(self, temp_dir: str):
        """Initialize file manager with its temp directory.

        Args:
            temp_dir: Directory for the per-session audio directories
        """
        self.temp_dir = Path(temp_dir)
        self._ensure_directories()
        logger.info(f"FileManager initialized with temp_dir: {self.temp_dir}")

    def _ensure_directories(self) -> None:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {self.temp_dir}")

    def session_dir(self, session_id: str) -> Path:
        return self.temp_dir / session_dirname(session_id)

    def _new_path(self, session_id: str, filename: str) -> str:
        directory = self.session_dir(session_id)
        directory.mkdir(parents=True, exist_ok=True)
        return str(directory / filename)

    def capture_path(self, session_id: str, source: RecordingSource) -> str:
        """Path for a new, continuously-growing capture file."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        return self._new_path(session_id, f"capture-{source.name.lower()}-{timestamp}.wav")

    def segment_path(self, session_id: str, source: RecordingSource, final: bool = False) -> str:
        """Unique path for one extraction cycle's segment file."""
        kind = "final" if final else "segment"
        return self._new_path(session_id, f"{kind}-{source.name.lower()}-{uuid.uuid4().hex[:12]}.wav")

    def remove(self, path: Optional[str]) -> bool:
        """Delete a file if it exists.

        Returns:
            True if a file was deleted
        """
        if not path:
            return False
        try:
            os.unlink(path)
            logger.debug(f"Removed temp file: {path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove temp file {path}: {e}")
            return False

    def session_files(self, session_id: str) -> List[Path]:
        """All files currently owned by a session."""
        directory = self.session_dir(session_id)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.is_file())

    def cleanup_session(self, session_id: str) -> int:
        """Delete every file the session left behind, and its directory.

        Returns:
            Number of files deleted
        """
        removed = sum(1 for path in self.session_files(session_id) if self.remove(str(path)))
        self._remove_dir(self.session_dir(session_id))
        if removed:
            logger.info(f"Removed {removed} temp files for session {session_id}")
        return removed

    def cleanup_all(self) -> int:
        """Empty the temp directory."""
        if not self.temp_dir.exists():
            return 0
        removed = 0
        for entry in self.temp_dir.iterdir():
            if entry.is_dir():
                removed += sum(1 for p in entry.iterdir() if p.is_file() and self.remove(str(p)))
                self._remove_dir(entry)
            elif entry.is_file() and self.remove(str(entry)):
                removed += 1
        logger.info(f"Cleaned up temp directory {self.temp_dir} ({removed} files)")
        return removed

    def _remove_dir(self, directory: Path) -> None:
        try:
            directory.rmdir()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temp directory {directory}: {e}")
