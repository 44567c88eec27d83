"""Process launcher for the external capture, probe and transcription tools.

Every process started here is registered in a process table keyed by
``(session_id, purpose)`` until it has exited, so a session's teardown can find and
terminate everything it owns even when a caller lost its handle.
"""

import os
import time
import uuid
import logging
import tempfile
import threading
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..errors import (
    LaunchError,
    ExecutableNotFoundError,
    DeviceUnavailableError,
    ProcessTimeoutError,
)
from ..storage.file_manager import safe_name

logger = logging.getLogger(__name__)

# stderr fragments (lower-cased) that mean the capture device cannot be opened
BUSY_MARKERS = (
    "device or resource busy",
    "resource busy",
    "device busy",
    "already in use",
)
UNAVAILABLE_MARKERS = (
    "no such device",
    "no such file or directory",
    "could not find audio",
    "could not find device",
    "invalid audio device",
    "audio device not found",
    "input/output error",
    "permission denied",
    "error opening input",
)

STDERR_TAIL_BYTES = 4000


@dataclass
class ProcessHandle:
    """A process started by the launcher."""
    session_id: str
    purpose: str
    argv: List[str]
    process: subprocess.Popen
    stderr_path: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    handle_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    @property
    def key(self) -> Tuple[str, str]:
        return (self.session_id, self.purpose)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_running(self) -> bool:
        return self.process.poll() is None

    def read_stderr(self, limit: int = STDERR_TAIL_BYTES) -> str:
        """Tail of the process' stderr log."""
        if not self.stderr_path:
            return ""
        try:
            with open(self.stderr_path, "rb") as f:
                f.seek(0, os.SEEK_END)
                size = f.tell()
                f.seek(max(0, size - limit))
                return f.read().decode("utf-8", errors="ignore")
        except OSError:
            return ""


@dataclass
class ExitInfo:
    """How a stopped process ended."""
    returncode: Optional[int]
    forced: bool = False
    stderr: str = ""
    duration_seconds: float = 0.0


@dataclass
class CompletedRun:
    """Result of a short-lived tool run."""
    returncode: int
    stdout: str
    stderr: str
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _argv(command) -> List[str]:
    if hasattr(command, "argv"):
        return list(command.argv())
    return [str(part) for part in command]


class ProcessLauncher:
    """Starts, supervises and terminates external processes."""

    def __init__(self, log_dir: Optional[str] = None, startup_grace: float = 0.5):
        """Initialize the launcher.

        Args:
            log_dir: Where long-running processes write stderr (temp dir by default)
            startup_grace: Seconds to watch a freshly started process for an early exit
        """
        self.log_dir = log_dir or tempfile.gettempdir()
        self.startup_grace = startup_grace
        self._table: Dict[Tuple[str, str], List[ProcessHandle]] = {}
        self._lock = threading.RLock()
        os.makedirs(self.log_dir, exist_ok=True)

    # process table

    def _register(self, handle: ProcessHandle) -> None:
        with self._lock:
            self._table.setdefault(handle.key, []).append(handle)

    def _unregister(self, handle: ProcessHandle) -> None:
        with self._lock:
            handles = self._table.get(handle.key)
            if not handles:
                return
            self._table[handle.key] = [h for h in handles if h.handle_id != handle.handle_id]
            if not self._table[handle.key]:
                del self._table[handle.key]

    def handles_for(self, session_id: str) -> List[ProcessHandle]:
        with self._lock:
            return [h for (sid, _), handles in self._table.items() if sid == session_id for h in handles]

    def active_count(self) -> int:
        with self._lock:
            return sum(len(handles) for handles in self._table.values())

    # long-running processes

    def start(self, command, session_id: str, purpose: str) -> ProcessHandle:
        """Start a long-running process (e.g. a capture).

        Raises:
            ExecutableNotFoundError: the executable is missing or not executable
            DeviceUnavailableError: the process died at startup because its device is busy/missing
            LaunchError: any other startup failure
        """
        argv = _argv(command)
        stderr_path = os.path.join(
            self.log_dir, f"{safe_name(session_id)}--{safe_name(purpose)}-{uuid.uuid4().hex[:8]}.log"
        )
        logger.info(f"Starting {purpose} for session {session_id}: {' '.join(argv)}")

        try:
            with open(stderr_path, "wb") as stderr_file:
                process = subprocess.Popen(
                    argv,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.DEVNULL,
                    stderr=stderr_file,
                )
        except FileNotFoundError as e:
            self._remove_log(stderr_path)
            raise ExecutableNotFoundError(
                f"{argv[0]} not found; install it or configure its path", session_id, executable=argv[0]
            ) from e
        except PermissionError as e:
            self._remove_log(stderr_path)
            raise ExecutableNotFoundError(
                f"{argv[0]} is not executable", session_id, executable=argv[0]
            ) from e
        except OSError as e:
            self._remove_log(stderr_path)
            raise LaunchError(f"Failed to start {purpose}: {e}", session_id, executable=argv[0]) from e

        handle = ProcessHandle(session_id=session_id, purpose=purpose, argv=argv,
                               process=process, stderr_path=stderr_path)
        self._register(handle)

        if self.startup_grace > 0:
            try:
                returncode = process.wait(timeout=self.startup_grace)
            except subprocess.TimeoutExpired:
                returncode = None
            if returncode is not None:
                stderr = handle.read_stderr()
                if process.stdin:
                    process.stdin.close()
                self._release(handle)
                raise self._classify_launch_failure(handle, returncode, stderr)

        logger.info(f"Started {purpose} for session {session_id} (pid {process.pid})")
        return handle

    def _classify_launch_failure(self, handle: ProcessHandle, returncode: int, stderr: str) -> LaunchError:
        lowered = stderr.lower()
        executable = handle.argv[0]
        logger.error(f"{handle.purpose} for session {handle.session_id} exited at startup "
                     f"with code {returncode}: {stderr.strip()}")
        if any(marker in lowered for marker in BUSY_MARKERS):
            return DeviceUnavailableError(
                f"Audio device for {handle.purpose} is in use by another application",
                handle.session_id, executable=executable, stderr=stderr, busy=True,
            )
        if any(marker in lowered for marker in UNAVAILABLE_MARKERS):
            return DeviceUnavailableError(
                f"Audio device for {handle.purpose} is not available",
                handle.session_id, executable=executable, stderr=stderr,
            )
        return LaunchError(
            f"Recording failed: {handle.purpose} exited with code {returncode}",
            handle.session_id, executable=executable, stderr=stderr,
        )

    def stop(self, handle: ProcessHandle, grace_timeout: float = 2.0) -> ExitInfo:
        """Stop a process: ask nicely, wait up to ``grace_timeout``, then kill.

        Always returns; never waits more than about twice ``grace_timeout``.
        """
        process = handle.process
        forced = False
        started = time.time()

        if process.poll() is None:
            logger.info(f"Stopping {handle.purpose} for session {handle.session_id} (pid {process.pid})")
            self._request_quit(process)
            try:
                process.terminate()
            except OSError:
                pass
            try:
                process.wait(timeout=grace_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"{handle.purpose} (pid {process.pid}) ignored termination, killing")
                forced = True
                try:
                    process.kill()
                except OSError:
                    pass
                try:
                    process.wait(timeout=grace_timeout)
                except subprocess.TimeoutExpired:
                    logger.error(f"{handle.purpose} (pid {process.pid}) did not exit after SIGKILL")

        if process.stdin:
            try:
                process.stdin.close()
            except (OSError, ValueError):
                pass

        stderr = handle.read_stderr()
        self._release(handle)
        info = ExitInfo(returncode=process.poll(), forced=forced, stderr=stderr,
                        duration_seconds=time.time() - started)
        logger.debug(f"{handle.purpose} for session {handle.session_id} exited: {info.returncode} (forced={forced})")
        return info

    def _request_quit(self, process: subprocess.Popen) -> None:
        # ffmpeg finalizes its output when it reads "q"
        if not process.stdin:
            return
        try:
            process.stdin.write(b"q")
            process.stdin.flush()
        except (OSError, ValueError):
            pass

    def _release(self, handle: ProcessHandle) -> None:
        self._unregister(handle)
        self._remove_log(handle.stderr_path)

    def _remove_log(self, path: Optional[str]) -> None:
        if not path:
            return
        try:
            os.unlink(path)
        except OSError:
            pass

    # short-lived processes

    def run(self, command, session_id: str, purpose: str, timeout: float) -> CompletedRun:
        """Run a short-lived tool to completion.

        Raises:
            ExecutableNotFoundError: the executable is missing
            ProcessTimeoutError: the tool ran longer than ``timeout`` (it is killed)
        """
        argv = _argv(command)
        logger.debug(f"Running {purpose} for session {session_id}: {' '.join(argv)}")
        started = time.time()
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ExecutableNotFoundError(
                f"{argv[0]} not found; install it or configure its path", session_id, executable=argv[0]
            ) from e
        except OSError as e:
            raise LaunchError(f"Failed to run {purpose}: {e}", session_id, executable=argv[0]) from e

        handle = ProcessHandle(session_id=session_id, purpose=purpose, argv=argv, process=process)
        self._register(handle)
        try:
            stdout, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            raise ProcessTimeoutError(
                f"{purpose} did not finish within {timeout:.1f}s", session_id, timeout=timeout
            ) from e
        finally:
            self._unregister(handle)

        result = CompletedRun(
            returncode=process.returncode,
            stdout=stdout.decode("utf-8", errors="ignore"),
            stderr=stderr.decode("utf-8", errors="ignore"),
            duration_seconds=time.time() - started,
        )
        if not result.ok:
            logger.debug(f"{purpose} for session {session_id} exited with {result.returncode}: {result.stderr.strip()}")
        return result

    # teardown

    def terminate_session(self, session_id: str, grace_timeout: float = 2.0) -> List[ExitInfo]:
        """Stop every process still registered for a session."""
        handles = self.handles_for(session_id)
        if handles:
            logger.info(f"Terminating {len(handles)} leftover processes for session {session_id}")
        return [self.stop(handle, grace_timeout) for handle in handles]

    def shutdown(self, grace_timeout: float = 2.0) -> None:
        """Stop every tracked process."""
        with self._lock:
            handles = [h for hs in self._table.values() for h in hs]
        for handle in handles:
            self.stop(handle, grace_timeout)
        logger.info("Process launcher shut down")

