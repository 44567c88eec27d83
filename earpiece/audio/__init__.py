"""Audio capture process control and segment extraction."""

from .launcher import ProcessLauncher, ProcessHandle, ExitInfo, CompletedRun
from .extractor import SegmentExtractor, compute_window_start, compute_tail

__all__ = [
    'ProcessLauncher',
    'ProcessHandle',
    'ExitInfo',
    'CompletedRun',
    'SegmentExtractor',
    'compute_window_start',
    'compute_tail',
]
