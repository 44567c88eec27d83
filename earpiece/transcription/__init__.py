"""Speech-to-text backends, transcript cleanup and buffering."""

from .base import AbstractTranscriptionBackend
from .adapter import TranscriptionAdapter, create_backend
from .sanitizer import sanitize, is_meaningful
from .accumulator import TranscriptAccumulator, combine
from .publisher import PipelinePublisher

__all__ = [
    'AbstractTranscriptionBackend',
    'TranscriptionAdapter',
    'create_backend',
    'sanitize',
    'is_meaningful',
    'TranscriptAccumulator',
    'combine',
    'PipelinePublisher',
]
