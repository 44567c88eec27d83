"""Earpiece - live interview audio capture, transcription and coaching dispatch."""

__version__ = "0.1.0"
