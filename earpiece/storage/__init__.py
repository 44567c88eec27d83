"""Temporary audio file storage."""

from .file_manager import FileManager, safe_name

__all__ = ["FileManager", "safe_name"]
