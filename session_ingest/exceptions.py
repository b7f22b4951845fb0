"""
Custom exception hierarchy for session-ingest.

Per-file errors (FileProcessingError subclasses) are collected and reported
at the end of a run. FatalRunError subclasses abort the run before any
copying starts.
"""
from pathlib import Path
from typing import Optional


class SessionIngestError(Exception):
    """Base exception for all session-ingest errors."""
    pass


class FileProcessingError(SessionIngestError):
    """A problem confined to one file. Never stops the run."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class NoSequenceFound(FileProcessingError):
    """Raised when a filename carries no digit run to order it by."""
    pass


class TimestampUnavailable(FileProcessingError):
    """Raised when not even the filesystem timestamp can be read."""
    pass


class CopyFailed(FileProcessingError):
    """Raised when a file transfer fails or does not verify."""
    pass


class MetadataExtractionError(SessionIngestError):
    """Raised when embedded metadata cannot be read."""
    pass


class ContainerParseError(MetadataExtractionError):
    """Raised when an MP4/QuickTime atom layout is malformed."""
    pass


class StateCorrupt(SessionIngestError):
    """Raised when the transfer state file exists but cannot be used."""
    pass


class FatalRunError(SessionIngestError):
    """Raised for conditions that abort the whole run."""
    pass


class InputDirectoryError(FatalRunError):
    """Raised when the input directory cannot be read."""
    pass


class OutputDirectoryError(FatalRunError):
    """Raised when the output directory cannot be written."""
    pass
