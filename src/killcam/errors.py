"""
Error Taxonomy

Exceptions raised by the kill clip toolkit. Per-item failures are absorbed by
the detectors; run-level failures are reported back in a DetectionRun.
"""


class KillcamError(Exception):
    """Base class for all toolkit errors."""


class DecodeError(KillcamError):
    """Source asset is unreadable or lacks the expected track."""


class RangeError(KillcamError):
    """Requested media range has no valid portion inside the source."""


class ModelUnavailableError(KillcamError):
    """An inference backend could not be initialized."""

    def __init__(self, backend: str, reason: str):
        super().__init__(f"{backend} unavailable: {reason}")
        self.backend = backend
        self.reason = reason


class PerItemDetectionError(KillcamError):
    """A single frame or audio segment failed to classify."""

    def __init__(self, modality: str, timestamp: float, cause: Exception):
        super().__init__(f"{modality} detection failed at {timestamp:.2f}s: {cause}")
        self.modality = modality
        self.timestamp = timestamp
        self.cause = cause


class CaptureAcquisitionError(KillcamError):
    """The capture stream for a source could not be opened."""


class AlreadyRecordingError(KillcamError):
    """A start request arrived while a session is already active."""


class InvalidTransitionError(KillcamError):
    """Requested recording transition is not allowed from the current state."""


class CompilationError(KillcamError):
    """Highlight reel compilation was aborted."""
