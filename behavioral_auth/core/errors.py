# behavioral_auth/core/errors.py
"""
Error taxonomy for the authentication pipeline
"""
from typing import Optional


class BiometricError(Exception):
    """Base class for pipeline errors"""

    kind = "biometric_error"

    def __init__(self, message: str, modality: Optional[str] = None):
        super().__init__(message)
        self.modality = modality


class InputUnavailable(BiometricError):
    """No supported input modality on the device"""
    kind = "input_unavailable"


class CaptureTimeout(BiometricError):
    """A capturer did not finish within the join timeout"""
    kind = "capture_timeout"


class InsufficientSamples(BiometricError):
    """Fewer patterns than the minimum viable count"""
    kind = "insufficient_samples"


class TemplateCorrupt(BiometricError):
    """Stored template has the wrong dimensionality"""
    kind = "template_corrupt"


class ConcurrentWriteConflict(BiometricError):
    """Two attempts for the same user reached the write phase together"""
    kind = "concurrent_write_conflict"


class SessionNotFound(BiometricError):
    kind = "session_not_found"
