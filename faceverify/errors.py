"""Error taxonomy for the verification pipeline.

Every `VerificationError` carries a stable ``reason`` code that ends up on the
failed `VerificationResult`. `ConfigurationError` is the only startup-time fault.
"""

from __future__ import annotations

from typing import Optional

REASON_PASSED = "passed"
REASON_BELOW_THRESHOLD = "below_threshold"
REASON_INSUFFICIENT_AGREEMENT = "insufficient_agreement"


class ConfigurationError(ValueError):
    """Engine wiring or calibration is invalid; raised at construction time."""


class VerificationCancelled(Exception):
    """The caller abandoned the request; no result is recorded."""


class VerificationError(Exception):
    """Recoverable per-request failure resolved into a failed result."""

    reason = "verification_error"

    def __init__(self, message: str = "", role: Optional[str] = None) -> None:
        super().__init__(message or self.reason)
        self.role = role

    @property
    def detail(self) -> str:
        message = str(self)
        if self.role:
            return f"{self.role}: {message}"
        return message


class ImageDecodeError(VerificationError):
    reason = "image_decode_error"


class NoFaceDetected(VerificationError):
    reason = "no_face_detected"


class MultipleFacesDetected(VerificationError):
    reason = "multiple_faces_detected"


class InsufficientQuality(VerificationError):
    reason = "insufficient_quality"


class InsufficientMetrics(VerificationError):
    reason = "insufficient_metrics"


class VerificationTimeout(VerificationError):
    reason = "timeout"


class InternalProviderError(VerificationError):
    """A provider crashed instead of reporting unavailability."""

    reason = "internal_provider_error"
