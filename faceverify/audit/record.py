"""The persisted verification record."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from faceverify.types import MetricReading

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"


def _new_id() -> str:
    return uuid.uuid4().hex


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class VerificationResult:
    """Write-once outcome of one verification.

    Unavailable metrics stay ``None``; they are never coerced to zero so an
    auditor can tell "scored badly" from "did not run".
    """

    passed: bool
    reason: str
    ensemble_score: Optional[float] = None
    similarity_score: Optional[float] = None
    agreement_count: int = 0
    available_metrics: int = 0
    adaptive_threshold: Optional[float] = None
    required_score: Optional[float] = None
    confidence: str = CONFIDENCE_LOW
    arcface_score: Optional[float] = None
    cosface_score: Optional[float] = None
    sphereface_score: Optional[float] = None
    cosine_distance: Optional[float] = None
    cosine_score: Optional[float] = None
    euclidean_distance: Optional[float] = None
    euclidean_score: Optional[float] = None
    histogram_score: Optional[float] = None
    landmark_score: Optional[float] = None
    structural_score: Optional[float] = None
    texture_score: Optional[float] = None
    triplet_score: Optional[float] = None
    selfie_quality: Optional[float] = None
    document_quality: Optional[float] = None
    device_info: Optional[str] = None
    ip_address: Optional[str] = None
    detail: Optional[str] = None
    supersedes: Optional[str] = None
    config_version: Optional[str] = None
    id: str = field(default_factory=_new_id)
    created_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VerificationResult":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def created_at_dt(self) -> datetime:
        stamp = datetime.fromisoformat(self.created_at)
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return stamp

    def correction(self, **changes: Any) -> "VerificationResult":
        """Copy with a fresh id and timestamp that points back at this record."""
        return replace(self, id=_new_id(), created_at=_utc_now(), supersedes=self.id, **changes)


def metric_fields(readings: Iterable[MetricReading]) -> Dict[str, Optional[float]]:
    """Flatten provider readings onto the per-metric record columns."""
    values: Dict[str, Optional[float]] = {}
    for reading in readings:
        if not reading.available:
            continue
        if reading.metric == "cosine":
            values["cosine_distance"] = reading.raw
        elif reading.metric == "euclidean":
            values["euclidean_distance"] = reading.raw
        values[f"{reading.metric}_score"] = reading.score
    return values
