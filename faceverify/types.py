"""Common dataclasses and type aliases used across the faceverify package."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np

# Bounding box order: x1, y1, x2, y2 (pixel coordinates)
BBox = Tuple[float, float, float, float]

# Raw encoded bytes, a path on disk, or an already decoded RGB array
ImageSource = Union[bytes, str, Path, np.ndarray]

SELFIE = "selfie"
DOCUMENT = "document"

# Three independent recognition models first, then the derived signals
EMBEDDING_MODEL_METRICS = ("arcface", "cosface", "sphereface")
METRIC_IDS = EMBEDDING_MODEL_METRICS + (
    "cosine",
    "euclidean",
    "histogram",
    "landmark",
    "structural",
    "texture",
    "triplet",
)


@dataclass
class Detection:
    """Generic detection returned by detectors."""

    bbox: BBox
    score: float
    landmarks: Optional[np.ndarray] = None


@dataclass(frozen=True)
class FaceCrop:
    """A single prepared face: aligned crop plus the geometry it came from."""

    role: str
    aligned: np.ndarray  # 112x112 RGB
    crop: np.ndarray  # raw bbox crop, RGB
    bbox: BBox
    det_score: float
    landmarks: Optional[np.ndarray] = None  # (5, 2) in source image pixels

    @property
    def face_px(self) -> float:
        x1, y1, x2, y2 = self.bbox
        return max(0.0, min(x2 - x1, y2 - y1))


@dataclass(frozen=True)
class MetricReading:
    """Output of one metric provider for one request."""

    metric: str
    raw: Optional[float]
    score: Optional[float]
    available: bool = True
    error: Optional[str] = None

    @classmethod
    def unavailable(cls, metric: str, error: str) -> "MetricReading":
        return cls(metric=metric, raw=None, score=None, available=False, error=error)


@dataclass(frozen=True)
class VerificationRequest:
    """Inputs of a single verification call. Discarded once a result exists."""

    selfie: ImageSource
    document: ImageSource
    required_score: Optional[float] = None
    device_info: Optional[str] = None
    ip_address: Optional[str] = None


def l2_normalize(vec: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """L2-normalize the input vector."""
    norm = np.linalg.norm(vec)
    if norm < eps:
        return vec
    return vec / norm
