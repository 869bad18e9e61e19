"""Facial geometry comparison on the five detector keypoints."""

from __future__ import annotations

from typing import Optional

import numpy as np
from scipy.spatial import procrustes

from faceverify.metrics.base import ERROR_MISSING_LANDMARKS
from faceverify.types import FaceCrop, MetricReading

# left eye, right eye, nose, left mouth corner, right mouth corner
POINT_WEIGHTS = np.array([2.0, 2.0, 2.0, 1.0, 1.0])


class LandmarkMetric:
    """Weighted point error after Procrustes alignment.

    Alignment removes translation, scale and in-plane rotation so only the
    shape of the keypoint constellation is compared.
    """

    metric = "landmark"

    def __init__(self, gain: float = 5.0, weights: Optional[np.ndarray] = None) -> None:
        self.gain = gain
        self.weights = POINT_WEIGHTS if weights is None else np.asarray(weights, dtype=np.float64)

    def compare(self, selfie: FaceCrop, document: FaceCrop) -> MetricReading:
        if selfie.landmarks is None or document.landmarks is None:
            return MetricReading.unavailable(self.metric, ERROR_MISSING_LANDMARKS)
        points_a = np.asarray(selfie.landmarks, dtype=np.float64).reshape(-1, 2)
        points_b = np.asarray(document.landmarks, dtype=np.float64).reshape(-1, 2)
        if points_a.shape != points_b.shape or points_a.shape[0] != self.weights.shape[0]:
            raise ValueError(f"Landmark shapes differ: {points_a.shape} vs {points_b.shape}")
        std_a, std_b, _ = procrustes(points_a, points_b)
        distances = np.linalg.norm(std_a - std_b, axis=1)
        error = float(np.sum(distances * self.weights) / np.sum(self.weights))
        score = float(np.clip(1.0 - self.gain * error, 0.0, 1.0))
        return MetricReading(metric=self.metric, raw=error, score=score)
