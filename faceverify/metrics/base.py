"""Metric provider contract and the boundary that keeps provider faults contained."""

from __future__ import annotations

import logging
import math
from typing import Protocol

from faceverify.types import FaceCrop, MetricReading

LOGGER = logging.getLogger("faceverify.metrics")

ERROR_TIMEOUT = "timeout"
ERROR_INTERNAL = "internal_provider_error"
ERROR_MODEL_NOT_LOADED = "model_not_loaded"
ERROR_MISSING_LANDMARKS = "missing_landmarks"


class MetricProvider(Protocol):
    """Compares two prepared faces; higher score means more likely the same person."""

    metric: str

    def compare(self, selfie: FaceCrop, document: FaceCrop) -> MetricReading:
        ...


def safe_compare(provider: MetricProvider, selfie: FaceCrop, document: FaceCrop) -> MetricReading:
    """Run ``provider.compare`` and turn any crash into an unavailable reading."""
    metric = provider.metric
    try:
        reading = provider.compare(selfie, document)
    except Exception:
        LOGGER.warning("Metric provider %s crashed", metric, exc_info=True)
        return MetricReading.unavailable(metric, ERROR_INTERNAL)
    if not reading.available:
        return reading
    score = reading.score
    if score is None or not math.isfinite(score):
        LOGGER.warning("Metric provider %s returned a non-finite score %r", metric, score)
        return MetricReading.unavailable(metric, ERROR_INTERNAL)
    if not 0.0 <= score <= 1.0:
        LOGGER.debug("Clipping %s score %.4f into [0, 1]", metric, score)
        score = min(max(score, 0.0), 1.0)
        reading = MetricReading(metric=metric, raw=reading.raw, score=score)
    LOGGER.debug("Metric %s raw=%s score=%.4f", metric, reading.raw, score)
    return reading
