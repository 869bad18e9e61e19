"""Combine per-metric readings into one ensemble score and a vote tally."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List

from faceverify.config import EngineConfig
from faceverify.errors import InsufficientMetrics
from faceverify.types import MetricReading

LOGGER = logging.getLogger("faceverify.ensemble.aggregate")


@dataclass(frozen=True)
class EnsembleOutcome:
    score: float
    available: int
    weights: Dict[str, float]


class EnsembleAggregator:
    """Weighted mean over available metrics with renormalized weights.

    Readings are processed in metric-name order so the result does not depend
    on the order providers finished in.
    """

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def usable(self, readings: Iterable[MetricReading]) -> List[MetricReading]:
        usable = [
            r for r in readings if r.available and r.score is not None and r.metric in self.config.metrics
        ]
        return sorted(usable, key=lambda r: r.metric)

    def aggregate(self, readings: Iterable[MetricReading]) -> EnsembleOutcome:
        usable = self.usable(readings)
        minimum = self.config.min_available_metrics
        if len(usable) < minimum:
            raise InsufficientMetrics(f"Only {len(usable)} metrics available, need at least {minimum}")
        total_weight = math.fsum(self.config.weight(r.metric) for r in usable)
        if total_weight <= 0:
            raise InsufficientMetrics("All available metrics carry zero weight")
        weights = {r.metric: self.config.weight(r.metric) / total_weight for r in usable}
        score = math.fsum(weights[r.metric] * float(r.score) for r in usable)
        score = min(max(score, 0.0), 1.0)
        LOGGER.debug("Ensemble score=%.4f from %d metrics weights=%s", score, len(usable), weights)
        return EnsembleOutcome(score=score, available=len(usable), weights=weights)

    def votes(self, readings: Iterable[MetricReading]) -> Dict[str, bool]:
        """Binary match vote per available metric against its calibrated cutoff."""
        return {r.metric: float(r.score) >= self.config.cutoff(r.metric) for r in self.usable(readings)}

    def count_agreement(self, readings: Iterable[MetricReading], decision: bool) -> int:
        return sum(1 for vote in self.votes(readings).values() if vote == decision)
