"""Adaptive acceptance threshold."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from faceverify.config import RiskConfig, ThresholdConfig
from faceverify.ensemble.risk import RiskContext, risk_adjustment

LOGGER = logging.getLogger("faceverify.ensemble.threshold")


@dataclass(frozen=True)
class ThresholdBreakdown:
    required_score: float
    quality_adjustment: float
    risk_adjustment: float
    threshold: float


class AdaptiveThresholdCalculator:
    """Raise the bar above ``required_score`` for poor captures and risky requests.

    The threshold never drops below the caller's required score unless that
    score itself lies outside [0, 1].
    """

    def __init__(self, config: Optional[ThresholdConfig] = None, risk_config: Optional[RiskConfig] = None) -> None:
        self.config = config or ThresholdConfig()
        self.risk_config = risk_config or RiskConfig()

    def compute(
        self,
        required_score: float,
        selfie_quality: float,
        document_quality: float,
        risk: Optional[RiskContext] = None,
    ) -> ThresholdBreakdown:
        worst_quality = min(selfie_quality, document_quality)
        quality_adj = self.config.quality_gain * max(0.0, self.config.quality_baseline - worst_quality)
        risk_adj = risk_adjustment(risk, self.risk_config)
        threshold = min(max(required_score + quality_adj + risk_adj, 0.0), 1.0)
        breakdown = ThresholdBreakdown(
            required_score=required_score,
            quality_adjustment=quality_adj,
            risk_adjustment=risk_adj,
            threshold=threshold,
        )
        LOGGER.info(
            "Adaptive threshold=%.4f (required=%.4f quality_adj=%.4f risk_adj=%.4f worst_quality=%.3f)",
            threshold,
            required_score,
            quality_adj,
            risk_adj,
            worst_quality,
        )
        return breakdown
