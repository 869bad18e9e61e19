"""Request risk context derived from recent verification history."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol

from faceverify.audit.record import VerificationResult
from faceverify.config import RiskConfig

LOGGER = logging.getLogger("faceverify.ensemble.risk")


@dataclass(frozen=True)
class RiskContext:
    device_flagged: bool = False
    ip_flagged: bool = False
    prior_failed_attempts: int = 0


class ResultHistory(Protocol):
    def failures_since(self, since: datetime) -> List[VerificationResult]:
        ...


def risk_adjustment(context: Optional[RiskContext], config: RiskConfig) -> float:
    """Extra score demanded from a risky request, bounded by ``max_risk_adjustment``."""
    if context is None:
        return 0.0
    adjustment = 0.0
    if context.device_flagged:
        adjustment += config.flagged_device_penalty
    if context.ip_flagged:
        adjustment += config.flagged_ip_penalty
    attempts = min(max(context.prior_failed_attempts, 0), config.failed_attempt_cap)
    adjustment += config.per_failed_attempt * attempts
    return min(adjustment, config.max_risk_adjustment)


class RiskAssessor:
    """Counts recent failed attempts from the same device or IP address."""

    def __init__(self, history: Optional[ResultHistory], config: Optional[RiskConfig] = None) -> None:
        self.history = history
        self.config = config or RiskConfig()

    def context(
        self,
        device_info: Optional[str],
        ip_address: Optional[str],
        now: Optional[datetime] = None,
    ) -> RiskContext:
        if self.history is None or (not device_info and not ip_address):
            return RiskContext()
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=self.config.lookback_hours)
        device_failures = 0
        ip_failures = 0
        failures = 0
        for result in self.history.failures_since(since):
            same_device = bool(device_info) and result.device_info == device_info
            same_ip = bool(ip_address) and result.ip_address == ip_address
            device_failures += int(same_device)
            ip_failures += int(same_ip)
            failures += int(same_device or same_ip)
        context = RiskContext(
            device_flagged=device_failures >= self.config.flag_after_failures,
            ip_flagged=ip_failures >= self.config.flag_after_failures,
            prior_failed_attempts=failures,
        )
        if failures:
            LOGGER.info(
                "Risk context device_failures=%d ip_failures=%d flagged_device=%s flagged_ip=%s",
                device_failures,
                ip_failures,
                context.device_flagged,
                context.ip_flagged,
            )
        return context
