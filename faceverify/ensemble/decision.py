"""Verification pipeline: quality gate, metric fan-out, ensemble decision, record."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from faceverify.audit.record import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    VerificationResult,
    metric_fields,
)
from faceverify.audit.recorder import ResultRecorder
from faceverify.config import ConfidenceConfig, EngineConfig
from faceverify.detectors.face_retina import RetinaFaceDetector
from faceverify.ensemble.aggregate import EnsembleAggregator
from faceverify.ensemble.risk import RiskAssessor, RiskContext
from faceverify.ensemble.threshold import AdaptiveThresholdCalculator
from faceverify.errors import (
    REASON_BELOW_THRESHOLD,
    REASON_INSUFFICIENT_AGREEMENT,
    REASON_PASSED,
    ConfigurationError,
    InsufficientQuality,
    InternalProviderError,
    VerificationCancelled,
    VerificationError,
    VerificationTimeout,
)
from faceverify.metrics.base import ERROR_TIMEOUT, MetricProvider, safe_compare
from faceverify.metrics.registry import build_default_providers
from faceverify.quality.assessor import QualityAssessor, QualityReport
from faceverify.types import DOCUMENT, SELFIE, MetricReading, VerificationRequest

LOGGER = logging.getLogger("faceverify.ensemble.decision")

# Granularity of cancellation checks while waiting on worker threads
POLL_INTERVAL_S = 0.05


def classify_confidence(margin: float, config: ConfidenceConfig) -> str:
    if margin >= config.high_margin:
        return CONFIDENCE_HIGH
    if margin <= -config.low_margin:
        return CONFIDENCE_LOW
    return CONFIDENCE_MEDIUM


@dataclass
class _Progress:
    """What one request has computed so far; attached to failed results."""

    selfie_quality: Optional[float] = None
    document_quality: Optional[float] = None
    readings: List[MetricReading] = field(default_factory=list)


class DecisionEngine:
    """Runs one verification per ``verify`` call; holds no per-request state."""

    def __init__(
        self,
        config: EngineConfig,
        assessor: QualityAssessor,
        providers: Sequence[MetricProvider],
        recorder: Optional[ResultRecorder] = None,
        risk_assessor: Optional[RiskAssessor] = None,
    ) -> None:
        self.config = config
        self.assessor = assessor
        self.providers = list(providers)
        self.recorder = recorder
        self.risk_assessor = risk_assessor
        self.aggregator = EnsembleAggregator(config)
        self.threshold_calculator = AdaptiveThresholdCalculator(config.threshold, config.risk)
        self._validate_wiring()

    def _validate_wiring(self) -> None:
        metrics = [p.metric for p in self.providers]
        if len(set(metrics)) != len(metrics):
            raise ConfigurationError(f"Duplicate metric providers: {sorted(metrics)}")
        unknown = sorted(set(metrics) - set(self.config.metrics))
        if unknown:
            raise ConfigurationError(f"Providers without calibration: {unknown}")
        if len(self.providers) < self.config.min_available_metrics:
            raise ConfigurationError(
                f"{len(self.providers)} providers wired but min_available_metrics="
                f"{self.config.min_available_metrics}"
            )
        if self.config.min_agreement > len(self.providers):
            raise ConfigurationError(
                f"min_agreement={self.config.min_agreement} exceeds {len(self.providers)} providers"
            )

    def verify(self, request: VerificationRequest, cancel_event: Optional[threading.Event] = None) -> VerificationResult:
        """Return a terminal result; only cancellation escapes as an exception."""
        required = request.required_score
        if required is None:
            required = self.config.threshold.required_score
        deadline = time.monotonic() + self.config.request_timeout_s
        progress = _Progress()
        started = time.monotonic()
        try:
            result = self._run(request, required, deadline, cancel_event, progress)
        except VerificationCancelled:
            LOGGER.info("Verification cancelled after %.2fs; nothing recorded", time.monotonic() - started)
            raise
        except VerificationError as exc:
            LOGGER.info("Verification failed reason=%s detail=%s", exc.reason, exc.detail)
            result = self._failed_result(exc, request, required, progress)
        LOGGER.info(
            "Verification done passed=%s reason=%s score=%s threshold=%s in %.2fs",
            result.passed,
            result.reason,
            result.ensemble_score,
            result.adaptive_threshold,
            time.monotonic() - started,
        )
        if self.recorder is not None:
            try:
                self.recorder.record(result)
            except Exception:
                LOGGER.error("Failed to record verification result %s", result.id, exc_info=True)
        return result

    def _run(
        self,
        request: VerificationRequest,
        required: float,
        deadline: float,
        cancel_event: Optional[threading.Event],
        progress: _Progress,
    ) -> VerificationResult:
        _check_cancelled(cancel_event)
        selfie, document = self._prepare_faces(request, deadline, cancel_event, progress)
        self._quality_gate(selfie, document)

        progress.readings = self._run_providers(selfie, document, deadline, cancel_event)
        outcome = self.aggregator.aggregate(progress.readings)

        risk = self._risk_context(request)
        breakdown = self.threshold_calculator.compute(required, selfie.score, document.score, risk)
        threshold = breakdown.threshold

        decision = outcome.score >= threshold
        agreement = self.aggregator.count_agreement(progress.readings, decision)
        passed = decision and agreement >= self.config.min_agreement
        if passed:
            reason = REASON_PASSED
        elif not decision:
            reason = REASON_BELOW_THRESHOLD
        else:
            reason = REASON_INSUFFICIENT_AGREEMENT
        confidence = classify_confidence(outcome.score - threshold, self.config.confidence)
        return VerificationResult(
            passed=passed,
            reason=reason,
            ensemble_score=outcome.score,
            similarity_score=outcome.score,
            agreement_count=agreement,
            available_metrics=outcome.available,
            adaptive_threshold=threshold,
            required_score=required,
            confidence=confidence,
            selfie_quality=selfie.score,
            document_quality=document.score,
            device_info=request.device_info,
            ip_address=request.ip_address,
            config_version=self.config.version,
            **metric_fields(progress.readings),
        )

    def _prepare_faces(
        self,
        request: VerificationRequest,
        deadline: float,
        cancel_event: Optional[threading.Event],
        progress: _Progress,
    ) -> Tuple[QualityReport, QualityReport]:
        """Assess both captures off the caller's thread so the request deadline bounds them."""
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="faceverify-assess")
        try:
            selfie_future = executor.submit(self._assess, request.selfie, SELFIE)
            document_future = executor.submit(self._assess, request.document, DOCUMENT)
            pending = _wait_until({selfie_future, document_future}, deadline, cancel_event)
            if pending:
                for future in pending:
                    future.cancel()
                raise VerificationTimeout("Request deadline passed during face preparation")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        selfie = selfie_future.result()
        progress.selfie_quality = selfie.score
        document = document_future.result()
        progress.document_quality = document.score
        return selfie, document

    def _risk_context(self, request: VerificationRequest) -> Optional[RiskContext]:
        if self.risk_assessor is None:
            return None
        try:
            return self.risk_assessor.context(request.device_info, request.ip_address)
        except Exception:
            LOGGER.error("Risk history unreadable; continuing without risk adjustment", exc_info=True)
            return RiskContext()

    def _assess(self, image, role: str) -> QualityReport:
        try:
            return self.assessor.assess(image, role)
        except VerificationError:
            raise
        except Exception as exc:
            LOGGER.warning("Quality assessment crashed for %s", role, exc_info=True)
            raise InternalProviderError(f"Face preparation failed: {exc}", role=role) from exc

    def _quality_gate(self, selfie: QualityReport, document: QualityReport) -> None:
        minimum = self.config.quality.min_usable_quality
        for report in (selfie, document):
            if not report.is_usable(minimum):
                issues = ", ".join(report.issues) or "low overall quality"
                raise InsufficientQuality(
                    f"quality {report.score:.2f} below {minimum:.2f} ({issues})",
                    role=report.role,
                )

    def _run_providers(
        self,
        selfie: QualityReport,
        document: QualityReport,
        deadline: float,
        cancel_event: Optional[threading.Event],
    ) -> List[MetricReading]:
        """Fan out every provider and collect readings until done or timed out."""
        workers = max(1, min(self.config.max_workers, len(self.providers)))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="faceverify-metric")
        futures: Dict[Future, str] = {}
        try:
            for provider in self.providers:
                futures[executor.submit(safe_compare, provider, selfie.face, document.face)] = provider.metric
            provider_deadline = min(time.monotonic() + self.config.provider_timeout_s, deadline)
            pending = _wait_until(set(futures), provider_deadline, cancel_event)
            if pending:
                for future in pending:
                    future.cancel()
                if time.monotonic() >= deadline:
                    raise VerificationTimeout(f"Request deadline passed with {len(pending)} providers running")
                LOGGER.warning("Metric providers timed out: %s", sorted(futures[f] for f in pending))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        readings = []
        for future, metric in futures.items():
            if future in pending:
                readings.append(MetricReading.unavailable(metric, ERROR_TIMEOUT))
            else:
                readings.append(future.result())
        readings.sort(key=lambda r: r.metric)
        LOGGER.debug(
            "Metric readings: %s",
            {r.metric: (round(r.score, 4) if r.score is not None else r.error) for r in readings},
        )
        return readings

    def _failed_result(
        self,
        exc: VerificationError,
        request: VerificationRequest,
        required: float,
        progress: _Progress,
    ) -> VerificationResult:
        available = sum(1 for r in progress.readings if r.available)
        return VerificationResult(
            passed=False,
            reason=exc.reason,
            detail=exc.detail,
            available_metrics=available,
            required_score=required,
            confidence=CONFIDENCE_LOW,
            selfie_quality=progress.selfie_quality,
            document_quality=progress.document_quality,
            device_info=request.device_info,
            ip_address=request.ip_address,
            config_version=self.config.version,
            **metric_fields(progress.readings),
        )


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise VerificationCancelled("Caller cancelled the request")


def _wait_until(pending: Set[Future], until: float, cancel_event: Optional[threading.Event]) -> Set[Future]:
    """Wait for ``pending`` until the monotonic time ``until``; return what is still running."""
    while pending:
        if cancel_event is not None and cancel_event.is_set():
            for future in pending:
                future.cancel()
            raise VerificationCancelled("Caller cancelled the request")
        remaining = until - time.monotonic()
        if remaining <= 0:
            break
        _, pending = wait(pending, timeout=min(POLL_INTERVAL_S, remaining), return_when=FIRST_COMPLETED)
    return pending


def build_engine(
    config: Optional[EngineConfig] = None,
    recorder: Optional[ResultRecorder] = None,
    detector=None,
    embedders=None,
) -> DecisionEngine:
    """Wire the production engine: RetinaFace detector, InsightFace models, all ten metrics."""
    config = config or EngineConfig()
    if detector is None:
        detector = RetinaFaceDetector(
            providers=config.models.providers,
            det_size=config.models.det_size,
            det_thresh=config.quality.det_thresh,
            model_pack=config.models.detector,
        )
    assessor = QualityAssessor(detector, config.quality)
    providers = build_default_providers(config, embedders)
    risk_assessor = RiskAssessor(recorder, config.risk) if recorder is not None else None
    return DecisionEngine(config, assessor, providers, recorder=recorder, risk_assessor=risk_assessor)
