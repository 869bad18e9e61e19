"""Immutable engine configuration.

All calibration constants live here and are loaded once (defaults or YAML) into
frozen dataclasses that the engine receives at construction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from faceverify.errors import ConfigurationError
from faceverify.io_utils import load_yaml
from faceverify.types import METRIC_IDS

LOGGER = logging.getLogger("faceverify.config")

# Vote cutoffs on the normalized [0, 1] scale of each metric.
DEFAULT_CUTOFFS: Dict[str, float] = {
    "arcface": 0.50,
    "cosface": 0.55,
    "sphereface": 0.55,
    "cosine": 0.35,
    "euclidean": 0.50,
    "histogram": 0.80,
    "landmark": 0.60,
    "structural": 0.60,
    "texture": 0.60,
    "triplet": 0.35,
}


@dataclass(frozen=True)
class MetricCalibration:
    weight: float = 0.1
    cutoff: float = 0.5


@dataclass(frozen=True)
class QualityConfig:
    min_usable_quality: float = 0.25
    det_thresh: float = 0.5
    # Laplacian variance mapped to a sharpness of 1.0
    sharpness_scale: float = 300.0
    target_face_px: float = 112.0
    min_face_px: float = 40.0
    # sharpness, exposure, contrast, face size
    weights: Tuple[float, float, float, float] = (0.35, 0.25, 0.25, 0.15)
    dark_brightness: float = 0.3
    bright_brightness: float = 0.7
    uneven_ratio: float = 0.3
    blurry_sharpness: float = 0.3
    preprocess: bool = True
    document_upscale: float = 2.0


@dataclass(frozen=True)
class ThresholdConfig:
    required_score: float = 0.70
    quality_baseline: float = 0.60
    quality_gain: float = 0.50


@dataclass(frozen=True)
class RiskConfig:
    flagged_device_penalty: float = 0.05
    flagged_ip_penalty: float = 0.05
    per_failed_attempt: float = 0.02
    failed_attempt_cap: int = 5
    max_risk_adjustment: float = 0.15
    flag_after_failures: int = 3
    lookback_hours: float = 24.0


@dataclass(frozen=True)
class ConfidenceConfig:
    high_margin: float = 0.10
    low_margin: float = 0.10


@dataclass(frozen=True)
class HeadConfig:
    scale: float = 64.0
    arcface_margin: float = 0.5
    cosface_margin: float = 0.35
    sphereface_margin: float = 1.35
    triplet_decay: float = 1.0
    euclidean_midpoint: float = 1.10
    euclidean_steepness: float = 8.0
    landmark_gain: float = 5.0


@dataclass(frozen=True)
class ModelConfig:
    arcface: str = "buffalo_l"
    cosface: str = "antelopev2"
    sphereface: str = "buffalo_s"
    reference: str = "buffalo_l"
    detector: str = "buffalo_l"
    det_size: Tuple[int, int] = (640, 640)
    providers: Optional[Tuple[str, ...]] = None


def default_metric_calibrations() -> Mapping[str, MetricCalibration]:
    weight = 1.0 / len(METRIC_IDS)
    return MappingProxyType(
        {metric: MetricCalibration(weight=weight, cutoff=DEFAULT_CUTOFFS[metric]) for metric in METRIC_IDS}
    )


@dataclass(frozen=True)
class EngineConfig:
    metrics: Mapping[str, MetricCalibration] = field(default_factory=default_metric_calibrations)
    quality: QualityConfig = field(default_factory=QualityConfig)
    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    heads: HeadConfig = field(default_factory=HeadConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    min_available_metrics: int = 5
    min_agreement: int = 4
    provider_timeout_s: float = 5.0
    request_timeout_s: float = 20.0
    max_workers: int = 10
    version: str = "1"

    def __post_init__(self) -> None:
        if not isinstance(self.metrics, MappingProxyType):
            object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))
        self.validate()

    def validate(self) -> None:
        unknown = sorted(set(self.metrics) - set(METRIC_IDS))
        if unknown:
            raise ConfigurationError(f"Unknown metrics in configuration: {unknown}")
        if not self.metrics:
            raise ConfigurationError("At least one metric must be configured")
        for metric, calibration in self.metrics.items():
            if calibration.weight < 0:
                raise ConfigurationError(f"Metric {metric} has a negative weight")
            if not 0.0 <= calibration.cutoff <= 1.0:
                raise ConfigurationError(f"Metric {metric} cutoff must lie in [0, 1]")
        if sum(c.weight for c in self.metrics.values()) <= 0:
            raise ConfigurationError("Metric weights must not all be zero")
        if not 1 <= self.min_available_metrics <= len(self.metrics):
            raise ConfigurationError(
                f"min_available_metrics={self.min_available_metrics} is unreachable "
                f"with {len(self.metrics)} configured metrics"
            )
        if not 0 <= self.min_agreement <= len(self.metrics):
            raise ConfigurationError(f"min_agreement={self.min_agreement} out of range")
        if self.provider_timeout_s <= 0 or self.request_timeout_s <= 0:
            raise ConfigurationError("Timeouts must be positive")
        if self.confidence.high_margin < 0 or self.confidence.low_margin < 0:
            raise ConfigurationError("Confidence margins must be non-negative")
        if not 0.0 <= self.quality.min_usable_quality <= 1.0:
            raise ConfigurationError("min_usable_quality must lie in [0, 1]")

    def weight(self, metric: str) -> float:
        calibration = self.metrics.get(metric)
        return calibration.weight if calibration is not None else 0.0

    def cutoff(self, metric: str) -> float:
        calibration = self.metrics.get(metric)
        if calibration is None:
            raise KeyError(metric)
        return calibration.cutoff

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        data = dict(data or {})
        kwargs: Dict[str, Any] = {}

        metrics_raw = data.pop("metrics", None)
        if metrics_raw is not None:
            metrics: Dict[str, MetricCalibration] = {}
            for metric, values in metrics_raw.items():
                values = values or {}
                metrics[metric] = MetricCalibration(
                    weight=float(values.get("weight", 0.1)),
                    cutoff=float(values.get("cutoff", DEFAULT_CUTOFFS.get(metric, 0.5))),
                )
            kwargs["metrics"] = metrics

        sections = {
            "quality": QualityConfig,
            "threshold": ThresholdConfig,
            "risk": RiskConfig,
            "confidence": ConfidenceConfig,
            "heads": HeadConfig,
            "models": ModelConfig,
        }
        for name, section_cls in sections.items():
            raw = data.pop(name, None)
            if raw is not None:
                kwargs[name] = _build_section(section_cls, raw)

        for f in fields(cls):
            if f.name in data:
                kwargs[f.name] = data.pop(f.name)
        if "version" in kwargs:
            kwargs["version"] = str(kwargs["version"])
        if data:
            LOGGER.warning("Ignoring unknown engine config keys: %s", sorted(data))
        return cls(**kwargs)


def _build_section(section_cls, raw: Mapping[str, Any]):
    allowed = {f.name for f in fields(section_cls)}
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ConfigurationError(f"Unknown {section_cls.__name__} keys: {unknown}")
    values = {}
    for key, value in raw.items():
        if isinstance(value, list):
            value = tuple(value)
        values[key] = value
    return section_cls(**values)


def load_engine_config(path: Optional[Path] = None) -> EngineConfig:
    """Load engine configuration from YAML, falling back to defaults."""
    if path is None:
        return EngineConfig()
    data = load_yaml(Path(path))
    config = EngineConfig.from_dict(data.get("engine", data))
    LOGGER.info(
        "Loaded engine config v%s from %s (%d metrics, min_available=%d, min_agreement=%d)",
        config.version,
        path,
        len(config.metrics),
        config.min_available_metrics,
        config.min_agreement,
    )
    return config


def metric_names(config: EngineConfig) -> Sequence[str]:
    return [metric for metric in METRIC_IDS if metric in config.metrics]
