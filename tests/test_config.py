from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from faceverify.config import EngineConfig, MetricCalibration, load_engine_config
from faceverify.errors import ConfigurationError
from faceverify.types import METRIC_IDS

CONFIG_PATH = Path(__file__).resolve().parents[1] / "configs" / "verification.yaml"


def test_defaults_use_equal_weights():
    config = EngineConfig()
    assert set(config.metrics) == set(METRIC_IDS)
    assert sum(config.weight(m) for m in METRIC_IDS) == pytest.approx(1.0)
    assert config.min_available_metrics == 5
    assert config.min_agreement == 4
    assert config.threshold.required_score == pytest.approx(0.70)


def test_config_is_read_only():
    config = EngineConfig()
    with pytest.raises(FrozenInstanceError):
        config.min_agreement = 1
    with pytest.raises(TypeError):
        config.metrics["arcface"] = MetricCalibration()


def test_shipped_yaml_matches_defaults():
    config = load_engine_config(CONFIG_PATH)
    defaults = EngineConfig()
    assert dict(config.metrics) == dict(defaults.metrics)
    assert config.quality == defaults.quality
    assert config.threshold == defaults.threshold
    assert config.risk == defaults.risk
    assert config.heads == defaults.heads
    assert config.models == defaults.models
    assert config.version == "1"


def test_from_dict_overrides_sections(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        "engine:\n"
        "  version: 7\n"
        "  min_agreement: 3\n"
        "  threshold:\n"
        "    required_score: 0.8\n"
        "  quality:\n"
        "    weights: [0.4, 0.2, 0.2, 0.2]\n",
        encoding="utf-8",
    )
    config = load_engine_config(path)
    assert config.version == "7"
    assert config.min_agreement == 3
    assert config.threshold.required_score == pytest.approx(0.8)
    assert config.quality.weights == (0.4, 0.2, 0.2, 0.2)


def test_unknown_metric_is_rejected():
    with pytest.raises(ConfigurationError):
        EngineConfig.from_dict({"metrics": {"gait": {"weight": 0.1}}})


def test_unknown_section_key_is_rejected():
    with pytest.raises(ConfigurationError):
        EngineConfig.from_dict({"threshold": {"required": 0.7}})


@pytest.mark.parametrize(
    "kwargs",
    [
        {"min_available_metrics": 11},
        {"min_available_metrics": 0},
        {"min_agreement": 11},
        {"provider_timeout_s": 0},
        {"metrics": {"arcface": MetricCalibration(weight=-1.0)}},
        {"metrics": {m: MetricCalibration(weight=0.0) for m in METRIC_IDS}},
        {"metrics": {m: MetricCalibration(cutoff=1.5) for m in METRIC_IDS}},
    ],
)
def test_invalid_calibration_raises(kwargs):
    with pytest.raises(ConfigurationError):
        EngineConfig(**kwargs)


def test_triplet_vote_uses_the_metric_cutoff_only():
    # the triplet boundary is the calibrated cutoff, there is no separate margin setting
    with pytest.raises(ConfigurationError):
        EngineConfig.from_dict({"heads": {"triplet_margin": 0.5}})
    assert EngineConfig().cutoff("triplet") == pytest.approx(0.35)
