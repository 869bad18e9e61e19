import random

import pytest

from faceverify.config import EngineConfig, MetricCalibration, default_metric_calibrations
from faceverify.ensemble.aggregate import EnsembleAggregator
from faceverify.errors import InsufficientMetrics
from faceverify.types import METRIC_IDS, MetricReading


def readings_for(scores):
    return [MetricReading(metric=m, raw=s, score=s) for m, s in scores.items()]


def test_ensemble_score_ignores_reading_order():
    aggregator = EnsembleAggregator(EngineConfig())
    scores = {metric: 0.05 + 0.09 * idx for idx, metric in enumerate(METRIC_IDS)}
    readings = readings_for(scores)
    baseline = aggregator.aggregate(readings).score
    rng = random.Random(3)
    for _ in range(10):
        shuffled = list(readings)
        rng.shuffle(shuffled)
        assert aggregator.aggregate(shuffled).score == baseline


def test_ensemble_score_stays_in_unit_interval():
    aggregator = EnsembleAggregator(EngineConfig())
    assert aggregator.aggregate(readings_for({m: 1.0 for m in METRIC_IDS})).score == pytest.approx(1.0)
    assert aggregator.aggregate(readings_for({m: 0.0 for m in METRIC_IDS})).score == pytest.approx(0.0)


def test_raising_one_metric_never_lowers_the_score():
    aggregator = EnsembleAggregator(EngineConfig())
    scores = {metric: 0.5 for metric in METRIC_IDS}
    before = aggregator.aggregate(readings_for(scores)).score
    scores["texture"] = 0.8
    after = aggregator.aggregate(readings_for(scores)).score
    assert after > before


def test_unavailable_metrics_are_excluded_and_weights_renormalized():
    metrics = dict(default_metric_calibrations())
    metrics["arcface"] = MetricCalibration(weight=0.4, cutoff=0.5)
    aggregator = EnsembleAggregator(EngineConfig(metrics=metrics))
    readings = readings_for({m: 0.6 for m in METRIC_IDS if m != "arcface"})
    readings.append(MetricReading.unavailable("arcface", "timeout"))
    outcome = aggregator.aggregate(readings)
    assert outcome.available == 9
    assert outcome.score == pytest.approx(0.6)
    assert sum(outcome.weights.values()) == pytest.approx(1.0)
    assert "arcface" not in outcome.weights


def test_weighted_mean_uses_configured_weights():
    metrics = {m: MetricCalibration(weight=0.0, cutoff=0.5) for m in METRIC_IDS}
    metrics["arcface"] = MetricCalibration(weight=3.0, cutoff=0.5)
    metrics["cosine"] = MetricCalibration(weight=1.0, cutoff=0.5)
    aggregator = EnsembleAggregator(EngineConfig(metrics=metrics))
    scores = {m: 0.0 for m in METRIC_IDS}
    scores["arcface"] = 1.0
    assert aggregator.aggregate(readings_for(scores)).score == pytest.approx(0.75)


def test_too_few_available_metrics_raises():
    aggregator = EnsembleAggregator(EngineConfig())
    readings = readings_for({m: 0.9 for m in METRIC_IDS[:4]})
    with pytest.raises(InsufficientMetrics):
        aggregator.aggregate(readings)


def test_votes_use_per_metric_cutoffs():
    aggregator = EnsembleAggregator(EngineConfig())
    readings = readings_for({"histogram": 0.79, "cosine": 0.36, "arcface": 0.5})
    votes = aggregator.votes(readings)
    assert votes == {"arcface": True, "cosine": True, "histogram": False}


def test_agreement_is_bounded_by_available_metrics():
    aggregator = EnsembleAggregator(EngineConfig())
    readings = readings_for({m: 0.9 for m in METRIC_IDS[:7]})
    readings.append(MetricReading.unavailable(METRIC_IDS[7], "timeout"))
    assert aggregator.count_agreement(readings, True) == 7
    assert aggregator.count_agreement(readings, False) == 0
