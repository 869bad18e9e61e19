import json
from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from faceverify.audit.record import VerificationResult, metric_fields
from faceverify.audit.recorder import (
    InMemoryResultRecorder,
    JsonlResultRecorder,
    export_parquet,
    verification_stats,
)
from faceverify.types import MetricReading


def passed_result(score=0.9, **kwargs):
    return VerificationResult(
        passed=True,
        reason="passed",
        ensemble_score=score,
        similarity_score=score,
        agreement_count=10,
        available_metrics=10,
        adaptive_threshold=0.7,
        required_score=0.7,
        confidence="high",
        **kwargs,
    )


def failed_result(reason="insufficient_quality", **kwargs):
    return VerificationResult(passed=False, reason=reason, **kwargs)


def test_results_are_immutable():
    result = passed_result()
    with pytest.raises(FrozenInstanceError):
        result.passed = False


def test_in_memory_recorder_is_write_once():
    recorder = InMemoryResultRecorder()
    result = passed_result()
    assert recorder.record(result) == result.id
    with pytest.raises(ValueError):
        recorder.record(result)
    assert len(recorder) == 1
    assert recorder.get(result.id) == result
    assert recorder.get("missing") is None


def test_recent_returns_newest_first():
    recorder = InMemoryResultRecorder()
    older = passed_result(created_at="2024-05-01T10:00:00+00:00")
    newer = failed_result(created_at="2024-05-02T10:00:00+00:00")
    recorder.record(older)
    recorder.record(newer)
    assert [r.id for r in recorder.recent(5)] == [newer.id, older.id]
    assert recorder.recent(1) == [newer]


def test_supersede_keeps_the_original():
    recorder = InMemoryResultRecorder()
    original = failed_result(reason="timeout")
    recorder.record(original)
    new_id = recorder.supersede(original.id, passed_result())
    assert recorder.get(original.id) == original
    assert recorder.get(new_id).supersedes == original.id
    with pytest.raises(KeyError):
        recorder.supersede("unknown", passed_result())


def test_correction_links_back_with_new_identity():
    original = failed_result(reason="timeout")
    corrected = original.correction(reason="below_threshold")
    assert corrected.id != original.id
    assert corrected.supersedes == original.id
    assert corrected.reason == "below_threshold"


def test_jsonl_recorder_persists_null_metrics(tmp_path):
    path = tmp_path / "store" / "results.jsonl"
    recorder = JsonlResultRecorder(path)
    result = passed_result(arcface_score=None, cosine_score=0.8)
    recorder.record(result)

    line = path.read_text(encoding="utf-8").strip()
    payload = json.loads(line)
    assert payload["arcface_score"] is None
    assert payload["cosine_score"] == pytest.approx(0.8)

    reopened = JsonlResultRecorder(path)
    assert reopened.get(result.id) == result
    with pytest.raises(ValueError):
        reopened.record(result)


def test_metric_fields_skip_unavailable_readings():
    readings = [
        MetricReading(metric="cosine", raw=0.2, score=0.8),
        MetricReading(metric="euclidean", raw=0.7, score=0.9),
        MetricReading.unavailable("arcface", "timeout"),
    ]
    values = metric_fields(readings)
    assert values == {
        "cosine_distance": 0.2,
        "cosine_score": 0.8,
        "euclidean_distance": 0.7,
        "euclidean_score": 0.9,
    }


def test_verification_stats_summarise_results():
    results = [passed_result(0.9), passed_result(0.7), failed_result(), failed_result("below_threshold", similarity_score=0.5)]
    stats = verification_stats(results)
    assert stats["total"] == 4
    assert stats["passed"] == 2
    assert stats["failed"] == 2
    assert stats["pass_rate"] == pytest.approx(0.5)
    assert stats["avg_similarity"] == pytest.approx(0.7)
    assert stats["reasons"] == {"passed": 2, "insufficient_quality": 1, "below_threshold": 1}


def test_verification_stats_empty():
    stats = verification_stats([])
    assert stats["total"] == 0
    assert stats["avg_similarity"] is None


def test_export_parquet_roundtrip(tmp_path):
    pd = pytest.importorskip("pandas")
    pytest.importorskip("pyarrow")
    results = [passed_result(), failed_result()]
    path = export_parquet(results, tmp_path / "exports" / "results.parquet")
    df = pd.read_parquet(path)
    assert len(df) == 2
    assert set(df["reason"]) == {"passed", "insufficient_quality"}


def failure_at(hours_ago, device="pixel-7"):
    created = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
    return VerificationResult(passed=False, reason="below_threshold", device_info=device, created_at=created.isoformat())


def test_failures_since_keeps_only_the_lookback_window():
    recorder = InMemoryResultRecorder()
    recorder.record(failure_at(48))
    recorder.record(failure_at(1))
    recorder.record(passed_result())
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    recent = recorder.failures_since(since)
    assert [r.reason for r in recent] == ["below_threshold"]
    assert len(recorder) == 3


def test_jsonl_reopen_restores_recent_failures(tmp_path):
    store = tmp_path / "results.jsonl"
    first = JsonlResultRecorder(store)
    kept = first.record(failure_at(2))
    first.record(failure_at(30))
    first.record(passed_result())

    reopened = JsonlResultRecorder(store)
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    assert [r.id for r in reopened.failures_since(since)] == [kept]
