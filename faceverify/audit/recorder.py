"""Append-only stores for verification results plus read-side reporting."""

from __future__ import annotations

import logging
import threading
from dataclasses import fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol

import pandas as pd

from faceverify.audit.record import VerificationResult
from faceverify.io_utils import append_jsonl, ensure_dir, iter_jsonl

LOGGER = logging.getLogger("faceverify.audit")

RESULT_COLUMNS = [f.name for f in fields(VerificationResult)]


class ResultRecorder(Protocol):
    def record(self, result: VerificationResult) -> str:
        ...

    def iter_results(self) -> Iterable[VerificationResult]:
        ...

    def failures_since(self, since: datetime) -> List[VerificationResult]:
        ...


class _RecorderBase:
    """Shared read side. Subclasses provide ``_append`` and ``iter_results``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: set = set()
        # failed results still inside the risk lookback window
        self._failures: List[VerificationResult] = []

    def record(self, result: VerificationResult) -> str:
        with self._lock:
            if result.id in self._ids:
                raise ValueError(f"Result {result.id} already recorded; results are write-once")
            self._append(result)
            self._ids.add(result.id)
            if not result.passed:
                self._failures.append(result)
        LOGGER.info(
            "Recorded result id=%s passed=%s reason=%s score=%s",
            result.id,
            result.passed,
            result.reason,
            result.ensemble_score,
        )
        return result.id

    def supersede(self, old_id: str, result: VerificationResult) -> str:
        """Record ``result`` as a correction of ``old_id``; the original stays untouched."""
        if self.get(old_id) is None:
            raise KeyError(old_id)
        return self.record(replace(result, supersedes=old_id))

    def get(self, result_id: str) -> Optional[VerificationResult]:
        for result in self.iter_results():
            if result.id == result_id:
                return result
        return None

    def recent(self, limit: int = 20) -> List[VerificationResult]:
        """Most recent results first."""
        ordered = sorted(self.iter_results(), key=lambda r: r.created_at, reverse=True)
        return ordered[: max(limit, 0)]

    def failures_since(self, since: datetime) -> List[VerificationResult]:
        """Failed results created at or after ``since``; older ones are dropped from memory."""
        with self._lock:
            self._failures = [r for r in self._failures if r.created_at_dt() >= since]
            return list(self._failures)

    def __len__(self) -> int:
        return len(self._ids)

    def _append(self, result: VerificationResult) -> None:
        raise NotImplementedError

    def iter_results(self) -> Iterator[VerificationResult]:
        raise NotImplementedError


class InMemoryResultRecorder(_RecorderBase):
    def __init__(self) -> None:
        super().__init__()
        self._results: List[VerificationResult] = []

    def _append(self, result: VerificationResult) -> None:
        self._results.append(result)

    def iter_results(self) -> Iterator[VerificationResult]:
        return iter(list(self._results))


class JsonlResultRecorder(_RecorderBase):
    """One JSON document per line; appends are serialized with a lock."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        ensure_dir(self.path.parent)
        for row in iter_jsonl(self.path):
            self._ids.add(str(row.get("id")))
            if not row.get("passed"):
                self._failures.append(VerificationResult.from_dict(row))
        LOGGER.debug("Opened result store %s with %d records", self.path, len(self._ids))

    def _append(self, result: VerificationResult) -> None:
        append_jsonl(self.path, result.to_dict())

    def iter_results(self) -> Iterator[VerificationResult]:
        for row in iter_jsonl(self.path):
            yield VerificationResult.from_dict(row)


def results_frame(results: Iterable[VerificationResult]) -> pd.DataFrame:
    data = [result.to_dict() for result in results]
    if not data:
        return pd.DataFrame(columns=RESULT_COLUMNS)
    return pd.DataFrame(data, columns=RESULT_COLUMNS)


def verification_stats(results: Iterable[VerificationResult]) -> Dict[str, Any]:
    """Totals, pass rate, mean similarity and counts per reason code."""
    df = results_frame(results)
    total = int(len(df))
    if total == 0:
        return {"total": 0, "passed": 0, "failed": 0, "pass_rate": 0.0, "avg_similarity": None, "reasons": {}}
    passed = int(df["passed"].astype(bool).sum())
    similarity = pd.to_numeric(df["similarity_score"], errors="coerce").dropna()
    reasons = df.groupby("reason").size().sort_values(ascending=False)
    return {
        "total": total,
        "passed": passed,
        "failed": total - passed,
        "pass_rate": passed / total,
        "avg_similarity": float(similarity.mean()) if not similarity.empty else None,
        "reasons": {str(k): int(v) for k, v in reasons.items()},
    }


def export_parquet(results: Iterable[VerificationResult], path: Path) -> Path:
    df = results_frame(results)
    ensure_dir(Path(path).parent)
    df.to_parquet(path, index=False)
    LOGGER.info("Exported %d results to %s", len(df), path)
    return Path(path)
