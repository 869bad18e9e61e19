#!/usr/bin/env python3
"""CLI for verifying many selfie/document pairs listed in a CSV."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from tqdm import tqdm

from faceverify.audit.recorder import JsonlResultRecorder
from faceverify.config import load_engine_config
from faceverify.ensemble.decision import build_engine
from faceverify.io_utils import setup_logging
from faceverify.types import VerificationRequest


LOGGER = logging.getLogger("scripts.verify_batch")

REQUIRED_COLUMNS = ("selfie", "document")
SUMMARY_COLUMNS = [
    "selfie",
    "document",
    "id",
    "passed",
    "reason",
    "confidence",
    "ensemble_score",
    "adaptive_threshold",
    "agreement_count",
    "available_metrics",
    "selfie_quality",
    "document_quality",
]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify a CSV of selfie/document pairs")
    parser.add_argument(
        "pairs_csv",
        type=Path,
        help="CSV with selfie,document columns (optional required_score, device_info, ip_address)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Engine calibration YAML")
    parser.add_argument(
        "--store",
        type=Path,
        default=Path("data/verifications.jsonl"),
        help="JSONL file every result is appended to",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Summary CSV path (defaults to <pairs_csv>-results.csv)",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Resolve relative image paths against this directory (defaults to the CSV's folder)",
    )
    return parser.parse_args(argv)


def load_pairs(path: Path, base_dir: Optional[Path] = None) -> List[Dict[str, Any]]:
    df = pd.read_csv(path)
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {missing}")
    base = base_dir or path.parent
    df = df.astype(object).where(pd.notna(df), None)
    rows = []
    for row in df.to_dict(orient="records"):
        for col in REQUIRED_COLUMNS:
            image_path = Path(str(row[col]))
            row[col] = image_path if image_path.is_absolute() else base / image_path
        rows.append(row)
    return rows


def to_request(row: Dict[str, Any]) -> VerificationRequest:
    required = row.get("required_score")
    return VerificationRequest(
        selfie=row["selfie"],
        document=row["document"],
        required_score=float(required) if required is not None else None,
        device_info=row.get("device_info"),
        ip_address=row.get("ip_address"),
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    pairs = load_pairs(args.pairs_csv, args.base_dir)
    config = load_engine_config(args.config)
    recorder = JsonlResultRecorder(args.store)
    engine = build_engine(config, recorder=recorder)

    summary = []
    for row in tqdm(pairs, desc="Verifying", unit="pair"):
        result = engine.verify(to_request(row))
        record = result.to_dict()
        record["selfie"] = str(row["selfie"])
        record["document"] = str(row["document"])
        summary.append(record)

    df = pd.DataFrame(summary, columns=SUMMARY_COLUMNS)
    output_path = args.output or args.pairs_csv.with_name(f"{args.pairs_csv.stem}-results.csv")
    df.to_csv(output_path, index=False)
    passed = int(df["passed"].astype(bool).sum()) if not df.empty else 0
    LOGGER.info("Verified %d pairs (%d passed); summary written to %s", len(df), passed, output_path)


if __name__ == "__main__":
    main()
