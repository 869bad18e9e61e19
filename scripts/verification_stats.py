#!/usr/bin/env python3
"""CLI for summarising recorded verification results."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from faceverify.audit.recorder import JsonlResultRecorder, export_parquet, verification_stats
from faceverify.io_utils import setup_logging


LOGGER = logging.getLogger("scripts.verification_stats")

RECENT_FIELDS = ("id", "created_at", "passed", "reason", "confidence", "similarity_score", "supersedes")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show aggregate statistics for recorded verifications")
    parser.add_argument(
        "--store",
        type=Path,
        default=Path("data/verifications.jsonl"),
        help="JSONL result store written by faceverify-verify / faceverify-batch",
    )
    parser.add_argument("--recent", type=int, default=10, help="Number of most recent records to list")
    parser.add_argument("--parquet", type=Path, default=None, help="Optional Parquet export path")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    if not args.store.exists():
        LOGGER.warning("Result store %s does not exist yet", args.store)
    recorder = JsonlResultRecorder(args.store)
    results = list(recorder.iter_results())
    stats = verification_stats(results)
    recent = [
        {key: getattr(result, key) for key in RECENT_FIELDS} for result in recorder.recent(args.recent)
    ]
    print(json.dumps({"stats": stats, "recent": recent}, indent=2))

    if args.parquet is not None:
        export_parquet(results, args.parquet)


if __name__ == "__main__":
    main()
