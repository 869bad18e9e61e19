#!/usr/bin/env python3
"""CLI for verifying one selfie against one identity document photo."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from faceverify.audit.recorder import JsonlResultRecorder
from faceverify.config import load_engine_config
from faceverify.ensemble.decision import build_engine
from faceverify.io_utils import setup_logging
from faceverify.types import VerificationRequest


LOGGER = logging.getLogger("scripts.verify_pair")

DEFAULT_STORE = Path("data/verifications.jsonl")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify that a selfie and a document photo show the same person")
    parser.add_argument("selfie", type=Path, help="Path to the live selfie image")
    parser.add_argument("document", type=Path, help="Path to the identity document photo")
    parser.add_argument(
        "--required-score",
        type=float,
        default=None,
        help="Minimum ensemble score demanded by the caller (defaults to the configured baseline)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Engine calibration YAML (e.g. configs/verification.yaml)",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=DEFAULT_STORE,
        help="JSONL file the result is appended to",
    )
    parser.add_argument("--no-store", action="store_true", help="Print the result without recording it")
    parser.add_argument("--device-info", type=str, default=None, help="Opaque client device descriptor")
    parser.add_argument("--ip-address", type=str, default=None, help="Client IP address")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = load_engine_config(args.config)
    recorder = None if args.no_store else JsonlResultRecorder(args.store)
    engine = build_engine(config, recorder=recorder)

    request = VerificationRequest(
        selfie=args.selfie,
        document=args.document,
        required_score=args.required_score,
        device_info=args.device_info,
        ip_address=args.ip_address,
    )
    result = engine.verify(request)
    print(json.dumps(result.to_dict(), indent=2))
    if recorder is not None:
        LOGGER.info("Result %s appended to %s", result.id, args.store)


if __name__ == "__main__":
    main()
