"""I/O helpers shared across CLI entrypoints and pipeline modules."""

from __future__ import annotations

import io
import json
import logging
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import numpy as np
import yaml
from PIL import Image, ImageOps, UnidentifiedImageError

from faceverify.errors import ImageDecodeError
from faceverify.types import ImageSource

LOGGER = logging.getLogger("faceverify.io")


def ensure_dir(path: Path) -> Path:
    """Create directory (and parents) if it does not exist."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    LOGGER.debug("Loaded YAML config %s -> keys=%s", path, list(data.keys()))
    return data


def _json_default(obj: Any) -> Any:
    if is_dataclass(obj):
        return asdict(obj)
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, np.generic):
        return obj.item()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def append_jsonl(path: Path, record: Dict[str, Any]) -> None:
    """Append one JSON document as a single line."""
    line = json.dumps(record, default=_json_default, sort_keys=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(line + "\n")


def iter_jsonl(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield JSON documents from a JSON-lines file, skipping blank lines."""
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                LOGGER.error("Corrupt JSONL line %d in %s", line_no, path)
                raise


def setup_logging(level: int = logging.INFO) -> None:
    """Configure application logging if not already configured."""
    if logging.getLogger().handlers:
        logging.getLogger().setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def decode_image(source: ImageSource, role: Optional[str] = None) -> np.ndarray:
    """Decode bytes, a file path or an array into an RGB uint8 array.

    EXIF orientation is applied so phone captures come out upright.
    """
    if isinstance(source, np.ndarray):
        image = source
        if image.ndim == 2:
            image = np.stack([image] * 3, axis=-1)
        if image.ndim != 3 or image.shape[2] not in (3, 4) or image.size == 0:
            raise ImageDecodeError(f"Unsupported array shape {image.shape}", role=role)
        return np.ascontiguousarray(image[:, :, :3], dtype=np.uint8)

    try:
        if isinstance(source, (bytes, bytearray)):
            if not source:
                raise ImageDecodeError("Empty image payload", role=role)
            pil_image = Image.open(io.BytesIO(source))
        else:
            path = Path(source)
            if not path.exists():
                raise ImageDecodeError(f"Image not found: {path}", role=role)
            pil_image = Image.open(path)
        pil_image = ImageOps.exif_transpose(pil_image)
        rgb = pil_image.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageDecodeError(f"Unable to decode image: {exc}", role=role) from exc
    return np.asarray(rgb, dtype=np.uint8)
