"""InsightFace recognition models used as embedding capability providers."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Protocol, Sequence, Tuple

import cv2
import numpy as np

from faceverify.detectors.face_retina import default_providers
from faceverify.types import l2_normalize

LOGGER = logging.getLogger("faceverify.recognition.embed")


class Embedder(Protocol):
    name: str

    def embed(self, aligned_face: np.ndarray) -> np.ndarray:
        ...


class InsightFaceEmbedder:
    """Loads one InsightFace recognition model (pack name or ONNX path)."""

    def __init__(self, model: str, providers: Optional[Sequence[str]] = None) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        os.environ.setdefault("MKL_NUM_THREADS", "2")
        os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", "2")
        try:
            from insightface.app import FaceAnalysis
            from insightface.model_zoo import get_model
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "insightface is required for InsightFaceEmbedder. "
                "Install it via `pip install insightface`."
            ) from exc

        provider_list: Tuple[str, ...]
        if providers is None:
            provider_list = default_providers()
        else:
            provider_list = tuple(providers)
        self.name = model
        LOGGER.info("Loading recognition model %s providers=%s", model, provider_list)

        if model.endswith(".onnx"):
            resolved = str(Path(model).expanduser())
            recognizer = get_model(resolved, providers=list(provider_list))
        else:
            # FaceAnalysis refuses to load without its detector
            analysis = FaceAnalysis(name=model, allowed_modules=["detection", "recognition"], providers=list(provider_list))
            analysis.prepare(ctx_id=0)
            recognizer = analysis.models.get("recognition")
        if recognizer is None:
            raise RuntimeError(f"Unable to load recognition model {model} via insightface")
        if hasattr(recognizer, "prepare"):
            recognizer.prepare(ctx_id=0)
        self.model = recognizer
        self.providers = provider_list
        self.backend = None
        try:
            session = getattr(recognizer, "session", None)
            if session is not None:
                self.backend = session.get_providers()[0]
        except Exception:  # pragma: no cover - provider introspection best-effort
            self.backend = None

    def embed(self, aligned_face: np.ndarray) -> np.ndarray:
        """Compute L2-normalized embedding for an aligned 112x112 RGB face."""
        # InsightFace recognition models swap channels internally and expect BGR
        feat = self.model.get_feat(cv2.cvtColor(aligned_face, cv2.COLOR_RGB2BGR))
        embedding = l2_normalize(np.asarray(feat, dtype=np.float32).reshape(-1))
        return embedding
