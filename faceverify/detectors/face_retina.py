"""RetinaFace detection and alignment utilities."""

from __future__ import annotations

import logging
import os
import platform
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from faceverify.types import BBox, Detection

LOGGER = logging.getLogger("faceverify.detectors.face")

# ArcFace five-point template for a 112x112 crop
ARCFACE_TEMPLATE = np.array(
    [
        [38.2946, 51.6963],
        [73.5318, 51.5014],
        [56.0252, 71.7366],
        [41.5493, 92.3655],
        [70.7299, 92.2041],
    ],
    dtype=np.float32,
)


def default_providers() -> Tuple[str, ...]:
    """Choose default ONNX providers for RetinaFace."""
    system = platform.system()
    machine = platform.machine().lower()
    if system == "Darwin" and machine in {"arm64", "aarch64"}:
        return ("CoreMLExecutionProvider", "CPUExecutionProvider")
    return ("CPUExecutionProvider",)


class RetinaFaceDetector:
    """Wrapper around InsightFace RetinaFace detector with alignment utilities."""

    def __init__(
        self,
        providers: Optional[Sequence[str]] = None,
        det_size: Tuple[int, int] = (640, 640),
        det_thresh: float = 0.5,
        model_pack: str = "buffalo_l",
    ) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        os.environ.setdefault("MKL_NUM_THREADS", "2")
        os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", "2")
        try:
            from insightface.app import FaceAnalysis
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "insightface is required for RetinaFaceDetector. "
                "Install it via `pip install insightface`."
            ) from exc

        self.det_size = tuple(det_size)
        self.det_thresh = det_thresh
        provider_list = default_providers() if providers is None else tuple(providers)
        self.providers = provider_list
        self.app = FaceAnalysis(name=model_pack, allowed_modules=["detection"], providers=list(provider_list))
        self.app.prepare(ctx_id=0, det_size=self.det_size)
        backend = None
        try:
            detection_model = self.app.models.get("detection")
            if detection_model is not None and hasattr(detection_model, "session"):
                backend = detection_model.session.get_providers()[0]
        except Exception:  # pragma: no cover - optional logging
            backend = None
        LOGGER.info(
            "Loaded RetinaFace detector pack=%s det_size=%s det_thresh=%.2f providers=%s backend=%s",
            model_pack,
            self.det_size,
            det_thresh,
            provider_list,
            backend,
        )

    def detect(self, image: np.ndarray) -> List[Detection]:
        """Run RetinaFace on an RGB image and return detections above threshold."""
        # InsightFace expects BGR input
        faces = self.app.get(cv2.cvtColor(image, cv2.COLOR_RGB2BGR))
        detections: List[Detection] = []
        for face in faces:
            score = float(face.det_score)
            if score < self.det_thresh:
                continue
            bbox = tuple(float(v) for v in face.bbox)
            landmarks = np.asarray(face.kps, dtype=np.float32) if face.kps is not None else None
            detections.append(Detection(bbox=bbox, score=score, landmarks=landmarks))  # type: ignore[arg-type]
        return detections

    @staticmethod
    def align_to_112(image: np.ndarray, landmarks: Optional[np.ndarray], bbox: BBox) -> np.ndarray:
        """Align face to 112x112 using landmarks if available, else simple crop+resize."""
        target_size = (112, 112)
        crop = crop_to_bbox(image, bbox)
        if landmarks is None or landmarks.shape != (5, 2):
            return resize_image(crop, target_size)

        trans = cv2.estimateAffinePartial2D(landmarks.astype(np.float32), ARCFACE_TEMPLATE, method=cv2.LMEDS)[0]
        if trans is None:
            return resize_image(crop, target_size)
        return cv2.warpAffine(image, trans, target_size, borderValue=0.0)


def crop_to_bbox(image: np.ndarray, bbox: BBox) -> np.ndarray:
    x1, y1, x2, y2 = [int(round(v)) for v in bbox]
    if x2 <= x1 or y2 <= y1:
        return image.copy()
    crop = image[max(0, y1) : max(0, y2), max(0, x1) : max(0, x2)]
    if crop.size == 0:
        return image.copy()
    return crop


def resize_image(image: np.ndarray, target_size: Tuple[int, int]) -> np.ndarray:
    width, height = [max(1, int(v)) for v in target_size]
    src_h, src_w = image.shape[:2]
    if src_h == height and src_w == width:
        return image.copy()
    return cv2.resize(image, (width, height), interpolation=cv2.INTER_LINEAR)
