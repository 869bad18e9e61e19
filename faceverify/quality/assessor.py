"""Face quality assessment for selfie and document captures."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import cv2
import numpy as np

from faceverify.config import QualityConfig
from faceverify.detectors.face_retina import RetinaFaceDetector, crop_to_bbox
from faceverify.errors import MultipleFacesDetected, NoFaceDetected
from faceverify.io_utils import decode_image
from faceverify.quality.preprocess import preprocess_document, preprocess_selfie
from faceverify.types import DOCUMENT, Detection, FaceCrop, ImageSource

LOGGER = logging.getLogger("faceverify.quality")

SUGGESTIONS = {
    "too_dark": "Move to a brighter place or turn on a light in front of you.",
    "too_bright": "Avoid direct sunlight or strong light behind the camera.",
    "uneven_lighting": "Face the light source so both sides of the face are lit evenly.",
    "blurry": "Hold the camera steady and make sure the lens is clean.",
    "face_too_small": "Move closer so the face fills more of the frame.",
}

# Grey levels treated as shadow / highlight when checking lighting evenness
SHADOW_LEVEL = 50
HIGHLIGHT_LEVEL = 205


class FaceDetector(Protocol):
    def detect(self, image: np.ndarray) -> List[Detection]:
        ...


@dataclass
class QualityReport:
    role: str
    score: float
    sharpness: float
    brightness: float
    contrast: float
    face_px: float
    face: FaceCrop
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def is_usable(self, min_quality: float) -> bool:
        return self.score >= min_quality


class QualityAssessor:
    """Decode, detect exactly one face and score how usable the capture is.

    The assessor holds no per-request state; the same instance serves
    concurrent requests.
    """

    def __init__(self, detector: FaceDetector, config: Optional[QualityConfig] = None) -> None:
        self.detector = detector
        self.config = config or QualityConfig()

    def assess(self, image: ImageSource, role: str) -> QualityReport:
        raw = decode_image(image, role=role)
        rgb = raw
        if self.config.preprocess:
            if role == DOCUMENT:
                rgb = preprocess_document(raw, upscale_factor=self.config.document_upscale)
            else:
                rgb = preprocess_selfie(raw)

        face = self.prepare_face(rgb, role)
        # Sharpening and upscaling hide blur, so sharpness is read from the decoded capture
        sharpness = self._compute_sharpness(_align_on_source(raw, rgb, face))
        gray = cv2.cvtColor(face.crop, cv2.COLOR_RGB2GRAY)
        brightness = float(gray.mean()) / 255.0
        contrast = float(min(float(gray.std()) / 80.0, 1.0))
        score = self._score_quality(sharpness, brightness, contrast, face.face_px)

        issues = self._collect_issues(gray, sharpness, brightness, face.face_px)
        report = QualityReport(
            role=role,
            score=score,
            sharpness=sharpness,
            brightness=brightness,
            contrast=contrast,
            face_px=face.face_px,
            face=face,
            issues=issues,
            suggestions=[SUGGESTIONS[issue] for issue in issues],
        )
        LOGGER.debug(
            "Quality %s score=%.3f sharp=%.3f bright=%.3f contrast=%.3f face_px=%.0f issues=%s",
            role,
            score,
            sharpness,
            brightness,
            contrast,
            face.face_px,
            issues,
        )
        return report

    def prepare_face(self, rgb: np.ndarray, role: str) -> FaceCrop:
        detections = self.detector.detect(rgb)
        if not detections:
            raise NoFaceDetected("No face found in image", role=role)
        if len(detections) > 1:
            raise MultipleFacesDetected(f"Found {len(detections)} faces, expected exactly one", role=role)
        det = detections[0]
        aligned = RetinaFaceDetector.align_to_112(rgb, det.landmarks, det.bbox)
        return FaceCrop(
            role=role,
            aligned=aligned,
            crop=crop_to_bbox(rgb, det.bbox),
            bbox=det.bbox,
            det_score=det.score,
            landmarks=det.landmarks,
        )

    def _compute_sharpness(self, aligned: np.ndarray) -> float:
        gray = cv2.cvtColor(aligned, cv2.COLOR_RGB2GRAY)
        variance = float(cv2.Laplacian(gray, cv2.CV_64F).var())
        scale = max(self.config.sharpness_scale, 1e-6)
        return float(np.clip(variance / scale, 0.0, 1.0))

    def _score_quality(self, sharpness: float, brightness: float, contrast: float, face_px: float) -> float:
        w_sharp, w_exposure, w_contrast, w_size = self.config.weights
        exposure = 1.0 - 2.0 * abs(brightness - 0.5)
        size_score = min(face_px / max(self.config.target_face_px, 1e-6), 1.0)
        total = w_sharp + w_exposure + w_contrast + w_size
        quality = (w_sharp * sharpness) + (w_exposure * exposure) + (w_contrast * contrast) + (w_size * size_score)
        if total > 0:
            quality /= total
        if sharpness < self.config.blurry_sharpness:
            # a blurry capture is never better than its sharpness
            quality = min(quality, sharpness)
        return float(np.clip(quality, 0.0, 1.0))

    def _collect_issues(self, gray: np.ndarray, sharpness: float, brightness: float, face_px: float) -> List[str]:
        cfg = self.config
        issues: List[str] = []
        if brightness < cfg.dark_brightness:
            issues.append("too_dark")
        elif brightness > cfg.bright_brightness:
            issues.append("too_bright")
        dark_ratio = float((gray < SHADOW_LEVEL).mean())
        bright_ratio = float((gray > HIGHLIGHT_LEVEL).mean())
        if "too_dark" not in issues and "too_bright" not in issues:
            if dark_ratio > cfg.uneven_ratio or bright_ratio > cfg.uneven_ratio:
                issues.append("uneven_lighting")
        if sharpness < cfg.blurry_sharpness:
            issues.append("blurry")
        if face_px < cfg.min_face_px:
            issues.append("face_too_small")
        return issues


def _align_on_source(source: np.ndarray, processed: np.ndarray, face: FaceCrop) -> np.ndarray:
    """Align the detected face on the unprocessed image, rescaling geometry if it was resized."""
    if source.shape[:2] == processed.shape[:2]:
        if source is processed:
            return face.aligned
        return RetinaFaceDetector.align_to_112(source, face.landmarks, face.bbox)
    sy = source.shape[0] / processed.shape[0]
    sx = source.shape[1] / processed.shape[1]
    x1, y1, x2, y2 = face.bbox
    bbox = (x1 * sx, y1 * sy, x2 * sx, y2 * sy)
    landmarks = None
    if face.landmarks is not None:
        landmarks = np.asarray(face.landmarks, dtype=np.float32) * np.array([sx, sy], dtype=np.float32)
    return RetinaFaceDetector.align_to_112(source, landmarks, bbox)
