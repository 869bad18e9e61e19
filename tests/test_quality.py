import io

import cv2
import numpy as np
import pytest
from PIL import Image

from faceverify.config import QualityConfig
from faceverify.errors import ImageDecodeError, MultipleFacesDetected, NoFaceDetected
from faceverify.quality.assessor import QualityAssessor
from faceverify.quality.preprocess import preprocess_document, preprocess_selfie, remove_glare
from faceverify.types import Detection


class DummyDetector:
    def __init__(self, detections):
        self.detections = detections

    def detect(self, image):
        return list(self.detections)


def one_face(bbox=(20.0, 20.0, 180.0, 180.0)):
    return DummyDetector([Detection(bbox=bbox, score=0.98)])


def noisy_image(seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(200, 200, 3), dtype=np.uint8)


def test_sharp_well_exposed_face_scores_high():
    assessor = QualityAssessor(one_face(), QualityConfig(preprocess=False))
    report = assessor.assess(noisy_image(), "selfie")
    assert 0.8 < report.score <= 1.0
    assert report.face.aligned.shape == (112, 112, 3)
    assert report.face_px == pytest.approx(160.0)
    assert report.issues == []
    assert report.suggestions == []


def test_dark_flat_capture_reports_issues():
    image = np.full((200, 200, 3), 20, dtype=np.uint8)
    assessor = QualityAssessor(one_face(), QualityConfig(preprocess=False))
    report = assessor.assess(image, "document")
    assert report.score < 0.25
    assert "too_dark" in report.issues
    assert "blurry" in report.issues
    assert len(report.suggestions) == len(report.issues)


def test_small_face_is_flagged():
    assessor = QualityAssessor(one_face((90.0, 90.0, 120.0, 120.0)), QualityConfig(preprocess=False))
    report = assessor.assess(noisy_image(), "selfie")
    assert "face_too_small" in report.issues


def test_no_face_raises_with_role():
    assessor = QualityAssessor(DummyDetector([]), QualityConfig(preprocess=False))
    with pytest.raises(NoFaceDetected) as excinfo:
        assessor.assess(noisy_image(), "document")
    assert excinfo.value.role == "document"
    assert excinfo.value.reason == "no_face_detected"


def test_multiple_faces_raise():
    detections = [Detection(bbox=(0.0, 0.0, 90.0, 90.0), score=0.9), Detection(bbox=(100.0, 100.0, 190.0, 190.0), score=0.9)]
    assessor = QualityAssessor(DummyDetector(detections), QualityConfig(preprocess=False))
    with pytest.raises(MultipleFacesDetected):
        assessor.assess(noisy_image(), "selfie")


def test_undecodable_bytes_raise():
    assessor = QualityAssessor(one_face())
    with pytest.raises(ImageDecodeError):
        assessor.assess(b"definitely not a jpeg", "selfie")
    with pytest.raises(ImageDecodeError):
        assessor.assess(b"", "selfie")


def test_encoded_bytes_are_decoded_and_preprocessed():
    buffer = io.BytesIO()
    Image.fromarray(noisy_image(1)).save(buffer, format="PNG")
    assessor = QualityAssessor(one_face(), QualityConfig(preprocess=True))
    report = assessor.assess(buffer.getvalue(), "selfie")
    assert 0.0 <= report.score <= 1.0
    assert report.face.crop.ndim == 3


def test_selfie_preprocessing_keeps_geometry():
    image = noisy_image(2)
    processed = preprocess_selfie(image)
    assert processed.shape == image.shape
    assert processed.dtype == np.uint8


def test_document_preprocessing_upscales_small_captures():
    image = noisy_image(3)[:80, :100]
    processed = preprocess_document(image, upscale_factor=2.0)
    assert processed.shape == (160, 200, 3)


def test_glare_is_dimmed():
    image = np.full((10, 10, 3), 250, dtype=np.uint8)
    image[0, 0] = (250, 100, 100)
    out = remove_glare(image)
    assert out[5, 5].max() == 200
    assert tuple(out[0, 0]) == (250, 100, 100)


def blurred_image(sigma=15.0):
    return cv2.GaussianBlur(noisy_image(4), (0, 0), sigma)


def test_blurred_document_fails_the_quality_gate_after_preprocessing():
    config = QualityConfig(preprocess=True)
    assessor = QualityAssessor(one_face(), config)
    report = assessor.assess(blurred_image(), "document")
    assert "blurry" in report.issues
    assert report.sharpness < config.blurry_sharpness
    assert report.score < config.min_usable_quality
    assert not report.is_usable(config.min_usable_quality)


def test_document_upscale_keeps_face_geometry_for_sharpness():
    assessor = QualityAssessor(one_face((40.0, 40.0, 360.0, 360.0)), QualityConfig(preprocess=True))
    report = assessor.assess(noisy_image(5), "document")
    assert report.face_px == pytest.approx(320.0)
    assert report.sharpness > 0.3
    assert "blurry" not in report.issues
