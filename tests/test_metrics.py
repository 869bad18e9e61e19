import numpy as np
import pytest

from faceverify.config import EngineConfig, HeadConfig
from faceverify.metrics.appearance import HistogramMetric, StructuralMetric, TextureMetric, chi_square, lbp_histogram
from faceverify.metrics.base import safe_compare
from faceverify.metrics.embedding import CosineMetric, EuclideanMetric, TripletMarginMetric, arcface_metric
from faceverify.metrics.landmarks import LandmarkMetric
from faceverify.metrics.registry import build_default_providers
from faceverify.types import METRIC_IDS, FaceCrop, MetricReading

LANDMARKS = np.array(
    [[38.0, 52.0], [74.0, 51.0], [56.0, 72.0], [42.0, 92.0], [71.0, 92.0]],
    dtype=np.float32,
)


def make_face(role="selfie", seed=0, landmarks=LANDMARKS, image=None):
    if image is None:
        rng = np.random.default_rng(seed)
        image = rng.integers(0, 256, size=(112, 112, 3), dtype=np.uint8)
    return FaceCrop(
        role=role,
        aligned=image,
        crop=image,
        bbox=(0.0, 0.0, 112.0, 112.0),
        det_score=0.99,
        landmarks=landmarks,
    )


class StubEmbedder:
    name = "stub"

    def __init__(self, vectors):
        self.vectors = vectors

    def embed(self, aligned_face):
        return np.asarray(self.vectors[int(aligned_face[0, 0, 0])], dtype=np.float32)


def flat_face(value, role="selfie"):
    image = np.full((112, 112, 3), value, dtype=np.uint8)
    return make_face(role=role, image=image)


@pytest.mark.parametrize("metric_cls", [HistogramMetric, StructuralMetric, TextureMetric])
def test_identical_crops_score_one(metric_cls):
    face = make_face()
    reading = metric_cls().compare(face, face)
    assert reading.available
    assert reading.score == pytest.approx(1.0)


@pytest.mark.parametrize("metric_cls", [HistogramMetric, StructuralMetric, TextureMetric])
def test_different_crops_score_lower(metric_cls):
    noisy = make_face(seed=1)
    smooth = flat_face(30, role="document")
    reading = metric_cls().compare(noisy, smooth)
    assert 0.0 <= reading.score < 0.95


def test_lbp_histogram_is_normalized():
    gray = np.random.default_rng(5).integers(0, 256, size=(112, 112)).astype(np.uint8)
    hist = lbp_histogram(gray)
    assert hist.sum() == pytest.approx(1.0)
    assert chi_square(hist, hist) == 0.0


def test_landmarks_ignore_scale_and_translation():
    moved = LANDMARKS * 2.5 + np.array([40.0, -10.0], dtype=np.float32)
    reading = LandmarkMetric().compare(make_face(), make_face(role="document", landmarks=moved))
    assert reading.score == pytest.approx(1.0)
    assert reading.raw == pytest.approx(0.0, abs=1e-6)


def test_landmark_distortion_lowers_score():
    distorted = LANDMARKS.copy()
    distorted[2] += np.array([12.0, 10.0], dtype=np.float32)
    reading = LandmarkMetric().compare(make_face(), make_face(role="document", landmarks=distorted))
    assert reading.score < 1.0


def test_missing_landmarks_make_metric_unavailable():
    reading = LandmarkMetric().compare(make_face(landmarks=None), make_face())
    assert not reading.available
    assert reading.score is None


def test_embedding_metrics_share_one_reference_model():
    embedder = StubEmbedder({10: [1.0, 0.0], 20: [0.6, 0.8]})
    selfie, document = flat_face(10), flat_face(20, role="document")
    cosine = CosineMetric(embedder).compare(selfie, document)
    assert cosine.raw == pytest.approx(0.4)
    assert cosine.score == pytest.approx(0.6)
    euclid = EuclideanMetric(embedder).compare(selfie, document)
    assert euclid.raw == pytest.approx(np.sqrt(0.8))
    triplet = TripletMarginMetric(embedder, HeadConfig(triplet_decay=1.0)).compare(selfie, document)
    assert triplet.score == pytest.approx(np.exp(-np.sqrt(0.8)))


def test_model_metric_reports_cosine_as_raw():
    embedder = StubEmbedder({10: [1.0, 0.0], 20: [1.0, 0.0]})
    reading = arcface_metric(embedder).compare(flat_face(10), flat_face(20, role="document"))
    assert reading.metric == "arcface"
    assert reading.raw == pytest.approx(1.0)
    assert reading.score > 0.99


def test_missing_model_reports_model_not_loaded():
    reading = CosineMetric(None).compare(make_face(), make_face())
    assert not reading.available
    assert reading.error == "model_not_loaded"


class ExplodingMetric:
    metric = "texture"

    def compare(self, selfie, document):
        raise ValueError("bad tensor")


class OutOfRangeMetric:
    metric = "histogram"

    def __init__(self, score):
        self.score = score

    def compare(self, selfie, document):
        return MetricReading(metric=self.metric, raw=self.score, score=self.score)


def test_safe_compare_contains_crashes():
    reading = safe_compare(ExplodingMetric(), make_face(), make_face())
    assert reading == MetricReading.unavailable("texture", "internal_provider_error")


def test_safe_compare_clips_and_rejects_bad_scores():
    assert safe_compare(OutOfRangeMetric(1.2), make_face(), make_face()).score == 1.0
    assert not safe_compare(OutOfRangeMetric(float("nan")), make_face(), make_face()).available


def test_registry_builds_all_ten_providers_with_missing_models():
    config = EngineConfig()
    embedders = {name: None for name in ("buffalo_l", "antelopev2", "buffalo_s")}
    providers = build_default_providers(config, embedders)
    assert [p.metric for p in providers] == list(METRIC_IDS)
    reading = providers[0].compare(make_face(), make_face())
    assert reading.error == "model_not_loaded"
