"""Metrics derived from recognition-model embeddings."""

from __future__ import annotations

from typing import Callable, Optional, Tuple

import numpy as np

from faceverify.config import HeadConfig
from faceverify.metrics.base import ERROR_MODEL_NOT_LOADED
from faceverify.recognition import heads
from faceverify.recognition.embed_insightface import Embedder
from faceverify.types import FaceCrop, MetricReading


class _EmbeddingPairMetric:
    metric = ""

    def __init__(self, embedder: Optional[Embedder], head_config: Optional[HeadConfig] = None) -> None:
        self.embedder = embedder
        self.heads = head_config or HeadConfig()

    def compare(self, selfie: FaceCrop, document: FaceCrop) -> MetricReading:
        if self.embedder is None:
            return MetricReading.unavailable(self.metric, ERROR_MODEL_NOT_LOADED)
        raw, score = self._score(self.embedder.embed(selfie.aligned), self.embedder.embed(document.aligned))
        return MetricReading(metric=self.metric, raw=raw, score=score)

    def _score(self, a: np.ndarray, b: np.ndarray) -> Tuple[float, float]:
        raise NotImplementedError


class EmbeddingModelMetric(_EmbeddingPairMetric):
    """One independent recognition model scored through its margin head.

    ``raw`` is the cosine similarity of the two embeddings.
    """

    def __init__(
        self,
        metric: str,
        embedder: Optional[Embedder],
        head: Callable[[float], float],
        head_config: Optional[HeadConfig] = None,
    ) -> None:
        super().__init__(embedder, head_config)
        self.metric = metric
        self.head = head

    def _score(self, a: np.ndarray, b: np.ndarray) -> Tuple[float, float]:
        cos = heads.cosine_similarity(a, b)
        return cos, self.head(cos)


def arcface_metric(embedder: Optional[Embedder], head_config: Optional[HeadConfig] = None) -> EmbeddingModelMetric:
    cfg = head_config or HeadConfig()
    return EmbeddingModelMetric(
        "arcface",
        embedder,
        lambda cos: heads.arcface_score(cos, scale=cfg.scale, margin=cfg.arcface_margin),
        cfg,
    )


def cosface_metric(embedder: Optional[Embedder], head_config: Optional[HeadConfig] = None) -> EmbeddingModelMetric:
    cfg = head_config or HeadConfig()
    return EmbeddingModelMetric(
        "cosface",
        embedder,
        lambda cos: heads.cosface_score(cos, scale=cfg.scale, margin=cfg.cosface_margin),
        cfg,
    )


def sphereface_metric(embedder: Optional[Embedder], head_config: Optional[HeadConfig] = None) -> EmbeddingModelMetric:
    cfg = head_config or HeadConfig()
    return EmbeddingModelMetric(
        "sphereface",
        embedder,
        lambda cos: heads.sphereface_score(cos, scale=cfg.scale, margin=cfg.sphereface_margin),
        cfg,
    )


class CosineMetric(_EmbeddingPairMetric):
    """Reference-model cosine; ``raw`` is the cosine distance ``1 - cos``."""

    metric = "cosine"

    def _score(self, a: np.ndarray, b: np.ndarray) -> Tuple[float, float]:
        cos = heads.cosine_similarity(a, b)
        return 1.0 - cos, heads.cosine_score(cos)


class EuclideanMetric(_EmbeddingPairMetric):
    metric = "euclidean"

    def _score(self, a: np.ndarray, b: np.ndarray) -> Tuple[float, float]:
        distance = heads.euclidean_distance(a, b)
        score = heads.euclidean_score(
            distance,
            midpoint=self.heads.euclidean_midpoint,
            steepness=self.heads.euclidean_steepness,
        )
        return distance, score


class TripletMarginMetric(_EmbeddingPairMetric):
    metric = "triplet"

    def _score(self, a: np.ndarray, b: np.ndarray) -> Tuple[float, float]:
        distance = heads.euclidean_distance(a, b)
        return distance, heads.triplet_score(distance, decay=self.heads.triplet_decay)
