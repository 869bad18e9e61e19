"""Wire the ten metric providers from an engine configuration."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from faceverify.config import EngineConfig, metric_names
from faceverify.metrics.appearance import HistogramMetric, StructuralMetric, TextureMetric
from faceverify.metrics.base import MetricProvider
from faceverify.metrics.embedding import (
    CosineMetric,
    EuclideanMetric,
    TripletMarginMetric,
    arcface_metric,
    cosface_metric,
    sphereface_metric,
)
from faceverify.metrics.landmarks import LandmarkMetric
from faceverify.recognition.embed_insightface import Embedder, InsightFaceEmbedder

LOGGER = logging.getLogger("faceverify.metrics.registry")

EmbedderFactory = Callable[[str], Embedder]


def load_embedders(config: EngineConfig, factory: Optional[EmbedderFactory] = None) -> Dict[str, Optional[Embedder]]:
    """Load each distinct recognition model once.

    A model that fails to load maps to ``None``; its metrics then report
    ``model_not_loaded`` on every request instead of failing the process.
    """
    providers = config.models.providers
    if factory is None:
        factory = lambda name: InsightFaceEmbedder(name, providers=providers)  # noqa: E731
    models = config.models
    names = {models.arcface, models.cosface, models.sphereface, models.reference}
    embedders: Dict[str, Optional[Embedder]] = {}
    for name in sorted(names):
        try:
            embedders[name] = factory(name)
        except Exception:
            LOGGER.error("Unable to load recognition model %s", name, exc_info=True)
            embedders[name] = None
    return embedders


def build_default_providers(
    config: EngineConfig,
    embedders: Optional[Dict[str, Optional[Embedder]]] = None,
) -> List[MetricProvider]:
    if embedders is None:
        embedders = load_embedders(config)
    models = config.models
    heads = config.heads
    reference = embedders.get(models.reference)
    available: Dict[str, MetricProvider] = {
        "arcface": arcface_metric(embedders.get(models.arcface), heads),
        "cosface": cosface_metric(embedders.get(models.cosface), heads),
        "sphereface": sphereface_metric(embedders.get(models.sphereface), heads),
        "cosine": CosineMetric(reference, heads),
        "euclidean": EuclideanMetric(reference, heads),
        "histogram": HistogramMetric(),
        "landmark": LandmarkMetric(gain=heads.landmark_gain),
        "structural": StructuralMetric(),
        "texture": TextureMetric(),
        "triplet": TripletMarginMetric(reference, heads),
    }
    selected = [available[name] for name in metric_names(config)]
    LOGGER.info("Built %d metric providers: %s", len(selected), [p.metric for p in selected])
    return selected
