"""Map raw embedding geometry onto [0, 1] match scores.

The margin heads replay the ArcFace, CosFace and SphereFace training logits at
inference time: the margin is applied to the angle between the two embeddings
and the scaled logit is squashed with a sigmoid. The ``/ 10`` temperature keeps
the sigmoid out of saturation for typical scales of 64.
"""

from __future__ import annotations

import math

import numpy as np

LOGIT_TEMPERATURE = 10.0


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def cosine_similarity(a: np.ndarray, b: np.ndarray, eps: float = 1e-8) -> float:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom < eps:
        return 0.0
    cos = float(np.dot(a, b) / denom)
    return float(np.clip(cos, -1.0, 1.0))


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))


def arcface_score(cos: float, scale: float = 64.0, margin: float = 0.5) -> float:
    """Additive angular margin: sigmoid(s * cos(theta + m) / T)."""
    theta = math.acos(max(-1.0, min(1.0, cos)))
    logit = scale * math.cos(min(theta + margin, math.pi))
    return _sigmoid(logit / LOGIT_TEMPERATURE)


def cosface_score(cos: float, scale: float = 64.0, margin: float = 0.35) -> float:
    """Additive cosine margin: sigmoid(s * (cos(theta) - m) / T)."""
    logit = scale * (max(-1.0, min(1.0, cos)) - margin)
    return _sigmoid(logit / LOGIT_TEMPERATURE)


def sphereface_score(cos: float, scale: float = 64.0, margin: float = 1.35) -> float:
    """Multiplicative angular margin: sigmoid(s * cos(m * theta) / T)."""
    theta = math.acos(max(-1.0, min(1.0, cos)))
    logit = scale * math.cos(min(margin * theta, math.pi))
    return _sigmoid(logit / LOGIT_TEMPERATURE)


def cosine_score(cos: float) -> float:
    return max(0.0, min(1.0, cos))


def euclidean_score(distance: float, midpoint: float = 1.10, steepness: float = 8.0) -> float:
    """Logistic falloff centred on ``midpoint``."""
    return _sigmoid(-steepness * (distance - midpoint))


def triplet_score(distance: float, decay: float = 1.0) -> float:
    return float(math.exp(-decay * max(distance, 0.0)))

