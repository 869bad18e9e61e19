"""Pixel-level appearance metrics computed on the aligned 112x112 crops."""

from __future__ import annotations

import cv2
import numpy as np
from skimage.feature import local_binary_pattern
from skimage.metrics import structural_similarity

from faceverify.types import FaceCrop, MetricReading

HIST_BINS = 64
LBP_POINTS = 8
LBP_RADIUS = 1
LBP_GRID = 4


def _gray(face: FaceCrop) -> np.ndarray:
    return cv2.cvtColor(face.aligned, cv2.COLOR_RGB2GRAY)


class HistogramMetric:
    """Bhattacharyya coefficient between grey-level histograms."""

    metric = "histogram"

    def __init__(self, bins: int = HIST_BINS) -> None:
        self.bins = bins

    def compare(self, selfie: FaceCrop, document: FaceCrop) -> MetricReading:
        hist_a = cv2.calcHist([_gray(selfie)], [0], None, [self.bins], [0, 256])
        hist_b = cv2.calcHist([_gray(document)], [0], None, [self.bins], [0, 256])
        # OpenCV reports the Hellinger distance sqrt(1 - BC)
        distance = float(cv2.compareHist(hist_a, hist_b, cv2.HISTCMP_BHATTACHARYYA))
        coefficient = float(np.clip(1.0 - distance * distance, 0.0, 1.0))
        return MetricReading(metric=self.metric, raw=coefficient, score=coefficient)


class StructuralMetric:
    """SSIM of the aligned grey crops, shifted from [-1, 1] onto [0, 1]."""

    metric = "structural"

    def compare(self, selfie: FaceCrop, document: FaceCrop) -> MetricReading:
        ssim = float(structural_similarity(_gray(selfie), _gray(document), data_range=255))
        return MetricReading(metric=self.metric, raw=ssim, score=(ssim + 1.0) / 2.0)


def lbp_histogram(gray: np.ndarray, points: int = LBP_POINTS, radius: int = LBP_RADIUS, grid: int = LBP_GRID) -> np.ndarray:
    """Concatenated per-cell uniform LBP histograms, normalized to sum to 1."""
    codes = local_binary_pattern(gray, points, radius, method="uniform")
    n_bins = points + 2
    height, width = codes.shape
    cells = []
    for row in range(grid):
        for col in range(grid):
            cell = codes[
                row * height // grid : (row + 1) * height // grid,
                col * width // grid : (col + 1) * width // grid,
            ]
            hist, _ = np.histogram(cell, bins=n_bins, range=(0, n_bins))
            cells.append(hist.astype(np.float64))
    features = np.concatenate(cells)
    total = features.sum()
    if total > 0:
        features /= total
    return features


def chi_square(a: np.ndarray, b: np.ndarray) -> float:
    total = a + b
    mask = total > 0
    return float(np.sum((a[mask] - b[mask]) ** 2 / total[mask]))


class TextureMetric:
    """Chi-square distance between uniform-LBP texture descriptors."""

    metric = "texture"

    def compare(self, selfie: FaceCrop, document: FaceCrop) -> MetricReading:
        distance = chi_square(lbp_histogram(_gray(selfie)), lbp_histogram(_gray(document)))
        return MetricReading(metric=self.metric, raw=distance, score=float(np.exp(-distance / 2.0)))
