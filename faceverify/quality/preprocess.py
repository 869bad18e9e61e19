"""Photometric preprocessing applied before detection.

Selfies get a light touch (CLAHE, illumination and contrast). Document photos
are usually shot through plastic under room light, so they additionally get
glare suppression, edge-preserving denoise, sharpening and an upscale of the
small printed portrait.
"""

from __future__ import annotations

import logging
from typing import Tuple

import cv2
import numpy as np

LOGGER = logging.getLogger("faceverify.quality.preprocess")

TARGET_BRIGHTNESS = 130.0
ILLUMINATION_FACTOR_RANGE: Tuple[float, float] = (0.6, 1.8)


def apply_clahe(image: np.ndarray, clip_limit: float = 2.0, tile_size: int = 8) -> np.ndarray:
    """Equalize the luminance channel with CLAHE, leaving chroma untouched."""
    lab = cv2.cvtColor(image, cv2.COLOR_RGB2LAB)
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_size, tile_size))
    lab[:, :, 0] = clahe.apply(lab[:, :, 0])
    return cv2.cvtColor(lab, cv2.COLOR_LAB2RGB)


def normalize_illumination(image: np.ndarray, target: float = TARGET_BRIGHTNESS) -> np.ndarray:
    gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    mean = float(gray.mean())
    if mean <= 0:
        return image.copy()
    low, high = ILLUMINATION_FACTOR_RANGE
    factor = float(np.clip(target / mean, low, high))
    return cv2.convertScaleAbs(image, alpha=factor, beta=0.0)


def enhance_contrast(image: np.ndarray, factor: float) -> np.ndarray:
    """Stretch pixel values around mid-grey by ``factor``."""
    scaled = (image.astype(np.float32) - 128.0) * factor + 128.0
    return np.clip(scaled, 0, 255).astype(np.uint8)


def remove_glare(image: np.ndarray, brightness: int = 230, max_saturation: int = 30, target: float = 200.0) -> np.ndarray:
    """Dim bright, desaturated pixels (specular highlights on laminated cards)."""
    pixels = image.astype(np.float32)
    high = pixels.max(axis=2)
    low = pixels.min(axis=2)
    mask = (high > brightness) & ((high - low) < max_saturation)
    if not mask.any():
        return image.copy()
    factor = np.ones_like(high)
    factor[mask] = target / high[mask]
    out = pixels * factor[:, :, None]
    LOGGER.debug("Glare suppression touched %.1f%% of pixels", 100.0 * float(mask.mean()))
    return np.clip(out, 0, 255).astype(np.uint8)


def bilateral_denoise(image: np.ndarray, diameter: int = 5, sigma_color: float = 25.0, sigma_space: float = 2.0) -> np.ndarray:
    return cv2.bilateralFilter(image, diameter, sigma_color, sigma_space)


def sharpen(image: np.ndarray, amount: float = 0.3) -> np.ndarray:
    kernel = np.array(
        [[0.0, -amount, 0.0], [-amount, 1.0 + 4.0 * amount, -amount], [0.0, -amount, 0.0]],
        dtype=np.float32,
    )
    return cv2.filter2D(image, -1, kernel)


def upscale(image: np.ndarray, factor: float) -> np.ndarray:
    if factor <= 1.0:
        return image
    height, width = image.shape[:2]
    size = (int(round(width * factor)), int(round(height * factor)))
    return cv2.resize(image, size, interpolation=cv2.INTER_CUBIC)


def preprocess_selfie(image: np.ndarray) -> np.ndarray:
    processed = apply_clahe(image, clip_limit=2.0)
    processed = normalize_illumination(processed)
    return enhance_contrast(processed, 1.15)


def preprocess_document(image: np.ndarray, upscale_factor: float = 2.0, max_side: int = 1600) -> np.ndarray:
    processed = remove_glare(image)
    processed = bilateral_denoise(processed)
    processed = apply_clahe(processed, clip_limit=2.5)
    processed = normalize_illumination(processed)
    processed = enhance_contrast(processed, 1.3)
    processed = sharpen(processed, 0.3)
    # Only enlarge small captures; large scans already carry enough face pixels
    longest = max(processed.shape[:2])
    factor = min(upscale_factor, max_side / float(max(longest, 1)))
    return upscale(processed, factor)
