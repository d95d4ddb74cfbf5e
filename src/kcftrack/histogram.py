"""
KCFTrack Colour Verification - HSV Histograms

A region's colour signature is an HSV histogram of NH * NS + NV bins
(110 with the default layout). Pixels with enough saturation and value
fill the hue x saturation bins, "colorless" pixels (gray, black, white)
fill the value-only bins.

Two normalized histograms are compared with the Bhattacharyya
coefficient: 1.0 for identical distributions, 0.0 for disjoint ones.
"""

import logging
from typing import Optional

import numpy as np
import cv2

from .config import HistogramBins
from .geometry import Rect, subwindow

logger = logging.getLogger(__name__)


def region_to_hsv(frame: np.ndarray, region: Rect) -> Optional[np.ndarray]:
    """
    Crop region (replicate-padded) and convert it to float HSV.

    Returns:
        (H, W, 3) float32 array with hue in degrees [0, 360) and
        saturation/value in [0, 1], or None for an empty crop
    """
    if frame is None or frame.size == 0:
        return None
    x, y, w, h = region.as_int()
    if w <= 0 or h <= 0:
        return None

    crop = subwindow(frame, (x, y, w, h))
    if crop.ndim == 2 or crop.shape[2] == 1:
        crop = cv2.cvtColor(crop, cv2.COLOR_GRAY2BGR)
    bgr = crop.astype(np.float32) / 255.0
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV)


def histogram_bins(hsv: np.ndarray, bins: HistogramBins) -> np.ndarray:
    """Bin index of every pixel of a float HSV image."""
    h = hsv[..., 0].ravel()
    s = hsv[..., 1].ravel()
    v = hsv[..., 2].ravel()

    vd = np.minimum((v * bins.value_bins / bins.value_max).astype(np.int64), bins.value_bins - 1)
    hd = np.minimum((h * bins.hue_bins / bins.hue_max).astype(np.int64), bins.hue_bins - 1)
    sd = np.minimum((s * bins.saturation_bins / bins.saturation_max).astype(np.int64),
                    bins.saturation_bins - 1)

    colorless = (s < bins.saturation_threshold) | (v < bins.value_threshold)
    colorful_bin = sd * bins.hue_bins + hd
    colorless_bin = bins.hue_bins * bins.saturation_bins + vd
    return np.where(colorless, colorless_bin, colorful_bin)


def compute_histogram(frame: np.ndarray, region: Rect,
                      bins: HistogramBins = HistogramBins()) -> Optional[np.ndarray]:
    """Un-normalized HSV histogram of a region, None if the crop is empty."""
    hsv = region_to_hsv(frame, region)
    if hsv is None:
        return None
    idx = histogram_bins(hsv, bins)
    return np.bincount(idx, minlength=bins.size).astype(np.float32)


def normalize_histogram(hist: np.ndarray) -> np.ndarray:
    """Divide every bin by the total count (an all-zero histogram stays zero)."""
    hist = np.asarray(hist, dtype=np.float32)
    total = float(hist.sum())
    if total <= 0.0:
        return np.zeros_like(hist)
    return hist / total


def histogram_similarity(h1: np.ndarray, h2: np.ndarray) -> float:
    """
    Bhattacharyya coefficient sum(sqrt(h1[i] * h2[i])) of two normalized
    histograms. Higher is more similar.
    """
    if len(h1) != len(h2):
        raise ValueError(f"Histogram length mismatch: {len(h1)} != {len(h2)}")
    return float(np.sum(np.sqrt(np.asarray(h1, np.float64) * np.asarray(h2, np.float64))))


class ColorVerifier:
    """
    Fixed colour reference of a target.

    Captured ONCE at init, never updated: every later candidate is compared
    against the appearance the target had when it was selected.
    """

    def __init__(self, bins: HistogramBins = HistogramBins()):
        self.bins = bins
        self.reference: Optional[np.ndarray] = None

    def capture(self, frame: np.ndarray, region: Rect) -> bool:
        hist = compute_histogram(frame, region, self.bins)
        if hist is None or hist.sum() <= 0:
            return False
        self.reference = normalize_histogram(hist)
        return True

    def similarity_at(self, frame: np.ndarray, region: Rect) -> float:
        """Coefficient between the reference and the histogram at region (0.0 if unavailable)."""
        if self.reference is None:
            return 0.0
        hist = compute_histogram(frame, region, self.bins)
        if hist is None:
            return 0.0
        return histogram_similarity(self.reference, normalize_histogram(hist))

    @property
    def is_initialized(self) -> bool:
        return self.reference is not None
