"""
KCFTrack Feature Extraction

Turns an image region into the dense descriptor the correlation filter
works on. Output is always (rows, cols, channels) float32, windowed by a
separable Hanning taper so the patch looks periodic to the FFT.

Feature modes:
- RAW: gray intensity in [0, 1] minus 0.5, one value per pixel
- HOG: FHOG-style gradient-orientation histograms, 31 values per cell
  (18 contrast-sensitive + 9 contrast-insensitive + 4 texture energies)
- HOG + LAB: 15 extra colour-cluster occupancy channels per cell
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import cv2

from .config import TrackerOptions, LAB_CENTROIDS, MAX_EXTRACT_SIZE
from .geometry import Rect, subwindow, centered_window

logger = logging.getLogger(__name__)

NUM_ORIENTATIONS = 18
HOG_CHANNELS = 31
HOG_TRUNCATION = 0.2
# Gray patches are float32 in [0, 1]; a constant one still has a std of ~6e-8
FLAT_PATCH_STD = 1e-6


def to_gray(image: np.ndarray) -> np.ndarray:
    """Grayscale float32 image in [0, 1]."""
    if image.ndim == 3 and image.shape[2] == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    elif image.ndim == 3:
        image = image[:, :, 0]
    return image.astype(np.float32) / 255.0


def hanning_window(rows: int, cols: int) -> np.ndarray:
    """Separable raised-cosine taper of shape (rows, cols)."""
    return np.outer(np.hanning(rows), np.hanning(cols)).astype(np.float32)


# ---------------------------------------------------------------------------
# Gradient histograms (FHOG-style)
# ---------------------------------------------------------------------------

def _gradients(image: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Centered-difference gradients, from the strongest channel of colour images."""
    img = image.astype(np.float32)
    kernel = np.array([[-1.0, 0.0, 1.0]], dtype=np.float32)
    dx = cv2.filter2D(img, cv2.CV_32F, kernel)
    dy = cv2.filter2D(img, cv2.CV_32F, kernel.T)

    if dx.ndim == 3:
        strongest = np.argmax(dx * dx + dy * dy, axis=2)[..., None]
        dx = np.take_along_axis(dx, strongest, axis=2)[..., 0]
        dy = np.take_along_axis(dy, strongest, axis=2)[..., 0]

    magnitude = np.sqrt(dx * dx + dy * dy)
    return dx, dy, magnitude


def orientation_histograms(image: np.ndarray, cell_size: int) -> np.ndarray:
    """
    Per-cell histograms of 18 signed gradient orientations, weighted by
    gradient magnitude.

    Returns:
        (H // cell_size, W // cell_size, 18) float32
    """
    dx, dy, magnitude = _gradients(image)
    rows, cols = magnitude.shape[0] // cell_size, magnitude.shape[1] // cell_size
    dx = dx[:rows * cell_size, :cols * cell_size]
    dy = dy[:rows * cell_size, :cols * cell_size]
    magnitude = magnitude[:rows * cell_size, :cols * cell_size]

    angle = np.mod(np.arctan2(dy, dx), 2 * np.pi)
    bins = np.rint(angle / (2 * np.pi / NUM_ORIENTATIONS)).astype(np.int64) % NUM_ORIENTATIONS

    cell_r = np.arange(rows * cell_size) // cell_size
    cell_c = np.arange(cols * cell_size) // cell_size
    cell_idx = cell_r[:, None] * cols + cell_c[None, :]

    flat = (cell_idx * NUM_ORIENTATIONS + bins).ravel()
    hist = np.bincount(flat, weights=magnitude.ravel(), minlength=rows * cols * NUM_ORIENTATIONS)
    return hist.reshape(rows, cols, NUM_ORIENTATIONS).astype(np.float32)


def normalize_and_truncate(hist: np.ndarray, alpha: float = HOG_TRUNCATION) -> np.ndarray:
    """
    Block-normalize every interior cell against its four 2x2 neighbourhoods
    and truncate at alpha. Border cells are dropped.

    Returns:
        (rows - 2, cols - 2, 4, 27): per normalization, 18 signed then
        9 unsigned orientations
    """
    unsigned = hist[..., :9] + hist[..., 9:]
    energy = np.sum(unsigned * unsigned, axis=2)

    blocks = energy[:-1, :-1] + energy[1:, :-1] + energy[:-1, 1:] + energy[1:, 1:]
    eps = np.finfo(np.float32).eps
    norms = np.stack([
        1.0 / np.sqrt(blocks[:-1, :-1] + eps),
        1.0 / np.sqrt(blocks[:-1, 1:] + eps),
        1.0 / np.sqrt(blocks[1:, :-1] + eps),
        1.0 / np.sqrt(blocks[1:, 1:] + eps),
    ], axis=2)

    interior = np.concatenate([hist, unsigned], axis=2)[1:-1, 1:-1]
    normalized = interior[:, :, None, :] * norms[..., None]
    return np.minimum(normalized, alpha).astype(np.float32)


def project_features(normalized: np.ndarray) -> np.ndarray:
    """Reduce the 4 x 27 normalized values of each cell to 31 channels."""
    sensitive = 0.5 * normalized[..., :NUM_ORIENTATIONS].sum(axis=2)
    insensitive = 0.5 * normalized[..., NUM_ORIENTATIONS:].sum(axis=2)
    texture = 0.2357 * normalized[..., :NUM_ORIENTATIONS].sum(axis=3)
    return np.concatenate([sensitive, insensitive, texture], axis=2).astype(np.float32)


def hog_features(image: np.ndarray, cell_size: int) -> np.ndarray:
    """(H / cell - 2, W / cell - 2, 31) gradient-histogram descriptor."""
    hist = orientation_histograms(image, cell_size)
    return project_features(normalize_and_truncate(hist))


def color_cluster_features(image: np.ndarray, cell_size: int,
                           centroids: np.ndarray = LAB_CENTROIDS) -> np.ndarray:
    """
    Soft occupancy of each colour centroid per interior cell.

    Every pixel is assigned to its nearest Lab centroid and adds
    1 / cell_size**2 to that centroid's channel in its cell.

    Returns:
        (H / cell - 2, W / cell - 2, len(centroids)) float32
    """
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    lab = cv2.cvtColor(image, cv2.COLOR_BGR2Lab).astype(np.float32)

    rows = lab.shape[0] // cell_size - 2
    cols = lab.shape[1] // cell_size - 2
    interior = lab[cell_size:(rows + 1) * cell_size, cell_size:(cols + 1) * cell_size]

    diff = interior[:, :, None, :] - centroids[None, None, :, :]
    nearest = np.argmin(np.sum(diff * diff, axis=3), axis=2)

    n_clusters = len(centroids)
    cell_r = np.arange(rows * cell_size) // cell_size
    cell_c = np.arange(cols * cell_size) // cell_size
    cell_idx = cell_r[:, None] * cols + cell_c[None, :]
    flat = (cell_idx * n_clusters + nearest).ravel()

    counts = np.bincount(flat, minlength=rows * cols * n_clusters).astype(np.float32)
    return counts.reshape(rows, cols, n_clusters) / float(cell_size * cell_size)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TemplateGeometry:
    """Canonical patch a target is resampled to, fixed at init."""
    width: int
    height: int
    scale: float                       # initial size-normalization factor
    shape: Tuple[int, int, int]        # feature tensor (rows, cols, channels)


def template_geometry(region: Rect, options: TrackerOptions, n_clusters: int = 0) -> TemplateGeometry:
    """Template size and feature shape for a target of this size."""
    padded_w = int(region.width * options.padding)
    padded_h = int(region.height * options.padding)

    if options.template_size > 1:
        # fit the largest dimension to the template size
        if padded_w >= padded_h:
            scale = padded_w / float(options.template_size)
        else:
            scale = padded_h / float(options.template_size)
        tmpl_w = int(padded_w / scale + 1e-4)
        tmpl_h = int(padded_h / scale + 1e-4)
    else:
        tmpl_w, tmpl_h = padded_w, padded_h
        scale = 1.0

    cell = options.cell_size
    if options.hog:
        # round to cell size and keep it even
        tmpl_w = (tmpl_w // (2 * cell)) * 2 * cell + cell * 2
        tmpl_h = (tmpl_h // (2 * cell)) * 2 * cell + cell * 2
        channels = HOG_CHANNELS + (n_clusters if options.lab else 0)
        shape = (tmpl_h // cell - 2, tmpl_w // cell - 2, channels)
    else:
        tmpl_w = (tmpl_w // 2) * 2
        tmpl_h = (tmpl_h // 2) * 2
        shape = (tmpl_h, tmpl_w, 1)

    return TemplateGeometry(width=tmpl_w, height=tmpl_h, scale=scale, shape=shape)


class FeatureExtractor:
    """
    Feature extractor bound to one target.

    `configure()` is called ONCE with the initial region; the template
    size, feature shape and Hanning window are cached from then on.
    """

    def __init__(self, options: TrackerOptions, centroids: np.ndarray = LAB_CENTROIDS):
        self.options = options
        self.centroids = centroids
        self.geometry: TemplateGeometry = None
        self._hann: np.ndarray = None

    def configure(self, region: Rect) -> TemplateGeometry:
        self.geometry = template_geometry(region, self.options, len(self.centroids))
        rows, cols, _ = self.geometry.shape
        self._hann = hanning_window(rows, cols)[..., None]
        return self.geometry

    @property
    def template_size(self) -> Tuple[int, int]:
        return self.geometry.width, self.geometry.height

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.geometry.shape

    def _resample(self, frame: np.ndarray, window: Tuple[int, int, int, int]) -> np.ndarray:
        patch = subwindow(frame, window)
        size = self.template_size
        if patch.shape[1] != size[0] or patch.shape[0] != size[1]:
            patch = cv2.resize(patch, size)
        return patch

    def extract(self, frame: np.ndarray, region: Rect, scale: float,
                scale_adjust: float = 1.0) -> np.ndarray:
        """
        Features of the window `scale_adjust * scale * template_size`
        centered on the region's center.
        """
        cx, cy = region.center
        tmpl_w, tmpl_h = self.template_size
        width = min(int(scale_adjust * scale * tmpl_w), MAX_EXTRACT_SIZE)
        height = min(int(scale_adjust * scale * tmpl_h), MAX_EXTRACT_SIZE)
        patch = self._resample(frame, centered_window(cx, cy, width, height))

        if self.options.hog:
            features = hog_features(patch, self.options.cell_size)
            if self.options.lab:
                clusters = color_cluster_features(patch, self.options.cell_size, self.centroids)
                features = np.concatenate([features, clusters], axis=2)
        else:
            features = (to_gray(patch) - 0.5)[..., None]

        return features * self._hann

    def gray_patch(self, frame: np.ndarray, region: Rect) -> np.ndarray:
        """Region resampled to the template size, gray in [0, 1], unwindowed."""
        x, y, w, h = region.as_int()
        return to_gray(self._resample(frame, (x, y, max(1, w), max(1, h))))


def _is_flat(patch: np.ndarray) -> bool:
    return float(np.asarray(patch, dtype=np.float64).std()) < FLAT_PATCH_STD


def template_similarity(reference: np.ndarray, patch: np.ndarray) -> float:
    """
    Normalized cross-correlation of two equally sized gray patches,
    mapped from [-1, 1] to [0, 1]. A flat patch correlates as 0 (0.5).
    """
    if reference.shape != patch.shape:
        raise ValueError(f"Patch shape mismatch: {reference.shape} != {patch.shape}")
    if _is_flat(reference) or _is_flat(patch):
        ncc = 0.0
    else:
        res = cv2.matchTemplate(patch.astype(np.float32), reference.astype(np.float32),
                                cv2.TM_CCOEFF_NORMED)
        ncc = float(res[0, 0])
        if not np.isfinite(ncc):
            ncc = 0.0
    return (ncc + 1.0) / 2.0
