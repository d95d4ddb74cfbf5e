"""
KCFTrack Configuration - Feature Modes, Gate Thresholds & Lookup Tables

Everything the tracker can be tuned with lives here as immutable data:
- TrackerOptions: the per-feature-mode parameter table, resolved once
- GateThresholds: acceptance rules for a frame's candidate
- HistogramBins: the HSV histogram layout (100 colour + 10 gray bins)
- LAB_CENTROIDS: fixed colour palette for the colour-cluster channels

Options can also be picked from the environment (or a .env file):
    KCF_HOG=1 KCF_LAB=0 KCF_MULTISCALE=1 KCF_FIXED_WINDOW=1 KCF_LOG_LEVEL=DEBUG
"""

import os
import logging
import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# Regions smaller than this (either side) are refused at init
MIN_REGION_SIZE = 16

# Extraction windows are capped to this many pixels per side
MAX_EXTRACT_SIZE = 2100


def _load_env() -> Optional[str]:
    """Load environment variables from a .env file, if python-dotenv finds one."""
    possible_paths = [
        Path(__file__).resolve().parents[2] / ".env",  # src/kcftrack/../../.env
        Path.cwd() / ".env",
    ]
    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            return str(env_path)
    return None


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class TrackerOptions:
    """
    Tunable parameters of one tracker.

    Build with `TrackerOptions.resolve(...)`, which applies the fixed lookup
    table for the chosen feature mode, then adjust single fields with
    `replace(...)`.

    Attributes:
        hog: gradient-histogram features (otherwise raw gray pixels)
        lab: append colour-cluster channels (gradient mode only) and verify
             candidates with the HSV histogram
        fixed_window: resample every target to `template_size`
        multiscale: test one larger/smaller scale every frame
        interp_factor: linear interpolation factor for adaptation
        sigma: gaussian kernel bandwidth
        lambda_: ridge regularization
        cell_size: gradient-histogram cell size in pixels
        padding: context area around the target, relative to its size
        output_sigma_factor: bandwidth of the gaussian regression target
        template_size: template size in pixels, 1 to use the ROI size
        scale_step: scale step for multi-scale estimation, 1 disables it
        scale_weight: downweights detection scores of other scales
    """
    hog: bool = True
    lab: bool = False
    fixed_window: bool = True
    multiscale: bool = False

    interp_factor: float = 0.012
    sigma: float = 0.6
    lambda_: float = 0.0001
    cell_size: int = 4
    padding: float = 3.0
    output_sigma_factor: float = 0.135
    template_size: int = 104
    scale_step: float = 1.1
    scale_weight: float = 1.0

    def __post_init__(self):
        if not 0.0 <= self.interp_factor <= 1.0:
            raise ValueError(f"interp_factor must be in [0, 1], got {self.interp_factor}")
        if self.sigma <= 0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")
        if self.lambda_ < 0:
            raise ValueError(f"lambda_ must be non-negative, got {self.lambda_}")
        if self.cell_size < 1:
            raise ValueError(f"cell_size must be >= 1, got {self.cell_size}")
        if self.padding <= 0:
            raise ValueError(f"padding must be positive, got {self.padding}")
        if self.output_sigma_factor <= 0:
            raise ValueError(f"output_sigma_factor must be positive, got {self.output_sigma_factor}")
        if self.template_size < 1:
            raise ValueError(f"template_size must be >= 1, got {self.template_size}")
        if self.scale_step < 1.0:
            raise ValueError(f"scale_step must be >= 1, got {self.scale_step}")
        if self.lab and not self.hog:
            raise ValueError("Lab colour clusters require gradient-histogram features")

    @classmethod
    def resolve(
        cls,
        hog: bool = True,
        fixed_window: bool = True,
        multiscale: bool = False,
        lab: bool = False,
    ) -> "TrackerOptions":
        """Apply the feature-mode lookup table."""
        params = dict(
            lambda_=0.0001,
            padding=3.0,
            output_sigma_factor=0.135,
        )

        if hog:
            params.update(interp_factor=0.012, sigma=0.6, cell_size=4)
            if lab:
                params.update(interp_factor=0.005, sigma=0.4, output_sigma_factor=0.1)
        else:
            params.update(interp_factor=0.0225, sigma=0.2, cell_size=1)
            if lab:
                logger.warning("Lab features are only used with HOG features, disabling them")
                lab = False

        if multiscale:
            params.update(template_size=104, scale_step=1.1, scale_weight=1.0)
            fixed_window = True
        elif fixed_window:
            params.update(template_size=104, scale_step=1.1, scale_weight=1.0)
        else:
            params.update(template_size=1, scale_step=1.0, scale_weight=1.0)

        return cls(hog=hog, lab=lab, fixed_window=fixed_window, multiscale=multiscale, **params)

    def replace(self, **changes) -> "TrackerOptions":
        """Copy with some fields changed (validated again)."""
        return dataclasses.replace(self, **changes)

    @property
    def scale_search(self) -> bool:
        """True when an alternate scale is tested on each update."""
        return self.scale_step != 1.0


def options_from_env(**defaults) -> TrackerOptions:
    """
    Resolve options from KCF_* environment variables.

    Keyword arguments give the defaults for flags missing from the
    environment (hog, fixed_window, multiscale, lab).
    """
    env_path = _load_env()
    if env_path:
        logger.debug(f"Loaded environment from {env_path}")
    return TrackerOptions.resolve(
        hog=_env_flag("KCF_HOG", defaults.get("hog", True)),
        fixed_window=_env_flag("KCF_FIXED_WINDOW", defaults.get("fixed_window", True)),
        multiscale=_env_flag("KCF_MULTISCALE", defaults.get("multiscale", False)),
        lab=_env_flag("KCF_LAB", defaults.get("lab", False)),
    )


def log_level_from_env(default: str = "INFO") -> int:
    """Logging level named by KCF_LOG_LEVEL (entry points only)."""
    _load_env()
    name = os.environ.get("KCF_LOG_LEVEL", default).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


@dataclass(frozen=True)
class GateThresholds:
    """
    Acceptance rules applied to each frame's candidate.

    A candidate is rejected outright when its peak is below `min_peak`,
    otherwise accepted if any of the three corroborating checks holds.
    """
    min_peak: float = 0.35
    template_similarity: float = 0.68
    histogram_similarity: float = 0.7
    confident_peak: float = 0.45

    # Alternate-scale candidates must beat the base peak after weighting
    smaller_scale_weight: float = 0.9
    larger_scale_weight: float = 0.93

    def accepts(self, peak_value: float, template_similarity: float,
                histogram_similarity: float) -> bool:
        # written as `not >=` so a NaN peak is rejected
        if not peak_value >= self.min_peak:
            return False
        return (
            template_similarity > self.template_similarity
            or histogram_similarity >= self.histogram_similarity
            or peak_value >= self.confident_peak
        )


@dataclass(frozen=True)
class HistogramBins:
    """
    HSV histogram layout.

    Pixels with saturation and value above the thresholds fill the first
    hue_bins * saturation_bins bins. Other, "colorless" pixels fill the
    last value_bins value-only bins.
    """
    hue_bins: int = 10
    saturation_bins: int = 10
    value_bins: int = 10
    hue_max: float = 360.0
    saturation_max: float = 1.0
    value_max: float = 1.0
    saturation_threshold: float = 0.1
    value_threshold: float = 0.2

    @property
    def size(self) -> int:
        return self.hue_bins * self.saturation_bins + self.value_bins


def _frozen(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


# Colour-cluster palette in 8-bit OpenCV Lab (L, a, b all in 0..255)
LAB_CENTROIDS = _frozen(np.array([
    [ 30.0, 128.0, 128.0],   # black
    [ 90.0, 128.0, 128.0],   # dark gray
    [160.0, 128.0, 128.0],   # light gray
    [240.0, 128.0, 128.0],   # white
    [ 95.0, 175.0, 160.0],   # dark red
    [140.0, 190.0, 170.0],   # red
    [180.0, 150.0, 190.0],   # orange
    [225.0, 120.0, 210.0],   # yellow
    [120.0,  95.0, 150.0],   # olive / dark green
    [185.0,  75.0, 180.0],   # green
    [170.0,  95.0, 110.0],   # cyan-ish
    [ 80.0, 150.0,  70.0],   # dark blue
    [130.0, 160.0,  60.0],   # blue
    [110.0, 185.0,  90.0],   # purple
    [180.0, 165.0, 120.0],   # pink
], dtype=np.float32))
