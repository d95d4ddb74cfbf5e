"""
KCFTrack - Kernelized Correlation Filter Tracking with Appearance Verification

Single- and multi-target visual tracking for frame sequences.

Features:
- KCF tracker on raw gray pixels or FHOG-style gradient histograms
- Optional Lab colour-cluster channels and HSV histogram verification
- Template similarity gate that keeps occluders out of the model
- Alternating one-step scale search
- Supervisor that drops targets as soon as they are lost

Quick Start:
    from kcftrack import TrackerManager, TrackerOptions

    manager = TrackerManager(TrackerOptions.resolve(hog=True, multiscale=True))
    tracker_id = manager.create_tracker(first_frame, (x, y, w, h), label="car")

    for frame in frames:
        states = manager.update_all(frame)
        for tid, region in manager.regions().items():
            draw(frame, region)
"""

__version__ = "1.0.0"

# Configuration
from .config import (
    TrackerOptions,
    GateThresholds,
    HistogramBins,
    LAB_CENTROIDS,
    MIN_REGION_SIZE,
    options_from_env,
)

# Geometry
from .geometry import Rect

# Components
from .features import FeatureExtractor
from .histogram import ColorVerifier, compute_histogram, normalize_histogram, histogram_similarity
from .correlation import CorrelationFilter, FilterModel, Detection

# Tracking
from .tracker import (
    KCFTracker,
    TrackingStatus,
    TrackingState,
    ScaleCheck,
)
from .manager import TrackerManager

__all__ = [
    # Version
    "__version__",

    # Configuration
    "TrackerOptions",
    "GateThresholds",
    "HistogramBins",
    "LAB_CENTROIDS",
    "MIN_REGION_SIZE",
    "options_from_env",

    # Geometry
    "Rect",

    # Components
    "FeatureExtractor",
    "ColorVerifier",
    "compute_histogram",
    "normalize_histogram",
    "histogram_similarity",
    "CorrelationFilter",
    "FilterModel",
    "Detection",

    # Tracking
    "KCFTracker",
    "TrackingStatus",
    "TrackingState",
    "ScaleCheck",
    "TrackerManager",
]
