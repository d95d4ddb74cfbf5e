"""
KCFTrack Tracker - Single-Target Update Controller

One KCFTracker follows one target through a frame sequence:

    init(region, frame)   -> bool   learn the first appearance model
    update(frame)         -> bool   detect, verify, adapt
    get_region()          -> Rect   current estimate

Per update:
1. Search the previous region at the current scale
2. Every other frame test one step larger, otherwise one step smaller
3. Verify the candidate against the fixed gray reference patch and,
   in Lab mode, the fixed HSV histogram
4. Gate: commit and retrain only if the evidence agrees, else LOST

A LOST tracker stays lost. Re-detection is the caller's business.
"""

import logging
import uuid
from enum import Enum
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import (
    TrackerOptions, GateThresholds, HistogramBins, LAB_CENTROIDS, MIN_REGION_SIZE,
)
from .geometry import Rect, clamp_to_frame, clamp_candidate
from .features import FeatureExtractor, template_similarity
from .histogram import ColorVerifier
from .correlation import CorrelationFilter, Detection, gaussian_peak


class TrackingStatus(Enum):
    """Status of a tracked target."""
    INACTIVE = "inactive"      # Not initialized (or init refused)
    TRACKING = "tracking"      # Last update accepted
    LOST = "lost"              # Rejected by the gate - terminal


class ScaleCheck(Enum):
    """Which alternate scale the next update tests."""
    CHECK_LARGER = "larger"
    CHECK_SMALLER = "smaller"

    def next(self) -> "ScaleCheck":
        if self is ScaleCheck.CHECK_LARGER:
            return ScaleCheck.CHECK_SMALLER
        return ScaleCheck.CHECK_LARGER


@dataclass
class TrackingState:
    """Outcome of the latest init/update of a tracker."""
    status: TrackingStatus
    region: Optional[Rect] = None
    scale: float = 1.0
    peak_value: float = 0.0
    psr: float = 0.0
    template_similarity: float = 0.0
    histogram_similarity: float = 0.0
    frame_index: int = 0


class KCFTracker:
    """
    Kernelized correlation filter tracker with appearance verification.

    Args:
        options: resolved feature-mode options (default: HOG, fixed window)
        gate: acceptance thresholds
        bins: HSV histogram layout for the colour check (Lab mode)
        centroids: Lab palette for the colour-cluster channels
        tracker_id: short id, generated when omitted
        label: free text carried along for display
    """

    def __init__(
        self,
        options: Optional[TrackerOptions] = None,
        gate: GateThresholds = GateThresholds(),
        bins: HistogramBins = HistogramBins(),
        centroids: np.ndarray = LAB_CENTROIDS,
        tracker_id: Optional[str] = None,
        label: str = "",
    ):
        self.options = options if options is not None else TrackerOptions.resolve()
        self.gate = gate
        self.bins = bins
        self.centroids = centroids
        self.tracker_id = tracker_id or str(uuid.uuid4())[:8]
        self.label = label
        self.logger = logging.getLogger(f"KCFTracker-{self.tracker_id}")

        self._extractor: Optional[FeatureExtractor] = None
        self._filter: Optional[CorrelationFilter] = None
        self._color: Optional[ColorVerifier] = None
        self._reference_gray: Optional[np.ndarray] = None

        self._region: Optional[Rect] = None
        self._scale = 1.0
        self._scale_check = ScaleCheck.CHECK_LARGER
        self._status = TrackingStatus.INACTIVE
        self._state = TrackingState(status=TrackingStatus.INACTIVE)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def init(self, region, frame: np.ndarray) -> bool:
        """
        Learn the target in `region` of the first frame.

        Args:
            region: Rect or (x, y, w, h)
            frame: BGR or gray image

        Returns:
            False (tracker untouched) for an empty frame, a region smaller
            than 16 px on either side or a failed colour capture
        """
        if not isinstance(region, Rect):
            region = Rect.from_tuple(region)

        if frame is None or frame.size == 0:
            self.logger.warning("Init refused: empty frame")
            return False
        if region.width < MIN_REGION_SIZE or region.height < MIN_REGION_SIZE:
            self.logger.warning(
                f"Init refused: region {region.width:.0f}x{region.height:.0f} "
                f"smaller than {MIN_REGION_SIZE}px"
            )
            return False

        rows, cols = frame.shape[:2]
        roi = clamp_to_frame(region, cols, rows)

        extractor = FeatureExtractor(self.options, self.centroids)
        geometry = extractor.configure(roi)

        color = None
        if self.options.lab:
            color = ColorVerifier(self.bins)
            if not color.capture(frame, roi):
                self.logger.warning("Init refused: colour histogram capture failed")
                return False

        features = extractor.extract(frame, roi, geometry.scale)
        target_f = gaussian_peak(
            geometry.shape[0], geometry.shape[1],
            self.options.padding, self.options.output_sigma_factor,
        )
        correlation_filter = CorrelationFilter(target_f, self.options.sigma, self.options.lambda_)
        correlation_filter.train(features, 1.0)
        reference_gray = extractor.gray_patch(frame, roi)

        # Commit
        self._extractor = extractor
        self._filter = correlation_filter
        self._color = color
        self._reference_gray = reference_gray
        self._region = roi
        self._scale = geometry.scale
        self._scale_check = ScaleCheck.CHECK_LARGER
        self._status = TrackingStatus.TRACKING
        self._state = TrackingState(
            status=TrackingStatus.TRACKING,
            region=roi,
            scale=self._scale,
            peak_value=1.0,
            template_similarity=1.0,
            histogram_similarity=1.0 if color is not None else 0.0,
        )

        self.logger.info(
            f"Initialized '{self.label}' at {roi.as_int()}, "
            f"template {geometry.width}x{geometry.height}, features {geometry.shape}"
        )
        return True

    # ------------------------------------------------------------------
    # Per-frame update
    # ------------------------------------------------------------------

    def _detect_at(self, frame: np.ndarray, roi: Rect, scale_adjust: float) -> Detection:
        features = self._extractor.extract(frame, roi, self._scale, scale_adjust)
        return self._filter.detect(self._filter.template, features)

    def _search_scales(self, frame: np.ndarray, roi: Rect):
        """Base detection plus at most one alternate scale. Returns (detection, scale step)."""
        best = self._detect_at(frame, roi, 1.0)
        step = 1.0
        if not self.options.scale_search:
            return best, step

        check = self._scale_check
        self._scale_check = check.next()
        weight = self.options.scale_weight

        if check is ScaleCheck.CHECK_LARGER:
            larger = self._detect_at(frame, roi, self.options.scale_step)
            if self.gate.larger_scale_weight * weight * larger.peak_value > best.peak_value:
                best, step = larger, self.options.scale_step
        else:
            smaller = self._detect_at(frame, roi, 1.0 / self.options.scale_step)
            if self.gate.smaller_scale_weight * weight * smaller.peak_value > best.peak_value:
                best, step = smaller, 1.0 / self.options.scale_step

        if step != 1.0:
            self.logger.debug(f"Scale {self._scale:.3f} -> {self._scale * step:.3f}")
        return best, step

    def update(self, frame: np.ndarray) -> bool:
        """
        Track the target into `frame`.

        Returns:
            True if the candidate passed the gate (region and model updated),
            False if the target is lost or the tracker is not tracking
        """
        if self._status != TrackingStatus.TRACKING:
            return False

        frame_index = self._state.frame_index + 1
        if frame is None or frame.size == 0:
            self._mark_lost(frame_index, "empty frame")
            return False

        rows, cols = frame.shape[:2]
        roi = clamp_to_frame(self._region, cols, rows)
        self._region = roi
        cx, cy = roi.center

        detection, step = self._search_scales(frame, roi)
        scale = self._scale * step

        width = roi.width * step
        height = roi.height * step
        cell = self.options.cell_size if self.options.hog else 1
        candidate = clamp_candidate(
            Rect(
                cx - width / 2.0 + detection.dx * cell * scale,
                cy - height / 2.0 + detection.dy * cell * scale,
                width,
                height,
            ),
            cols, rows,
        )

        tsim = template_similarity(
            self._reference_gray, self._extractor.gray_patch(frame, candidate)
        )
        hsim = self._color.similarity_at(frame, candidate) if self._color is not None else 0.0

        self.logger.debug(
            f"Frame {frame_index}: peak={detection.peak_value:.3f} psr={detection.psr:.2f} "
            f"tsim={tsim:.3f} hsim={hsim:.3f} scale={scale:.3f}"
        )

        if not self.gate.accepts(detection.peak_value, tsim, hsim):
            self._state = TrackingState(
                status=TrackingStatus.LOST,
                region=self._region,
                scale=self._scale,
                peak_value=detection.peak_value,
                psr=detection.psr,
                template_similarity=tsim,
                histogram_similarity=hsim,
                frame_index=frame_index,
            )
            self._status = TrackingStatus.LOST
            self.logger.info(
                f"Lost '{self.label}' at frame {frame_index} "
                f"(peak={detection.peak_value:.3f}, tsim={tsim:.3f}, hsim={hsim:.3f})"
            )
            return False

        self._region = candidate
        self._scale = scale
        features = self._extractor.extract(frame, candidate, self._scale)
        self._filter.train(features, self.options.interp_factor)

        self._state = TrackingState(
            status=TrackingStatus.TRACKING,
            region=candidate,
            scale=scale,
            peak_value=detection.peak_value,
            psr=detection.psr,
            template_similarity=tsim,
            histogram_similarity=hsim,
            frame_index=frame_index,
        )
        return True

    def _mark_lost(self, frame_index: int, reason: str):
        self._status = TrackingStatus.LOST
        self._state = TrackingState(
            status=TrackingStatus.LOST,
            region=self._region,
            scale=self._scale,
            frame_index=frame_index,
        )
        self.logger.info(f"Lost '{self.label}' at frame {frame_index}: {reason}")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def get_region(self) -> Optional[Rect]:
        return self._region

    @property
    def region(self) -> Optional[Rect]:
        return self._region

    @property
    def scale(self) -> float:
        return self._scale

    @property
    def status(self) -> TrackingStatus:
        return self._status

    @property
    def is_tracking(self) -> bool:
        return self._status == TrackingStatus.TRACKING

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def scale_check(self) -> ScaleCheck:
        return self._scale_check

    @property
    def correlation_filter(self) -> Optional[CorrelationFilter]:
        return self._filter

    @property
    def template_size(self):
        """(width, height) every patch is resampled to, None before init."""
        return None if self._extractor is None else self._extractor.template_size
