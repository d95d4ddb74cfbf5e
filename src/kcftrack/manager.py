"""
KCFTrack Manager - Multi-Target Supervision

Keeps an ordered set of independent trackers, updates them all on each
frame and drops every tracker whose update fails.
"""

import logging
from typing import Dict, List, Optional

import numpy as np

from .config import TrackerOptions, GateThresholds
from .geometry import Rect
from .tracker import KCFTracker, TrackingState, TrackingStatus


class TrackerManager:
    """
    Manages multiple trackers.

    Trackers are kept in creation order; removing one never reorders the
    others.
    """

    def __init__(self, options: Optional[TrackerOptions] = None,
                 gate: GateThresholds = GateThresholds()):
        self.options = options if options is not None else TrackerOptions.resolve()
        self.gate = gate
        self._trackers: Dict[str, KCFTracker] = {}
        self.logger = logging.getLogger("TrackerManager")

    def create_tracker(self, frame: np.ndarray, region, label: str = "") -> Optional[str]:
        """Initialize a new tracker on `region`. Returns its id, or None if init failed."""
        tracker = KCFTracker(options=self.options, gate=self.gate, label=label)
        if not tracker.init(region, frame):
            self.logger.warning(f"Could not start tracker '{label}' on {region}")
            return None
        self._trackers[tracker.tracker_id] = tracker
        return tracker.tracker_id

    def add_tracker(self, tracker: KCFTracker) -> str:
        """Adopt an already initialized tracker."""
        if not tracker.is_tracking:
            raise ValueError(f"Tracker {tracker.tracker_id} is not tracking")
        self._trackers[tracker.tracker_id] = tracker
        return tracker.tracker_id

    def update_all(self, frame: np.ndarray) -> Dict[str, TrackingState]:
        """
        Update every tracker on `frame`, then remove the ones that failed.

        Returns:
            {tracker_id: state} for every tracker updated this frame,
            including the ones just removed
        """
        states: Dict[str, TrackingState] = {}
        failed: List[str] = []
        for tid, tracker in self._trackers.items():
            if not tracker.update(frame):
                failed.append(tid)
            states[tid] = tracker.state

        for tid in failed:
            del self._trackers[tid]
            self.logger.info(f"Removed tracker {tid}")
        return states

    def get_tracker(self, tracker_id: str) -> Optional[KCFTracker]:
        return self._trackers.get(tracker_id)

    def remove_tracker(self, tracker_id: str):
        if tracker_id in self._trackers:
            del self._trackers[tracker_id]

    def clear_all(self):
        self._trackers.clear()

    def regions(self) -> Dict[str, Rect]:
        return {tid: t.get_region() for tid, t in self._trackers.items()}

    @property
    def tracker_ids(self) -> List[str]:
        return list(self._trackers.keys())

    @property
    def active_count(self) -> int:
        return sum(
            1 for t in self._trackers.values()
            if t.status == TrackingStatus.TRACKING
        )

    def __len__(self) -> int:
        return len(self._trackers)
