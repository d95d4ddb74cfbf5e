"""
Rectangle helpers shared by the tracker and its feature extractor.

Regions are float rectangles in frame coordinates (top-left + size).
Crops never fail at frame borders: pixels outside the frame replicate
the nearest edge pixel.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle, (x, y) is the top-left corner."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_tuple(cls, box) -> "Rect":
        x, y, w, h = box
        return cls(float(x), float(y), float(w), float(h))

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2.0, self.y + self.height / 2.0

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.width, self.height

    def as_int(self) -> Tuple[int, int, int, int]:
        """Pixel rectangle (rounded), e.g. for drawing."""
        return (
            int(round(self.x)), int(round(self.y)),
            int(round(self.width)), int(round(self.height))
        )

    def moved_to(self, x: float, y: float) -> "Rect":
        return Rect(x, y, self.width, self.height)

    def resized(self, factor: float) -> "Rect":
        """Scale width/height by factor, keeping the top-left corner."""
        return Rect(self.x, self.y, self.width * factor, self.height * factor)


def centered_window(cx: float, cy: float, width: int, height: int) -> Tuple[int, int, int, int]:
    """Integer window of the given size centered on (cx, cy)."""
    width = max(1, int(width))
    height = max(1, int(height))
    x = int(math.floor(cx - width // 2))
    y = int(math.floor(cy - height // 2))
    return x, y, width, height


def subwindow(image: np.ndarray, window: Tuple[int, int, int, int]) -> np.ndarray:
    """
    Crop `window` (x, y, w, h) out of `image` with replicate padding.

    Works for gray (H, W) and colour (H, W, C) images.
    """
    x, y, w, h = (int(v) for v in window)
    if w <= 0 or h <= 0:
        raise ValueError(f"Degenerate window {window}")
    rows, cols = image.shape[:2]
    xs = np.clip(np.arange(x, x + w), 0, cols - 1)
    ys = np.clip(np.arange(y, y + h), 0, rows - 1)
    return image[np.ix_(ys, xs)]


def clamp_to_frame(region: Rect, frame_w: int, frame_h: int) -> Rect:
    """
    Keep a previous region overlapping the frame before it is searched.

    The region may still stick out of the frame, but never lies fully
    outside it.
    """
    x, y, w, h = region.as_tuple()
    if x + w <= 0:
        x = -w + 1
    if y + h <= 0:
        y = -h + 1
    if x >= frame_w - 1:
        x = frame_w - 2
    if y >= frame_h - 1:
        y = frame_h - 2
    return Rect(x, y, w, h)


def clamp_candidate(region: Rect, frame_w: int, frame_h: int) -> Rect:
    """
    Clamp a freshly estimated region on every edge.

    Top/left are kept at >= 1, right/bottom are pulled inside by shifting
    the rectangle. Size is never changed.
    """
    x, y, w, h = region.as_tuple()
    x = min(max(x, 1.0), frame_w - 1.0)
    y = min(max(y, 1.0), frame_h - 1.0)
    if x + w >= frame_w - 1:
        x = frame_w - w - 1
    if y + h >= frame_h - 1:
        y = frame_h - h - 1
    return Rect(x, y, w, h)
