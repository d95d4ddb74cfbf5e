#!/usr/bin/env python3
"""
KCFTrack - Video Tracking Demo

Runs the multi-target tracker over a video file:
1. Reads frames sequentially
2. Starts one tracker per --roi at --start-frame
3. Updates every tracker on each following frame, dropping lost ones
4. Writes the regions to a CSV file and/or shows them in a window

Usage:
    python main_demo.py video.mp4 --roi 120,80,40,60 --roi 300,200,32,32
    python main_demo.py video.mp4 --roi 120,80,40,60 --hog --lab --show

Controls (with --show):
    - Q/ESC: Quit
"""

import csv
import sys
import time
import logging
import argparse
from pathlib import Path
from typing import List, Optional, Tuple

import cv2  # pyright: ignore[reportMissingImports]
import numpy as np  # pyright: ignore[reportMissingImports]

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from kcftrack import TrackerManager, TrackerOptions
from kcftrack.config import log_level_from_env

logger = logging.getLogger("KCFTrackDemo")

# Colours cycled over trackers (BGR)
TRACKER_COLORS = [
    (0, 255, 0),
    (255, 128, 0),
    (0, 128, 255),
    (255, 0, 255),
    (0, 255, 255),
]


def parse_roi(text: str) -> Tuple[int, int, int, int]:
    """Parse 'x,y,w,h'."""
    try:
        x, y, w, h = (int(float(v)) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid region '{text}', expected x,y,w,h")
    return x, y, w, h


class TrackingDemo:
    """
    Offline tracking run over one video file.
    """

    WINDOW_NAME = "KCFTrack Demo"

    def __init__(
            self,
            source: str,
            regions: List[Tuple[int, int, int, int]],
            options: TrackerOptions,
            start_frame: int = 0,
            gray: bool = False,
            output: Optional[str] = None,
            show: bool = False,
            max_frames: Optional[int] = None,
    ):
        self.source = source
        self.regions = regions
        self.start_frame = start_frame
        self.gray = gray
        self.output = output
        self.show = show
        self.max_frames = max_frames

        self.manager = TrackerManager(options)
        self._colors = {}

    def _prepare(self, frame: np.ndarray) -> np.ndarray:
        if self.gray:
            return cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        return frame

    def _seed(self, frame: np.ndarray):
        for i, region in enumerate(self.regions):
            tid = self.manager.create_tracker(frame, region, label=f"target-{i}")
            if tid is not None:
                self._colors[tid] = TRACKER_COLORS[i % len(TRACKER_COLORS)]
        logger.info(f"Started {len(self.manager)} of {len(self.regions)} trackers")

    def _draw(self, frame: np.ndarray, frame_index: int) -> np.ndarray:
        canvas = frame if frame.ndim == 3 else cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        canvas = canvas.copy()
        for tid, region in self.manager.regions().items():
            x, y, w, h = region.as_int()
            color = self._colors.get(tid, TRACKER_COLORS[0])
            cv2.rectangle(canvas, (x, y), (x + w, y + h), color, 2)
            cv2.putText(canvas, tid, (x, max(12, y - 4)),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.4, color, 1, cv2.LINE_AA)
        cv2.putText(canvas, f"Frame {frame_index}", (10, 20),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1, cv2.LINE_AA)
        return canvas

    def run(self) -> int:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            logger.error(f"Cannot open video: {self.source}")
            return 1

        writer = None
        out_file = None
        if self.output:
            out_file = open(self.output, "w", newline="")
            writer = csv.writer(out_file)
            writer.writerow(["frame", "tracker", "x", "y", "w", "h", "peak", "psr"])

        frame_index = -1
        processed = 0
        start = time.perf_counter()
        try:
            while True:
                ret, frame = cap.read()
                if not ret:
                    break
                frame_index += 1
                if frame_index < self.start_frame:
                    continue

                frame = self._prepare(frame)
                if frame_index == self.start_frame:
                    self._seed(frame)
                else:
                    states = self.manager.update_all(frame)
                    processed += 1
                    if writer is not None:
                        for tid, state in states.items():
                            if state.region is None:
                                continue
                            x, y, w, h = state.region.as_tuple()
                            writer.writerow([
                                frame_index, tid, f"{x:.1f}", f"{y:.1f}", f"{w:.1f}", f"{h:.1f}",
                                f"{state.peak_value:.4f}", f"{state.psr:.2f}",
                            ])

                if self.show:
                    cv2.imshow(self.WINDOW_NAME, self._draw(frame, frame_index))
                    key = cv2.waitKey(1) & 0xFF
                    if key in (ord('q'), 27):
                        break

                if self.max_frames is not None and processed >= self.max_frames:
                    break
                if frame_index > self.start_frame and len(self.manager) == 0:
                    logger.info(f"All targets lost at frame {frame_index}")
                    break
        finally:
            cap.release()
            if out_file is not None:
                out_file.close()
            if self.show:
                cv2.destroyAllWindows()

        elapsed = time.perf_counter() - start
        fps = processed / elapsed if elapsed > 0 else 0.0
        logger.info(f"Processed {processed} frames in {elapsed:.2f}s ({fps:.1f} FPS)")
        return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="KCFTrack multi-target tracking demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  KCF_LOG_LEVEL   default logging level (also read from .env)
"""
    )
    parser.add_argument("video", help="Path to a video file")
    parser.add_argument(
        "--roi",
        type=parse_roi,
        action="append",
        required=True,
        help="Initial region x,y,w,h (repeat for several targets)"
    )
    parser.add_argument(
        "--start-frame",
        type=int,
        default=0,
        help="Frame index the regions refer to"
    )
    parser.add_argument(
        "--hog",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Use gradient-histogram features (default: raw gray pixels)"
    )
    parser.add_argument(
        "--lab",
        action="store_true",
        help="Add Lab colour clusters and HSV verification (needs --hog)"
    )
    parser.add_argument(
        "--multiscale",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Track on a fixed-size template with scale search (implies --fixed-window)"
    )
    parser.add_argument(
        "--fixed-window",
        action="store_true",
        help="Resample targets to a fixed template size"
    )
    parser.add_argument(
        "--gray",
        action="store_true",
        help="Convert frames to grayscale before tracking"
    )
    parser.add_argument(
        "--output", "-o",
        default=None,
        help="CSV file for per-frame regions"
    )
    parser.add_argument(
        "--show",
        action="store_true",
        help="Display the tracked regions"
    )
    parser.add_argument(
        "--max-frames",
        type=int,
        default=None,
        help="Stop after this many tracked frames"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: KCF_LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()

    # Setup logging
    level = getattr(logging, args.log_level) if args.log_level else log_level_from_env()
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    options = TrackerOptions.resolve(
        hog=args.hog,
        fixed_window=args.fixed_window,
        multiscale=args.multiscale,
        lab=args.lab,
    )

    print("\n" + "=" * 60)
    print("  KCFTrack Video Demo")
    print("=" * 60)
    print(f"  Source: {args.video}")
    print(f"  Targets: {len(args.roi)} (from frame {args.start_frame})")
    print(f"  Features: {'HOG' if options.hog else 'raw'}{' + Lab' if options.lab else ''}")
    print(f"  Scale search: {'Enabled' if options.scale_search else 'Disabled'}")
    print("=" * 60 + "\n")

    demo = TrackingDemo(
        source=args.video,
        regions=args.roi,
        options=options,
        start_frame=args.start_frame,
        gray=args.gray,
        output=args.output,
        show=args.show,
        max_frames=args.max_frames,
    )
    sys.exit(demo.run())


if __name__ == "__main__":
    main()
