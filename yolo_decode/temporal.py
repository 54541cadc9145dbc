from __future__ import annotations

import time
from collections import deque
from typing import Deque, List, Optional, Sequence, Tuple

from .mask import MaskImage
from .types import Detection

MAX_HISTORY_DEPTH = 3


class DetectionHistory:
    """
    Bounded FIFO of (timestamp, detections), newest first. The oldest frame is evicted on overflow.
    """

    def __init__(self, depth: int = MAX_HISTORY_DEPTH):
        if not 1 <= depth <= MAX_HISTORY_DEPTH:
            raise ValueError(f"depth must be in [1, {MAX_HISTORY_DEPTH}]")
        self.depth = depth
        self._frames: Deque[Tuple[float, List[Detection]]] = deque(maxlen=depth)

    def push(self, timestamp: float, detections: Sequence[Detection]) -> None:
        self._frames.appendleft((float(timestamp), list(detections)))

    def frames(self) -> List[Tuple[float, List[Detection]]]:
        return list(self._frames)

    def clear(self) -> None:
        self._frames.clear()

    def __len__(self) -> int:
        return len(self._frames)


def _center_distance_sq(a: Detection, b: Detection) -> float:
    ax, ay = a.center
    bx, by = b.center
    return (ax - bx) ** 2 + (ay - by) ** 2


class TemporalAggregator:
    """
    Best-effort smoothing over the last few frames.

    Each detection of the newest frame is matched to the closest same-class
    detection (by center distance) in every older frame, and box coordinates
    and score are averaged over the matches. Unmatched detections pass through.
    There is no identity tracking beyond the window.
    """

    def __init__(self, depth: int = MAX_HISTORY_DEPTH, max_match_distance: Optional[float] = None):
        self.history = DetectionHistory(depth)
        self.max_match_distance = max_match_distance
        self._last_mask: Optional[MaskImage] = None

    @property
    def last_mask(self) -> Optional[MaskImage]:
        return self._last_mask

    def push(
        self,
        detections: Sequence[Detection],
        timestamp: Optional[float] = None,
        mask: Optional[MaskImage] = None,
    ) -> None:
        self.history.push(time.monotonic() if timestamp is None else timestamp, detections)
        # Keep the previous mask for display continuity on empty frames.
        if mask is not None:
            self._last_mask = mask

    def clear(self) -> None:
        self.history.clear()
        self._last_mask = None

    def _closest(self, det: Detection, candidates: Sequence[Detection]) -> Optional[Detection]:
        best = None
        best_d = None
        for other in candidates:
            if other.class_id != det.class_id:
                continue
            d = _center_distance_sq(det, other)
            if best_d is None or d < best_d:
                best, best_d = other, d
        if best is None:
            return None
        if self.max_match_distance is not None and best_d > self.max_match_distance ** 2:
            return None
        return best

    def smoothed(self) -> List[Detection]:
        frames = self.history.frames()
        if not frames:
            return []

        latest = frames[0][1]
        older = [dets for _, dets in frames[1:]]
        out: List[Detection] = []
        for det in latest:
            x1, y1, x2, y2 = det.as_xyxy()
            score = det.score
            count = 1
            for dets in older:
                match = self._closest(det, dets)
                if match is None:
                    continue
                x1 += match.x1
                y1 += match.y1
                x2 += match.x2
                y2 += match.y2
                score += match.score
                count += 1
            if count == 1:
                out.append(det)
            else:
                out.append(det.with_box(x1 / count, y1 / count, x2 / count, y2 / count, score / count))
        return out
