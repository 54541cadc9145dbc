"""
Coordinate mapping from model output space to source image pixels.

Exports disagree on whether box geometry is normalized to [0, 1] or expressed
in model-input pixels (0..640). Unless a model declares its coordinate space,
`is_normalized` decides per anchor; it is the only place that heuristic lives.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from .config import CoordinateSpace


def is_normalized(x, y, limit: float = 1.5):
    """
    True where (x, y) looks normalized: both values at or below `limit`.

    A genuinely pixel-space coordinate below the limit is misread as
    normalized; set an explicit coordinate space on the model to avoid it.
    """

    return np.logical_and(np.asarray(x) <= limit, np.asarray(y) <= limit)


def cxcywh_to_xyxy(boxes: np.ndarray) -> np.ndarray:
    cx, cy, w, h = boxes.T
    return np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)


def _scales(
    xs: np.ndarray,
    ys: np.ndarray,
    source_size: Tuple[int, int],
    input_size: Tuple[int, int],
    space: CoordinateSpace,
    limit: float,
) -> Tuple[np.ndarray, np.ndarray]:
    src_w, src_h = source_size
    in_w, in_h = input_size
    space = CoordinateSpace(space)
    if space is CoordinateSpace.NORMALIZED:
        norm = np.ones(xs.shape, dtype=bool)
    elif space is CoordinateSpace.PIXEL:
        norm = np.zeros(xs.shape, dtype=bool)
    else:
        norm = is_normalized(xs, ys, limit)
    sx = np.where(norm, float(src_w), src_w / float(in_w))
    sy = np.where(norm, float(src_h), src_h / float(in_h))
    return sx, sy


def map_boxes(
    boxes_cxcywh: np.ndarray,
    source_size: Tuple[int, int],
    input_size: Tuple[int, int],
    space: CoordinateSpace = CoordinateSpace.AUTO,
    limit: float = 1.5,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Map (N, 4) cx/cy/w/h boxes to clipped source-pixel xyxy.

    Returns:
        boxes: (N, 4) float32 xyxy clipped to [0, width] x [0, height]
        valid: (N,) bool, False for non-finite input or non-positive width/height after clipping
    """

    boxes = np.asarray(boxes_cxcywh, dtype=np.float32).reshape(-1, 4)
    src_w, src_h = source_size
    cx, cy, w, h = boxes.T
    sx, sy = _scales(cx, cy, source_size, input_size, space, limit)

    cx = cx * sx
    cy = cy * sy
    half_w = w * sx / 2
    half_h = h * sy / 2

    out = np.empty_like(boxes)
    out[:, 0] = np.clip(cx - half_w, 0, src_w)
    out[:, 1] = np.clip(cy - half_h, 0, src_h)
    out[:, 2] = np.clip(cx + half_w, 0, src_w)
    out[:, 3] = np.clip(cy + half_h, 0, src_h)

    valid = np.isfinite(boxes).all(axis=1)
    valid &= (out[:, 2] > out[:, 0]) & (out[:, 3] > out[:, 1])
    return out, valid


def map_keypoints(
    keypoints: np.ndarray,
    source_size: Tuple[int, int],
    input_size: Tuple[int, int],
    space: CoordinateSpace = CoordinateSpace.AUTO,
    limit: float = 1.0,
) -> np.ndarray:
    """
    Map (N, K, 3) keypoint triples (x, y, conf) to source pixels.

    The normalized/pixel decision is taken per keypoint. Coordinates are
    clipped to the image; confidences pass through unchanged.
    """

    kpts = np.array(keypoints, dtype=np.float32, copy=True)
    if kpts.size == 0:
        return kpts
    src_w, src_h = source_size
    xs = kpts[..., 0]
    ys = kpts[..., 1]
    sx, sy = _scales(xs, ys, source_size, input_size, space, limit)
    kpts[..., 0] = np.clip(xs * sx, 0, src_w)
    kpts[..., 1] = np.clip(ys * sy, 0, src_h)
    return kpts
