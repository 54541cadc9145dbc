"""
Static pose metadata for consumers that draw skeletons.

Keypoints below the visibility threshold stay on the detection; they are
just not drawn or connected.
"""

from __future__ import annotations

from typing import List, Tuple

from .types import Detection, Keypoint

COCO_KEYPOINT_NAMES: Tuple[str, ...] = (
    "nose",
    "left_eye",
    "right_eye",
    "left_ear",
    "right_ear",
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
)

COCO_SKELETON: Tuple[Tuple[int, int], ...] = (
    # head
    (0, 1),
    (0, 2),
    (1, 3),
    (2, 4),
    # torso
    (5, 6),
    (5, 11),
    (6, 12),
    (11, 12),
    # arms
    (5, 7),
    (7, 9),
    (6, 8),
    (8, 10),
    # legs
    (11, 13),
    (13, 15),
    (12, 14),
    (14, 16),
)


def visible_keypoints(det: Detection, threshold: float = 0.5) -> List[Tuple[int, Keypoint]]:
    if not det.keypoints:
        return []
    return [(i, kp) for i, kp in enumerate(det.keypoints) if kp.is_visible(threshold)]


def skeleton_segments(
    det: Detection,
    threshold: float = 0.5,
    skeleton: Tuple[Tuple[int, int], ...] = COCO_SKELETON,
) -> List[Tuple[Keypoint, Keypoint]]:
    """
    Joint pairs whose endpoints are both visible.
    """

    if not det.keypoints:
        return []
    kpts = det.keypoints
    segments = []
    for a, b in skeleton:
        if a >= len(kpts) or b >= len(kpts):
            continue
        if kpts[a].is_visible(threshold) and kpts[b].is_visible(threshold):
            segments.append((kpts[a], kpts[b]))
    return segments
