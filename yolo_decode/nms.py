from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import NmsMode
from .types import CandidateDetection, Detection

BoxLike = Sequence[float]


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    max_detections: int = 300
    mode: NmsMode = NmsMode.GLOBAL


def iou(a: BoxLike, b: BoxLike) -> float:
    """
    IoU of two xyxy boxes. Union is computed from the raw areas; 0 when the union is empty.
    """

    ix1 = max(a[0], b[0])
    iy1 = max(a[1], b[1])
    ix2 = min(a[2], b[2])
    iy2 = min(a[3], b[3])
    inter = max(0.0, ix2 - ix1) * max(0.0, iy2 - iy1)
    union = (a[2] - a[0]) * (a[3] - a[1]) + (b[2] - b[0]) * (b[3] - b[1]) - inter
    if union <= 0.0:
        return 0.0
    return float(inter / union)


def box_iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    IoU of one xyxy box against (N, 4) boxes.
    """

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    xx1 = np.maximum(box[0], boxes[:, 0])
    yy1 = np.maximum(box[1], boxes[:, 1])
    xx2 = np.minimum(box[2], boxes[:, 2])
    yy2 = np.minimum(box[3], boxes[:, 3])

    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
    area = (box[2] - box[0]) * (box[3] - box[1])
    areas = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter
    out = np.zeros_like(inter)
    np.divide(inter, union, out=out, where=union > 0)
    return out


def _greedy(boxes: np.ndarray, order: np.ndarray, iou_threshold: float) -> List[int]:
    keep: List[int] = []
    while order.size > 0:
        i = int(order[0])
        keep.append(i)
        if order.size == 1:
            break
        overlaps = box_iou(boxes[i], boxes[order[1:]])
        order = order[1:][overlaps <= iou_threshold]
    return keep


def _score_order(scores: np.ndarray) -> np.ndarray:
    # Stable so equal scores keep input order; makes repeated suppression a no-op.
    return np.argsort(-scores, kind="stable")


def nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    cfg: NMSConfig,
    class_ids: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N, 4) in xyxy and scores shape (N,).

    In class-partitioned mode a box only suppresses boxes of its own class.
    Returns indices of kept boxes ordered by descending score, capped at
    `cfg.max_detections`.
    """

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if boxes.shape[0] == 0:
        return np.empty((0,), dtype=np.int64)

    if cfg.mode is NmsMode.GLOBAL or class_ids is None:
        keep = _greedy(boxes, _score_order(scores), cfg.iou_threshold)
    else:
        class_ids = np.asarray(class_ids).reshape(-1)
        keep = []
        for cls in np.unique(class_ids):
            idx = np.where(class_ids == cls)[0]
            local = _greedy(boxes[idx], _score_order(scores[idx]), cfg.iou_threshold)
            keep.extend(idx[local].tolist())
        kept = np.array(keep, dtype=np.int64)
        # Merge partitions back into one score-ordered list, ties by input index.
        keep = kept[np.lexsort((kept, -scores[kept]))].tolist()

    return np.array(keep[: cfg.max_detections], dtype=np.int64)


Suppressible = Union[CandidateDetection, Detection]


class NmsEngine:
    """
    Suppression over detection objects.

    Candidates are turned into `Detection`s (labels attached); detections that
    already went through suppression are returned unchanged when nothing
    overlaps, so running the engine twice is a no-op.
    """

    def __init__(self, cfg: NMSConfig, labels: Sequence[str] = ()):
        self.cfg = cfg
        self.labels = list(labels)

    def _label(self, class_id: int) -> str:
        if 0 <= class_id < len(self.labels):
            return self.labels[class_id]
        return f"class_{class_id}"

    def _to_detection(self, item: Suppressible) -> Detection:
        if isinstance(item, Detection):
            return item
        x1, y1, x2, y2 = item.as_xyxy()
        return Detection(
            x1=float(x1),
            y1=float(y1),
            x2=float(x2),
            y2=float(y2),
            score=float(item.score),
            class_id=int(item.class_id),
            label=self._label(int(item.class_id)),
            mask_coeffs=item.mask_coeffs,
            keypoints=item.keypoints,
        )

    @staticmethod
    def _arrays(items: Sequence[Suppressible]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        boxes = np.array([item.as_xyxy() for item in items], dtype=np.float64).reshape(-1, 4)
        scores = np.array([item.score for item in items], dtype=np.float64)
        class_ids = np.array([item.class_id for item in items], dtype=np.int64)
        return boxes, scores, class_ids

    def suppress(self, items: Sequence[Suppressible]) -> List[Detection]:
        if not items:
            return []
        boxes, scores, class_ids = self._arrays(items)
        keep = nms(boxes, scores, self.cfg, class_ids)
        return [self._to_detection(items[int(i)]) for i in keep]
