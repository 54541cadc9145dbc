from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import EngineConfig
from .geometry import map_boxes, map_keypoints
from .layout import KEYPOINT_FEATURES, LayoutDescriptor
from .tensor_view import TensorView
from .types import CandidateDetection, Keypoint

logger = logging.getLogger(__name__)


class AnchorDecoder:
    """
    Per-anchor decoding with confidence gating.

    One decoder is built per loaded model. It resolves per-class thresholds
    once and owns scratch arrays sized to the anchor count, so decoding a
    frame does not allocate anchor-sized buffers beyond the surviving subset.

    Layout handled per anchor j:
        rows 0..3                 cx, cy, w, h
        row 4 (optional)          objectness
        next num_classes rows     class scores (or the single confidence row)
        next K rows               mask coefficients (segmentation)
        next 3 * N rows           keypoints x, y, conf (pose)
    """

    def __init__(self, layout: LayoutDescriptor, cfg: EngineConfig, labels: Optional[Sequence[str]] = None):
        self.layout = layout
        self.cfg = cfg
        self.labels = list(labels) if labels else []
        # Class channels past the declared labels are ignored (label mismatch is recoverable).
        self.active_classes = min(layout.num_classes, len(self.labels)) if self.labels else layout.num_classes

        self._class_thresholds = np.array(
            [cfg.threshold_for(i, self.labels[i] if i < len(self.labels) else None) for i in range(self.active_classes)],
            dtype=np.float32,
        )
        n = layout.anchor_count
        self._scores = np.empty(n, dtype=np.float32)
        self._class_ids = np.empty(n, dtype=np.intp)
        self._keep = np.empty(n, dtype=bool)

    @property
    def class_thresholds(self) -> np.ndarray:
        return self._class_thresholds

    def release(self) -> None:
        self._scores = np.empty(0, dtype=np.float32)
        self._class_ids = np.empty(0, dtype=np.intp)
        self._keep = np.empty(0, dtype=bool)

    def _check(self, view: TensorView) -> None:
        if view.feature_count != self.layout.feature_count or view.anchor_count != self.layout.anchor_count:
            raise ValueError(
                f"Output tensor {tuple(view.shape)} does not match the loaded layout "
                f"({self.layout.feature_count} features x {self.layout.anchor_count} anchors)"
            )
        if self._scores.shape[0] != self.layout.anchor_count:
            raise RuntimeError("Decoder buffers were released")

    def score(self, view: TensorView) -> Tuple[np.ndarray, np.ndarray]:
        """
        Fill and return (scores, class_ids) for every anchor.

        Returned arrays are the decoder's scratch buffers and are overwritten
        by the next call.
        """

        self._check(view)
        scores = self._scores
        class_ids = self._class_ids

        offset = self.layout.class_offset
        rows = view.channels(offset, offset + self.active_classes)
        if rows.shape[0] == 1:
            np.copyto(scores, rows[0], casting="unsafe")
            class_ids.fill(0)
        else:
            np.argmax(rows, axis=0, out=class_ids)
            np.max(rows, axis=0, out=scores)

        obj_index = self.layout.objectness_index
        if obj_index is not None and self.cfg.score_with_objectness:
            np.multiply(scores, view.channel(obj_index), out=scores, casting="unsafe")
        return scores, class_ids

    def decode(self, view: TensorView, source_size: Tuple[int, int]) -> List[CandidateDetection]:
        """
        Decode one frame into candidates in source pixel space.

        Args:
            view: read-only view of the box tensor
            source_size: (width, height) of the source image
        """

        scores, class_ids = self.score(view)

        keep = self._keep
        np.isfinite(scores, out=keep)
        keep &= scores >= self._class_thresholds[class_ids]
        idx = np.flatnonzero(keep)
        if idx.size == 0:
            return []

        cfg = self.cfg
        raw_boxes = view.channels(0, 4)[:, idx].T
        boxes, valid = map_boxes(
            raw_boxes,
            source_size,
            cfg.input_size,
            space=cfg.coordinate_space,
            limit=cfg.normalized_box_limit,
        )
        idx = idx[valid]
        boxes = boxes[valid]
        if idx.size == 0:
            return []

        mask_coeffs = None
        if self.layout.has_mask_coeffs:
            start = self.layout.mask_offset
            # Copy: the caller may reuse the output buffer for the next frame.
            mask_coeffs = np.array(view.channels(start, start + self.layout.mask_coeff_len)[:, idx].T, dtype=np.float32)

        keypoints = None
        if self.layout.has_keypoints:
            start = self.layout.keypoint_offset
            n_kpts = self.layout.keypoint_count
            raw = view.channels(start, start + n_kpts * KEYPOINT_FEATURES)[:, idx].T.reshape(-1, n_kpts, KEYPOINT_FEATURES)
            keypoints = map_keypoints(
                raw,
                source_size,
                cfg.input_size,
                space=cfg.coordinate_space,
                limit=cfg.normalized_keypoint_limit,
            )

        candidates: List[CandidateDetection] = []
        for n, anchor in enumerate(idx):
            x1, y1, x2, y2 = (float(v) for v in boxes[n])
            kpts = None
            if keypoints is not None:
                kpts = tuple(Keypoint(float(x), float(y), float(c)) for x, y, c in keypoints[n])
            candidates.append(
                CandidateDetection(
                    cx=(x1 + x2) / 2,
                    cy=(y1 + y2) / 2,
                    w=x2 - x1,
                    h=y2 - y1,
                    score=float(scores[anchor]),
                    class_id=int(class_ids[anchor]),
                    mask_coeffs=mask_coeffs[n] if mask_coeffs is not None else None,
                    keypoints=kpts,
                )
            )

        logger.debug("Decoded %d candidate(s) from %d anchors", len(candidates), self.layout.anchor_count)
        return candidates
