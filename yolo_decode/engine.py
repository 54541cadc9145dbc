from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import EngineConfig
from .decoder import AnchorDecoder
from .keypoints import skeleton_segments, visible_keypoints
from .layout import LayoutDescriptor, LayoutVariant, reconcile_labels, resolve_layout
from .mask import MaskImage, MaskSynthesizer
from .nms import NMSConfig, NmsEngine
from .temporal import TemporalAggregator
from .tensor_view import ProtoView, TensorView
from .types import Detection, Keypoint

logger = logging.getLogger(__name__)

Outputs = Union[np.ndarray, Sequence[np.ndarray]]


@dataclass(frozen=True)
class FrameResult:
    detections: List[Detection] = field(default_factory=list)
    mask: Optional[MaskImage] = None
    # Candidates that passed confidence gating, before NMS.
    candidate_count: int = 0


def _check_source_size(source_size: Tuple[int, int]) -> Tuple[int, int]:
    if len(source_size) != 2:
        raise ValueError(f"source_size must be (width, height), got {source_size!r}")
    w, h = (int(v) for v in source_size)
    if w < 1 or h < 1:
        raise ValueError(f"source_size must be positive, got {source_size!r}")
    return w, h


class PostprocessEngine:
    """
    One loaded model's post-processing: decode -> NMS -> masks -> smoothing.

    An engine owns every buffer it uses (decoder scratch arrays, mask canvas,
    sigmoid table, detection history) and must not be shared between models.
    Frames are processed one at a time: a frame arriving while another is in
    flight is dropped rather than queued.
    """

    def __init__(
        self,
        layout: LayoutDescriptor,
        cfg: Optional[EngineConfig] = None,
        labels: Optional[Sequence[str]] = None,
    ):
        cfg = cfg if cfg is not None else EngineConfig()
        self.layout = layout
        self.cfg = cfg
        self.labels = reconcile_labels(layout, labels)
        self.decoder = AnchorDecoder(layout, cfg, self.labels)
        self.nms = NmsEngine(
            NMSConfig(
                iou_threshold=cfg.effective_iou_threshold,
                max_detections=cfg.max_detections,
                mode=cfg.nms_mode,
            ),
            self.labels,
        )
        self.masks: Optional[MaskSynthesizer] = None
        if layout.variant is LayoutVariant.SEGMENTATION:
            self.masks = MaskSynthesizer(layout.proto_size, layout.mask_coeff_len, cfg)
        self.aggregator = TemporalAggregator(cfg.history_depth, cfg.max_match_distance)

        self._in_flight = threading.Lock()
        self._closed = False
        self._stats_lock = threading.Lock()
        self.dropped_frames = 0
        logger.info(
            "Loaded %s layout: %d features x %d anchors, %d class(es)",
            layout.variant.value,
            layout.feature_count,
            layout.anchor_count,
            layout.num_classes,
        )

    @classmethod
    def for_outputs(
        cls,
        output_shape: Sequence[object],
        proto_shape: Optional[Sequence[object]] = None,
        cfg: Optional[EngineConfig] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> "PostprocessEngine":
        """
        Resolve the layout from the model's output shape(s) and build an engine.

        Raises:
            UnsupportedLayoutError: the model cannot be loaded.
        """

        cfg = cfg if cfg is not None else EngineConfig()
        layout = resolve_layout(
            output_shape,
            proto_shape,
            declared_num_classes=len(labels) if labels else None,
            keypoint_count=cfg.keypoint_count,
            has_objectness=cfg.has_objectness,
            channels_first=cfg.channels_first,
        )
        return cls(layout, cfg, labels)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def busy(self) -> bool:
        return self._in_flight.locked()

    def process(
        self,
        outputs: Outputs,
        source_size: Tuple[int, int],
        timestamp: Optional[float] = None,
    ) -> Optional[FrameResult]:
        """
        Post-process one frame.

        Args:
            outputs: the box tensor, or [box tensor, proto tensor] for segmentation
            source_size: (width, height) of the source image
            timestamp: frame time for the smoothing history (monotonic clock if None)

        Returns:
            FrameResult, or None when the frame was dropped because another
            frame is still in flight.
        """

        if self._closed:
            raise RuntimeError("PostprocessEngine is closed")
        if not self._in_flight.acquire(blocking=False):
            with self._stats_lock:
                self.dropped_frames += 1
                dropped = self.dropped_frames
            logger.debug("Dropped frame: previous frame still in flight (%d dropped)", dropped)
            return None
        try:
            if self._closed:
                raise RuntimeError("PostprocessEngine is closed")
            return self._process(outputs, _check_source_size(source_size), timestamp)
        finally:
            self._in_flight.release()

    def _split_outputs(self, outputs: Outputs) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        if isinstance(outputs, np.ndarray):
            outputs = [outputs]
        outputs = list(outputs)
        if not outputs:
            raise ValueError("No output tensors provided")
        if self.masks is not None:
            if len(outputs) < 2:
                raise ValueError("Segmentation models need both the box tensor and the proto tensor")
            return outputs[0], outputs[1]
        return outputs[0], None

    def _process(
        self,
        outputs: Outputs,
        source_size: Tuple[int, int],
        timestamp: Optional[float],
    ) -> FrameResult:
        box_out, proto_out = self._split_outputs(outputs)
        view = TensorView(box_out, channels_first=self.layout.channels_first)

        candidates = self.decoder.decode(view, source_size)
        detections = self.nms.suppress(candidates)

        mask = None
        if self.masks is not None and detections:
            protos = ProtoView(proto_out, channels_last=self.layout.proto_channels_last)
            mask = self.masks.synthesize(detections, protos, source_size)

        self.aggregator.push(detections, timestamp=timestamp, mask=mask)
        logger.debug("Frame: %d candidate(s), %d kept after NMS", len(candidates), len(detections))
        return FrameResult(detections=detections, mask=mask, candidate_count=len(candidates))

    def smoothed(self) -> FrameResult:
        """
        Detections averaged over the history window, with the latest available mask.
        """

        return FrameResult(detections=self.aggregator.smoothed(), mask=self.aggregator.last_mask)

    def visible_keypoints(self, det: Detection) -> List[Tuple[int, Keypoint]]:
        return visible_keypoints(det, self.cfg.keypoint_visibility_threshold)

    def skeleton(self, det: Detection) -> List[Tuple[Keypoint, Keypoint]]:
        """
        Skeleton segments to draw for a pose detection, using the configured visibility threshold.
        """

        return skeleton_segments(det, self.cfg.keypoint_visibility_threshold)

    def close(self) -> None:
        """
        Wait for the in-flight frame, then release all buffers.
        """

        with self._in_flight:
            if self._closed:
                return
            self._closed = True
            self.decoder.release()
            if self.masks is not None:
                self.masks.release()
            self.aggregator.clear()
        logger.info("Closed %s engine (%d frame(s) dropped)", self.layout.variant.value, self.dropped_frames)

    def __enter__(self) -> "PostprocessEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
