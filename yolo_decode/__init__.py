"""
Unified post-processing for single-stage YOLO-style detection models.

Turns raw output tensors (box, multi-class, pose and segmentation exports)
into screen-space detections, keypoints and masks. Works on NumPy arrays from
any runtime; OpenCV is only needed for resizing images and masks.
"""

from .types import CandidateDetection, Detection, Keypoint
from .config import CoordinateSpace, EngineConfig, MaskInterpolation, NmsMode, load_engine_config
from .layout import LayoutDescriptor, LayoutVariant, UnsupportedLayoutError, reconcile_labels, resolve_layout
from .tensor_view import ProtoView, TensorView
from .geometry import is_normalized, map_boxes, map_keypoints
from .decoder import AnchorDecoder
from .nms import NMSConfig, NmsEngine, box_iou, iou, nms
from .mask import MaskImage, MaskSynthesizer, SigmoidTable
from .keypoints import COCO_KEYPOINT_NAMES, COCO_SKELETON, skeleton_segments, visible_keypoints
from .temporal import DetectionHistory, TemporalAggregator
from .engine import FrameResult, PostprocessEngine
from .runtime import DetectionPipeline, load_onnx_pipeline
from .presets import get_preset, preset_names
from .palette import color_for_class

__all__ = [
    "CandidateDetection",
    "Detection",
    "Keypoint",
    "CoordinateSpace",
    "EngineConfig",
    "MaskInterpolation",
    "NmsMode",
    "load_engine_config",
    "LayoutDescriptor",
    "LayoutVariant",
    "UnsupportedLayoutError",
    "reconcile_labels",
    "resolve_layout",
    "ProtoView",
    "TensorView",
    "is_normalized",
    "map_boxes",
    "map_keypoints",
    "AnchorDecoder",
    "NMSConfig",
    "NmsEngine",
    "box_iou",
    "iou",
    "nms",
    "MaskImage",
    "MaskSynthesizer",
    "SigmoidTable",
    "COCO_KEYPOINT_NAMES",
    "COCO_SKELETON",
    "skeleton_segments",
    "visible_keypoints",
    "DetectionHistory",
    "TemporalAggregator",
    "FrameResult",
    "PostprocessEngine",
    "DetectionPipeline",
    "load_onnx_pipeline",
    "get_preset",
    "preset_names",
    "color_for_class",
]
