from __future__ import annotations

import json
import types
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .palette import RGB, parse_color


ClassKey = Union[int, str]


class NmsMode(str, Enum):
    GLOBAL = "global"
    CLASS_PARTITIONED = "class-partitioned"


class CoordinateSpace(str, Enum):
    # AUTO applies the normalized-vs-pixel heuristic per anchor.
    AUTO = "auto"
    NORMALIZED = "normalized"
    PIXEL = "pixel"


class MaskInterpolation(str, Enum):
    NEAREST = "nearest"
    BILINEAR = "bilinear"


def _unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1]")


@dataclass(frozen=True)
class EngineConfig:
    """
    Per-model post-processing configuration, consumed once at model load.

    Everything that used to differ between per-model detector classes
    (thresholds, suppression quirks, colors) lives here as data.
    """

    confidence_threshold: float = 0.25
    iou_threshold: float = 0.45
    # Keys are class ids or labels (labels match case-insensitively).
    per_class_thresholds: Mapping[ClassKey, float] = field(default_factory=dict)
    nms_mode: NmsMode = NmsMode.GLOBAL
    # Effective IoU threshold = iou_threshold * factor. Some exports over-detect
    # and need a tighter threshold; 1.0 leaves the nominal threshold untouched.
    suppression_tightening_factor: float = 1.0
    max_detections: int = 300
    # None infers objectness from the output shape and declared class count.
    has_objectness: Optional[bool] = None
    # None infers the box tensor orientation (see resolve_layout).
    channels_first: Optional[bool] = None
    score_with_objectness: bool = True
    keypoint_count: int = 17
    keypoint_visibility_threshold: float = 0.5
    coordinate_space: CoordinateSpace = CoordinateSpace.AUTO
    normalized_box_limit: float = 1.5
    normalized_keypoint_limit: float = 1.0
    # Model input (width, height).
    input_size: Tuple[int, int] = (640, 640)
    mask_threshold: float = 0.5
    mask_interpolation: MaskInterpolation = MaskInterpolation.NEAREST
    mask_alpha: int = 255
    crop_masks: bool = False
    history_depth: int = 3
    max_match_distance: Optional[float] = None
    class_colors: Mapping[str, RGB] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "nms_mode", NmsMode(self.nms_mode))
        object.__setattr__(self, "coordinate_space", CoordinateSpace(self.coordinate_space))
        object.__setattr__(self, "mask_interpolation", MaskInterpolation(self.mask_interpolation))
        object.__setattr__(self, "per_class_thresholds", types.MappingProxyType(dict(self.per_class_thresholds)))
        object.__setattr__(
            self,
            "class_colors",
            types.MappingProxyType({str(k).lower(): parse_color(v) for k, v in dict(self.class_colors).items()}),
        )
        object.__setattr__(self, "input_size", tuple(int(v) for v in self.input_size))

        _unit_interval("confidence_threshold", self.confidence_threshold)
        _unit_interval("iou_threshold", self.iou_threshold)
        _unit_interval("keypoint_visibility_threshold", self.keypoint_visibility_threshold)
        _unit_interval("mask_threshold", self.mask_threshold)
        for key, value in self.per_class_thresholds.items():
            if isinstance(key, bool) or not isinstance(key, (int, str)):
                raise ValueError(f"per_class_thresholds keys must be class ids or labels, got {key!r}")
            _unit_interval(f"per_class_thresholds[{key!r}]", float(value))
        if not 0.0 < self.suppression_tightening_factor <= 1.0:
            raise ValueError("suppression_tightening_factor must be in (0, 1]")
        if self.max_detections < 1:
            raise ValueError("max_detections must be >= 1")
        if self.keypoint_count < 0:
            raise ValueError("keypoint_count must be >= 0")
        if self.normalized_box_limit <= 0 or self.normalized_keypoint_limit <= 0:
            raise ValueError("normalized coordinate limits must be > 0")
        if len(self.input_size) != 2 or min(self.input_size) < 1:
            raise ValueError("input_size must be (width, height) with positive values")
        if not 0 <= self.mask_alpha <= 255:
            raise ValueError("mask_alpha must be in [0, 255]")
        if not 1 <= self.history_depth <= 3:
            raise ValueError("history_depth must be in [1, 3]")
        if self.max_match_distance is not None and self.max_match_distance <= 0:
            raise ValueError("max_match_distance must be > 0 if provided")

    @property
    def effective_iou_threshold(self) -> float:
        return self.iou_threshold * self.suppression_tightening_factor

    def threshold_for(self, class_id: int, label: Optional[str] = None) -> float:
        """
        Confidence threshold for one class: id match first, then label, then the global default.
        """

        if class_id in self.per_class_thresholds:
            return float(self.per_class_thresholds[class_id])
        if label is not None:
            wanted = label.lower()
            for key, value in self.per_class_thresholds.items():
                if isinstance(key, str) and key.lower() == wanted:
                    return float(value)
        return self.confidence_threshold


_FLOAT_KEYS = {
    "confidence_threshold",
    "iou_threshold",
    "suppression_tightening_factor",
    "keypoint_visibility_threshold",
    "normalized_box_limit",
    "normalized_keypoint_limit",
    "mask_threshold",
}
_INT_KEYS = {"max_detections", "keypoint_count", "mask_alpha", "history_depth"}
_BOOL_KEYS = {"score_with_objectness", "crop_masks"}
_OPTIONAL_BOOL_KEYS = {"has_objectness", "channels_first"}
_ENUM_KEYS = {"nms_mode", "coordinate_space", "mask_interpolation"}


def _number(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _integer(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _class_key(raw: str) -> ClassKey:
    # JSON object keys are always strings; digit-only keys are class ids.
    return int(raw) if raw.isdigit() else raw


def config_from_dict(payload: Mapping[str, Any]) -> EngineConfig:
    allowed = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown engine config keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    for key, value in payload.items():
        if key in _FLOAT_KEYS:
            kwargs[key] = _number(key, value)
        elif key in _INT_KEYS:
            kwargs[key] = _integer(key, value)
        elif key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            kwargs[key] = value
        elif key in _ENUM_KEYS:
            if not isinstance(value, str):
                raise ValueError(f"{key} must be a string")
            kwargs[key] = value
        elif key in _OPTIONAL_BOOL_KEYS:
            if value is not None and not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean or null")
            kwargs[key] = value
        elif key == "max_match_distance":
            kwargs[key] = None if value is None else _number(key, value)
        elif key == "input_size":
            if not isinstance(value, list) or len(value) != 2:
                raise ValueError("input_size must be a [width, height] list")
            kwargs[key] = (_integer("input_size[0]", value[0]), _integer("input_size[1]", value[1]))
        elif key == "per_class_thresholds":
            if not isinstance(value, dict):
                raise ValueError("per_class_thresholds must be an object")
            kwargs[key] = {_class_key(k): _number(f"per_class_thresholds[{k}]", v) for k, v in value.items()}
        elif key == "class_colors":
            if not isinstance(value, dict):
                raise ValueError("class_colors must be an object")
            kwargs[key] = dict(value)

    try:
        return EngineConfig(**kwargs)
    except (TypeError, KeyError) as exc:
        raise ValueError(f"Invalid engine config: {exc}") from exc


def load_engine_config(path: Path) -> EngineConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Engine config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid engine config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Engine config must be a JSON object")
    return config_from_dict(payload)
