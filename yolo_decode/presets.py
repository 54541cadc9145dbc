"""
Ready-made configurations for the fine-tuned models the app ships with.

Each entry used to be its own detector class; here they only differ in data.
The suppression tightening factors on the pose and segmentation presets work
around over-detection in those specific exports and should not be assumed to
carry over to other models.
"""

from __future__ import annotations

from typing import Dict, List

from .config import EngineConfig, NmsMode

_HELMET_CONF = 0.25

PRESETS: Dict[str, EngineConfig] = {
    "grocery": EngineConfig(confidence_threshold=0.5),
    "helmet": EngineConfig(
        confidence_threshold=_HELMET_CONF,
        # helmet + person legitimately overlap
        nms_mode=NmsMode.CLASS_PARTITIONED,
        per_class_thresholds={
            # under-detected
            "helmet": _HELMET_CONF * 0.7,
            # over-detected
            "head": _HELMET_CONF * 1.2,
        },
        class_colors={"head": "#FF0000", "helmet": "#00FF00", "person": "#FFA500"},
    ),
    "fire_smoke": EngineConfig(
        confidence_threshold=0.45,
        nms_mode=NmsMode.CLASS_PARTITIONED,
        score_with_objectness=False,
        class_colors={"fire": "#FF4500", "smoke": "#808080"},
    ),
    "face": EngineConfig(
        confidence_threshold=0.45,
        score_with_objectness=False,
        class_colors={"face": "#00CED1"},
    ),
    "dent": EngineConfig(
        confidence_threshold=0.4,
        class_colors={"dent": "#DC143C", "scratch": "#FF8C00"},
    ),
    "license_plate": EngineConfig(confidence_threshold=0.5, class_colors={"plate": "#FFD700"}),
    "blink_drowse": EngineConfig(
        confidence_threshold=0.5,
        class_colors={"open_eyes": "#00FF00", "closed_eyes": "#FF0000", "yawn": "#FFA500"},
    ),
    "general_object": EngineConfig(confidence_threshold=0.45),
    "oil_spill": EngineConfig(confidence_threshold=0.5, class_colors={"oil": "#8B4513"}),
    "tea_scanner": EngineConfig(confidence_threshold=0.5),
    "pose": EngineConfig(
        confidence_threshold=0.5,
        keypoint_count=17,
        suppression_tightening_factor=0.3,
    ),
    "segmentation": EngineConfig(
        confidence_threshold=0.25,
        nms_mode=NmsMode.CLASS_PARTITIONED,
        suppression_tightening_factor=0.7,
    ),
}


def preset_names() -> List[str]:
    return sorted(PRESETS)


def get_preset(name: str) -> EngineConfig:
    key = name.strip().lower().replace("-", "_").replace(" ", "_")
    if key not in PRESETS:
        raise KeyError(f"Unknown preset {name!r}; available: {preset_names()}")
    return PRESETS[key]
