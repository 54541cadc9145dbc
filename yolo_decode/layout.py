"""
Output layout resolution.

A model's raw output only carries a shape. `resolve_layout` turns that shape
(plus the optional proto tensor shape for segmentation exports) into an
explicit `LayoutDescriptor` once per model load, so the per-frame decoder never
has to inspect shapes again.

Supported layouts (feature axis F, anchor axis A, usually A = 8400):
- box:          (1, 5, A)            [cx, cy, w, h, conf]
- multi-class:  (1, 4 + C, A)        [cx, cy, w, h, cls_0..cls_C-1]
                (1, 5 + C, A)        [cx, cy, w, h, obj, cls_0..cls_C-1]
- pose:         (1, 5 + 3*N, A)      [cx, cy, w, h, conf, (x, y, conf) * N]
- segmentation: (1, 4 + C + K, A) + proto (1, H, W, K)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

BOX_FEATURES = 4
KEYPOINT_FEATURES = 3


class UnsupportedLayoutError(ValueError):
    """Raised at model load when an output shape matches no supported layout."""


class LayoutVariant(str, Enum):
    BOX = "box"
    MULTI_CLASS = "multi_class"
    POSE = "pose"
    SEGMENTATION = "segmentation"


@dataclass(frozen=True)
class LayoutDescriptor:
    variant: LayoutVariant
    feature_count: int
    anchor_count: int
    num_classes: int
    has_objectness: bool = False
    mask_coeff_len: int = 0
    keypoint_count: int = 0
    # True when the box tensor is (1, F, A); False for (1, A, F).
    channels_first: bool = True
    proto_size: Optional[Tuple[int, int]] = None
    proto_channels_last: bool = True

    def __post_init__(self) -> None:
        expected = (
            BOX_FEATURES
            + int(self.has_objectness)
            + self.num_classes
            + self.mask_coeff_len
            + self.keypoint_count * KEYPOINT_FEATURES
        )
        if self.feature_count != expected:
            raise ValueError(
                f"feature_count={self.feature_count} does not match layout components (expected {expected})"
            )
        if self.anchor_count <= 0:
            raise ValueError("anchor_count must be > 0")
        if self.num_classes < 1:
            raise ValueError("num_classes must be >= 1")

        if self.variant is LayoutVariant.SEGMENTATION:
            ok = self.mask_coeff_len > 0 and self.keypoint_count == 0 and self.proto_size is not None
        elif self.variant is LayoutVariant.POSE:
            ok = self.keypoint_count > 0 and self.mask_coeff_len == 0 and self.num_classes == 1
        elif self.variant is LayoutVariant.MULTI_CLASS:
            ok = self.num_classes > 1 and self.mask_coeff_len == 0 and self.keypoint_count == 0
        else:
            ok = self.num_classes == 1 and self.mask_coeff_len == 0 and self.keypoint_count == 0
        if not ok:
            raise ValueError(f"Inconsistent layout for variant {self.variant.value}: {self}")

    @property
    def has_mask_coeffs(self) -> bool:
        return self.mask_coeff_len > 0

    @property
    def has_keypoints(self) -> bool:
        return self.keypoint_count > 0

    @property
    def objectness_index(self) -> Optional[int]:
        return BOX_FEATURES if self.has_objectness else None

    @property
    def class_offset(self) -> int:
        return BOX_FEATURES + int(self.has_objectness)

    @property
    def mask_offset(self) -> int:
        return self.class_offset + self.num_classes

    @property
    def keypoint_offset(self) -> int:
        return self.mask_offset + self.mask_coeff_len

    def output_shape(self) -> Tuple[int, int, int]:
        if self.channels_first:
            return (1, self.feature_count, self.anchor_count)
        return (1, self.anchor_count, self.feature_count)


def _as_int_shape(shape: Sequence[object], what: str) -> Tuple[int, ...]:
    dims = []
    for d in shape:
        if isinstance(d, bool) or not isinstance(d, int) or d <= 0:
            # ONNX Runtime reports dynamic axes as strings or None.
            raise UnsupportedLayoutError(f"{what} shape must contain positive integers, got {tuple(shape)}")
        dims.append(int(d))
    return tuple(dims)


def _strip_batch(shape: Tuple[int, ...], ndim: int, what: str) -> Tuple[int, ...]:
    if len(shape) == ndim + 1:
        if shape[0] != 1:
            raise UnsupportedLayoutError(f"Batch > 1 is not supported for {what} (got shape {shape})")
        return shape[1:]
    if len(shape) != ndim:
        raise UnsupportedLayoutError(f"Unsupported {what} shape: {shape}")
    return shape


def _resolve_proto(proto_shape: Sequence[object], channels_last: Optional[bool]) -> Tuple[int, int, int, bool]:
    dims = _strip_batch(_as_int_shape(proto_shape, "proto"), 3, "proto")
    if channels_last is None:
        # Proto maps are spatially larger than their channel count (e.g. 160x160x32).
        channels_last = dims[2] <= dims[0]
    if channels_last:
        h, w, k = dims
    else:
        k, h, w = dims
    return h, w, k, channels_last


def _fits_class_count(features: int, declared: int, mask_len: int, keypoint_count: int) -> bool:
    # Class scores with or without an objectness row, or a single-class pose head.
    scores = features - BOX_FEATURES - mask_len
    if declared in (scores, scores - 1):
        return True
    return (
        declared == 1
        and mask_len == 0
        and keypoint_count > 0
        and features == BOX_FEATURES + 1 + keypoint_count * KEYPOINT_FEATURES
    )


def resolve_layout(
    output_shape: Sequence[object],
    proto_shape: Optional[Sequence[object]] = None,
    *,
    declared_num_classes: Optional[int] = None,
    keypoint_count: int = 17,
    has_objectness: Optional[bool] = None,
    proto_channels_last: Optional[bool] = None,
    channels_first: Optional[bool] = None,
) -> LayoutDescriptor:
    """
    Select the decode variant for a model from its output tensor shape(s).

    Args:
        output_shape: shape of the box tensor, (1, F, A) or (1, A, F).
        proto_shape: shape of the proto tensor for segmentation exports.
        declared_num_classes: class count declared by configuration/labels.
            Used to decide whether a multi-class export carries an objectness
            row (F - 4 == declared means it does not). A 6-feature model with
            2 declared classes is therefore two class scores, not
            objectness + one class.
        keypoint_count: keypoints per pose detection; 0 disables pose detection.
        has_objectness: force the objectness interpretation; None infers it.
        channels_first: force the box tensor orientation; None treats the
            smaller axis as the feature axis, unless only the other
            orientation agrees with declared_num_classes.

    Raises:
        UnsupportedLayoutError: the shape matches none of the known variants.
    """

    dims = _strip_batch(_as_int_shape(output_shape, "output"), 2, "output")
    d1, d2 = dims
    proto = _resolve_proto(proto_shape, proto_channels_last) if proto_shape is not None else None
    if channels_first is None:
        # A dimension too small for box + confidence cannot be the feature axis.
        channels_first = d1 <= d2 or d2 < BOX_FEATURES + 1
        if declared_num_classes:
            mask_len = proto[2] if proto is not None else 0
            fits = {
                True: _fits_class_count(d1, declared_num_classes, mask_len, keypoint_count),
                False: _fits_class_count(d2, declared_num_classes, mask_len, keypoint_count),
            }
            if fits[not channels_first] and not fits[channels_first]:
                logger.warning(
                    "Output %s only matches %d declared class(es) when read as %s; set channels_first to silence this",
                    tuple(dims),
                    declared_num_classes,
                    "(features, anchors)" if not channels_first else "(anchors, features)",
                )
                channels_first = not channels_first
    feature_count, anchor_count = (d1, d2) if channels_first else (d2, d1)

    if feature_count < BOX_FEATURES + 1:
        raise UnsupportedLayoutError(
            f"Output has {feature_count} features per anchor; at least 5 (box + confidence) are required"
        )

    if proto is not None:
        ph, pw, k, channels_last = proto
        objectness = bool(has_objectness)
        num_classes = feature_count - BOX_FEATURES - int(objectness) - k
        if num_classes < 1:
            raise UnsupportedLayoutError(
                f"Proto tensor has {k} channels but the output only has {feature_count} features"
            )
        return LayoutDescriptor(
            variant=LayoutVariant.SEGMENTATION,
            feature_count=feature_count,
            anchor_count=anchor_count,
            num_classes=num_classes,
            has_objectness=objectness,
            mask_coeff_len=k,
            channels_first=channels_first,
            proto_size=(ph, pw),
            proto_channels_last=channels_last,
        )

    if (
        keypoint_count > 0
        and feature_count == BOX_FEATURES + 1 + keypoint_count * KEYPOINT_FEATURES
        and declared_num_classes in (None, 1)
        and not has_objectness
    ):
        return LayoutDescriptor(
            variant=LayoutVariant.POSE,
            feature_count=feature_count,
            anchor_count=anchor_count,
            num_classes=1,
            keypoint_count=keypoint_count,
            channels_first=channels_first,
        )

    if feature_count == BOX_FEATURES + 1:
        if has_objectness:
            raise UnsupportedLayoutError("A 5-feature output cannot carry both objectness and class scores")
        return LayoutDescriptor(
            variant=LayoutVariant.BOX,
            feature_count=feature_count,
            anchor_count=anchor_count,
            num_classes=1,
            channels_first=channels_first,
        )

    if has_objectness is None:
        has_objectness = not (
            declared_num_classes is not None and declared_num_classes == feature_count - BOX_FEATURES
        )
    num_classes = feature_count - BOX_FEATURES - int(has_objectness)
    variant = LayoutVariant.MULTI_CLASS if num_classes > 1 else LayoutVariant.BOX
    return LayoutDescriptor(
        variant=variant,
        feature_count=feature_count,
        anchor_count=anchor_count,
        num_classes=num_classes,
        has_objectness=has_objectness,
        channels_first=channels_first,
    )


def reconcile_labels(layout: LayoutDescriptor, labels: Optional[Sequence[str]]) -> List[str]:
    """
    Align declared labels with the class count inferred from the tensor.

    A mismatch is recoverable: a warning is logged and decoding proceeds with
    the smaller of the two counts. Without labels every class is named
    `class_<id>`.
    """

    if not labels:
        return [f"class_{i}" for i in range(layout.num_classes)]

    labels = [str(label) for label in labels]
    if len(labels) != layout.num_classes:
        used = min(len(labels), layout.num_classes)
        logger.warning(
            "Model outputs %d class score(s) but %d label(s) were declared; using the first %d",
            layout.num_classes,
            len(labels),
            used,
        )
        return labels[:used]
    return labels
