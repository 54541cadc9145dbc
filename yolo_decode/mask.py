from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .config import EngineConfig, MaskInterpolation
from .palette import color_for_class
from .tensor_view import ProtoView
from .types import Detection


class SigmoidTable:
    """
    Lookup-table sigmoid over [lo, hi]; inputs outside the domain are clamped first.
    """

    def __init__(self, size: int = 2000, lo: float = -10.0, hi: float = 10.0):
        if size < 2:
            raise ValueError("size must be >= 2")
        if hi <= lo:
            raise ValueError("hi must be > lo")
        self.size = int(size)
        self.lo = float(lo)
        self.hi = float(hi)
        xs = np.linspace(self.lo, self.hi, self.size, dtype=np.float64)
        self.table = (1.0 / (1.0 + np.exp(-xs))).astype(np.float32)
        self._scale = (self.size - 1) / (self.hi - self.lo)

    def __call__(self, x: np.ndarray) -> np.ndarray:
        x = np.nan_to_num(np.asarray(x, dtype=np.float32), nan=self.lo, posinf=self.hi, neginf=self.lo)
        np.clip(x, self.lo, self.hi, out=x)
        idx = ((x - self.lo) * self._scale).astype(np.intp)
        np.clip(idx, 0, self.size - 1, out=idx)
        return self.table[idx]


@dataclass
class MaskImage:
    """
    Color-coded RGBA mask; background pixels are fully transparent.
    """

    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]

    def coverage(self) -> float:
        if self.pixels.size == 0:
            return 0.0
        return float(np.count_nonzero(self.alpha) / self.alpha.size)

    def resize(
        self,
        width: int,
        height: int,
        interpolation: MaskInterpolation = MaskInterpolation.NEAREST,
    ) -> "MaskImage":
        try:
            import cv2  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("OpenCV is required for MaskImage.resize(). Install with `pip install opencv-python`.") from e

        if width < 1 or height < 1:
            raise ValueError("width and height must be >= 1")
        if (width, height) == (self.width, self.height):
            return MaskImage(self.pixels.copy())
        flag = cv2.INTER_NEAREST if MaskInterpolation(interpolation) is MaskInterpolation.NEAREST else cv2.INTER_LINEAR
        return MaskImage(cv2.resize(self.pixels, (int(width), int(height)), interpolation=flag))


class MaskSynthesizer:
    """
    Rebuilds instance masks from per-detection coefficients and the shared proto tensor.

    For every detection and proto pixel: sigmoid(coeffs . proto[y, x]) > threshold
    turns the pixel on. The per-detection dot products are one (D, K) x (K, H*W)
    matrix product, which dominates post-processing cost on segmentation models.
    """

    def __init__(
        self,
        proto_size: Tuple[int, int],
        mask_len: int,
        cfg: EngineConfig,
        sigmoid: Optional[SigmoidTable] = None,
    ):
        self.proto_h, self.proto_w = (int(v) for v in proto_size)
        self.mask_len = int(mask_len)
        self.cfg = cfg
        self.sigmoid = sigmoid or SigmoidTable()
        self._canvas = np.zeros((self.proto_h, self.proto_w, 4), dtype=np.uint8)

    def release(self) -> None:
        self._canvas = np.zeros((0, 0, 4), dtype=np.uint8)

    def _check(self, protos: ProtoView) -> None:
        if (protos.height, protos.width, protos.channels) != (self.proto_h, self.proto_w, self.mask_len):
            raise ValueError(
                f"Proto tensor ({protos.height}, {protos.width}, {protos.channels}) does not match the loaded "
                f"layout ({self.proto_h}, {self.proto_w}, {self.mask_len})"
            )

    def activations(self, coeffs: np.ndarray, protos: ProtoView) -> np.ndarray:
        """
        Sigmoid activations, shape (D, H, W), for a (D, K) coefficient matrix.
        """

        self._check(protos)
        coeffs = np.asarray(coeffs, dtype=np.float32).reshape(-1, self.mask_len)
        logits = coeffs @ protos.as_matrix().astype(np.float32, copy=False).T
        return self.sigmoid(logits).reshape(-1, self.proto_h, self.proto_w)

    def _crop(self, masks: np.ndarray, detections: Sequence[Detection], source_size: Tuple[int, int]) -> None:
        src_w, src_h = source_size
        sx = self.proto_w / float(src_w)
        sy = self.proto_h / float(src_h)
        for m, det in zip(masks, detections):
            x1 = int(np.floor(det.x1 * sx))
            y1 = int(np.floor(det.y1 * sy))
            x2 = int(np.ceil(det.x2 * sx))
            y2 = int(np.ceil(det.y2 * sy))
            inside = np.zeros_like(m)
            inside[max(y1, 0):max(y2, 0), max(x1, 0):max(x2, 0)] = True
            m &= inside

    def binary_masks(
        self,
        detections: Sequence[Detection],
        protos: ProtoView,
        source_size: Optional[Tuple[int, int]] = None,
    ) -> np.ndarray:
        """
        Boolean masks at proto resolution, shape (D, H, W).

        With `crop_masks` enabled (and a source size given) pixels outside each
        detection's box are turned off.
        """

        if not detections:
            return np.zeros((0, self.proto_h, self.proto_w), dtype=bool)
        if any(det.mask_coeffs is None for det in detections):
            raise ValueError("Every detection needs mask coefficients for mask synthesis")

        coeffs = np.stack([np.asarray(det.mask_coeffs, dtype=np.float32) for det in detections])
        masks = self.activations(coeffs, protos) > self.cfg.mask_threshold
        if self.cfg.crop_masks and source_size is not None:
            self._crop(masks, detections, source_size)
        return masks

    def synthesize(
        self,
        detections: Sequence[Detection],
        protos: ProtoView,
        source_size: Optional[Tuple[int, int]] = None,
    ) -> Optional[MaskImage]:
        """
        Composite all detections into one RGBA mask.

        Later detections paint over earlier ones. The image is produced at proto
        resolution and upscaled to `source_size` (width, height) when given.
        Returns None when there is nothing to draw.
        """

        if not detections:
            return None

        masks = self.binary_masks(detections, protos, source_size)
        canvas = self._canvas
        canvas.fill(0)
        for det, m in zip(detections, masks):
            r, g, b = color_for_class(det.class_id, det.label, self.cfg.class_colors)
            canvas[m] = (r, g, b, self.cfg.mask_alpha)

        image = MaskImage(canvas.copy())
        if source_size is not None:
            image = image.resize(source_size[0], source_size[1], self.cfg.mask_interpolation)
        return image
