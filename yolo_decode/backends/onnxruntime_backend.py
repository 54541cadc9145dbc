from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers; overrides `use_gpu` when given
    - use_gpu: accelerator capability signal supplied by the caller. When
      True and CUDA is available the CUDA provider is preferred, with CPU as
      fallback.
    - input_name: override the auto-selected input name
    """

    providers: Optional[Sequence[str]] = None
    use_gpu: bool = False
    input_name: Optional[str] = None


def select_providers(use_gpu: bool, available: Sequence[str]) -> List[str]:
    if use_gpu and "CUDAExecutionProvider" in available:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    if use_gpu:
        logger.warning("GPU requested but CUDAExecutionProvider is unavailable; falling back to CPU")
    return ["CPUExecutionProvider"]


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime backend.

    Expects a float32 blob shaped (1, 3, H, W) or (1, H, W, 3) and returns
    every model output in declaration order: [boxes] for detection/pose
    models, [boxes, protos] for segmentation models.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        providers = list(cfg.providers) if cfg.providers is not None else select_providers(
            cfg.use_gpu, ort.get_available_providers()
        )
        self.session = ort.InferenceSession(str(self.model_path), sess_options=ort.SessionOptions(), providers=providers)

        model_input = self.session.get_inputs()[0]
        self.input_name = cfg.input_name or model_input.name
        self.input_shape = tuple(model_input.shape)
        self.output_names = [o.name for o in self.session.get_outputs()]
        logger.info("ONNX Runtime session providers: %s", self.providers_in_use)

    @property
    def providers_in_use(self) -> Sequence[str]:
        return tuple(self.session.get_providers())

    @property
    def output_shapes(self) -> List[Tuple[Any, ...]]:
        return [tuple(o.shape) for o in self.session.get_outputs()]

    @property
    def channels_first(self) -> bool:
        # (N, 3, H, W) vs (N, H, W, 3)
        return len(self.input_shape) == 4 and self.input_shape[1] == 3

    @property
    def input_size(self) -> Optional[Tuple[int, int]]:
        """
        Static model input (width, height), or None for dynamic axes.
        """

        if len(self.input_shape) != 4:
            return None
        h, w = (self.input_shape[2], self.input_shape[3]) if self.channels_first else self.input_shape[1:3]
        if isinstance(h, int) and isinstance(w, int):
            return (w, h)
        return None

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> List[np.ndarray]:
        inputs: Dict[str, Any] = {self.input_name: blob}
        if extra_inputs:
            inputs.update(extra_inputs)
        return list(self.session.run(self.output_names, inputs))
