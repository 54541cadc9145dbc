from __future__ import annotations

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import numpy as np

from .config import EngineConfig
from .engine import FrameResult, PostprocessEngine
from .preprocess import prepare_input

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
InferFn = Callable[[np.ndarray], Union[np.ndarray, Sequence[np.ndarray]]]


class DetectionPipeline:
    """
    Plug-and-play pipeline: preprocess (resize) -> inference -> post-process.

    The pipeline expects images as `np.ndarray` (BGR by default, OpenCV-style)
    and returns a `FrameResult` in source image coordinates. Only one frame
    is in flight at a time; a frame submitted while the previous cycle is
    still running is dropped and `None` is returned.
    """

    def __init__(
        self,
        infer_fn: InferFn,
        engine: PostprocessEngine,
        *,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
        channels_first: bool = True,
        bgr: bool = True,
    ):
        self._infer_fn = infer_fn
        self.engine = engine
        self.backend = backend
        self.backend_name = backend_name
        self.channels_first = channels_first
        self.bgr = bgr
        self._in_flight = threading.Lock()
        self._stats_lock = threading.Lock()
        self.dropped_frames = 0

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        return prepare_input(
            image,
            self.engine.cfg.input_size,
            bgr=self.bgr,
            channels_first=self.channels_first,
        )

    def infer(self, blob: np.ndarray) -> List[np.ndarray]:
        outputs = self._infer_fn(blob)
        if isinstance(outputs, np.ndarray):
            return [outputs]
        return list(outputs)

    def __call__(self, image: np.ndarray, timestamp: Optional[float] = None) -> Optional[FrameResult]:
        if not self._in_flight.acquire(blocking=False):
            with self._stats_lock:
                self.dropped_frames += 1
                dropped = self.dropped_frames
            logger.debug("Dropped frame: pipeline busy (%d dropped)", dropped)
            return None
        try:
            h, w = image.shape[:2]
            blob = self.preprocess(image)
            outputs = self.infer(blob)
            return self.engine.process(outputs, source_size=(w, h), timestamp=timestamp)
        finally:
            self._in_flight.release()

    def switch_model(
        self,
        infer_fn: InferFn,
        make_engine: Callable[[], PostprocessEngine],
        *,
        backend: Optional[object] = None,
        backend_name: Optional[str] = None,
    ) -> None:
        """
        Replace the active model.

        Waits for the in-flight frame and releases the old engine's buffers;
        only then is `make_engine` called to allocate the new one. If the
        factory raises, the pipeline keeps the closed old engine and every
        later frame fails until another switch succeeds.
        """

        with self._in_flight:
            old = self.engine
            old.close()
            engine = make_engine()
            if engine is old:
                raise ValueError("switch_model needs a new engine instance")
            self._infer_fn = infer_fn
            self.engine = engine
            self.backend = backend
            self.backend_name = backend_name
        logger.info(
            "Switched model: %s -> %s",
            old.layout.variant.value,
            engine.layout.variant.value,
        )

    def close(self) -> None:
        with self._in_flight:
            self.engine.close()


def load_onnx_pipeline(
    model_path: PathLike,
    cfg: Optional[EngineConfig] = None,
    labels: Optional[Sequence[str]] = None,
    *,
    use_gpu: bool = False,
    providers: Optional[Sequence[str]] = None,
    bgr: bool = True,
) -> DetectionPipeline:
    """
    Build a pipeline for an ONNX model on disk.

    Args:
        model_path: path to the .onnx file
        cfg: post-processing configuration; `input_size` is taken from the
            model when its input shape is static
        labels: class labels, one per class channel
        use_gpu: accelerator capability signal; selects the CUDA provider
        providers: explicit ORT providers (overrides `use_gpu`)
    """

    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    cfg = cfg if cfg is not None else EngineConfig()
    backend = OnnxRuntimeBackend(
        model_path,
        OnnxRuntimeBackendConfig(providers=providers, use_gpu=use_gpu),
    )

    input_size = backend.input_size
    if input_size is not None and input_size != cfg.input_size:
        logger.info("Using model input size %s instead of configured %s", input_size, cfg.input_size)
        cfg = replace(cfg, input_size=input_size)

    shapes = backend.output_shapes
    proto_shape = shapes[1] if len(shapes) > 1 else None
    engine = PostprocessEngine.for_outputs(shapes[0], proto_shape, cfg, labels)
    return DetectionPipeline(
        backend.infer,
        engine,
        backend=backend,
        backend_name="onnxruntime",
        channels_first=backend.channels_first,
        bgr=bgr,
    )
