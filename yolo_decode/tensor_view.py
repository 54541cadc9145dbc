from __future__ import annotations

from typing import Sequence, Union

import numpy as np


BufferLike = Union[bytes, bytearray, memoryview, np.ndarray]


def _readonly(arr: np.ndarray) -> np.ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view


class TensorView:
    """
    Read-only view over one detection output tensor.

    The underlying buffer is shaped (batch, features, anchors). Exports that
    emit (batch, anchors, features) are wrapped with `channels_first=False`;
    the view is transposed without copying so `channel(i)` always returns the
    i-th feature row across every anchor.
    """

    def __init__(self, array: np.ndarray, *, channels_first: bool = True):
        arr = np.asarray(array)
        if arr.ndim == 2:
            arr = arr[None, ...]
        if arr.ndim != 3:
            raise ValueError(f"Expected a (batch, features, anchors) tensor, got shape {arr.shape}")
        if arr.shape[0] != 1:
            raise ValueError(f"Batch > 1 is not supported (got shape {arr.shape}). Pass one image at a time.")

        plane = arr[0]
        if not channels_first:
            plane = plane.T
        self._data = _readonly(plane)

    @classmethod
    def from_buffer(
        cls,
        buffer: BufferLike,
        shape: Sequence[int],
        dtype: Union[str, np.dtype] = np.float32,
        *,
        channels_first: bool = True,
    ) -> "TensorView":
        flat = np.frombuffer(buffer, dtype=dtype) if not isinstance(buffer, np.ndarray) else buffer.ravel()
        expected = int(np.prod(shape))
        if flat.size != expected:
            raise ValueError(f"Buffer holds {flat.size} values but shape {tuple(shape)} needs {expected}")
        return cls(flat.reshape(tuple(shape)), channels_first=channels_first)

    @property
    def feature_count(self) -> int:
        return int(self._data.shape[0])

    @property
    def anchor_count(self) -> int:
        return int(self._data.shape[1])

    @property
    def shape(self):
        return self._data.shape

    @property
    def data(self) -> np.ndarray:
        return self._data

    def channel(self, index: int) -> np.ndarray:
        return self._data[index]

    def channels(self, start: int, stop: int) -> np.ndarray:
        return self._data[start:stop]

    def anchor(self, index: int) -> np.ndarray:
        return self._data[:, index]


class ProtoView:
    """
    Read-only view over a segmentation proto tensor.

    Accepts (1, H, W, K) channels-last (TFLite style) or (1, K, H, W)
    channels-first (ONNX style) and exposes a (H*W, K) matrix.
    """

    def __init__(self, array: np.ndarray, *, channels_last: bool = True):
        arr = np.asarray(array)
        if arr.ndim == 3:
            arr = arr[None, ...]
        if arr.ndim != 4 or arr.shape[0] != 1:
            raise ValueError(f"Expected a (1, H, W, K) or (1, K, H, W) proto tensor, got shape {arr.shape}")

        plane = arr[0]
        if not channels_last:
            plane = np.transpose(plane, (1, 2, 0))
        self.height, self.width, self.channels = (int(d) for d in plane.shape)
        self._data = _readonly(plane)

    @property
    def data(self) -> np.ndarray:
        return self._data

    def as_matrix(self) -> np.ndarray:
        # reshape copies only when the transpose made the plane non-contiguous
        return self._data.reshape(self.height * self.width, self.channels)
