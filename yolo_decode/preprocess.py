from typing import Tuple

import numpy as np


def prepare_input(
    image: np.ndarray,
    input_size: Tuple[int, int] = (640, 640),
    *,
    bgr: bool = True,
    channels_first: bool = True,
) -> np.ndarray:
    """
    Stretch-resize an image to the model input and build a float32 blob in [0, 1].

    No letterbox padding is applied: decoded coordinates map back to the source
    by a plain per-axis scale (source_dim / input_dim).

    Args:
        image: (H, W, 3) uint8 image
        input_size: model input (width, height)
        bgr: True for OpenCV-style BGR input; converted to RGB
        channels_first: (1, 3, H, W) blob if True, (1, H, W, 3) otherwise

    Returns:
        blob: float32 array with a leading batch axis
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for prepare_input(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array.")
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image, 'shape', None)}")

    in_w, in_h = input_size
    h, w = image.shape[:2]
    if (w, h) != (in_w, in_h):
        image = cv2.resize(image, (int(in_w), int(in_h)), interpolation=cv2.INTER_LINEAR)

    if bgr:
        image = image[:, :, ::-1]
    blob = image.astype(np.float32) / 255.0
    if channels_first:
        blob = np.transpose(blob, (2, 0, 1))
    return np.ascontiguousarray(blob[None, ...])
