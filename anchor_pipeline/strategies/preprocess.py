from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

from ..ap_types import Frame

# Byte offsets of (R, G, B) inside one 4-byte pixel.
PIXEL_FORMATS = {
    "RGBA": (0, 1, 2),
    "BGRA": (2, 1, 0),
    "ARGB": (1, 2, 3),
    "ABGR": (3, 2, 1),
}


def pack_luma(buf, width: int, height: int, stride: int) -> Optional[np.ndarray]:
    """Strided Y plane -> tight (height, width) uint8 image."""
    if buf is None or width <= 0 or height <= 0 or stride <= 0 or stride < width:
        return None
    data = np.frombuffer(bytes(buf), dtype=np.uint8) if not isinstance(buf, np.ndarray) else buf.reshape(-1)
    needed = (height - 1) * stride + width
    if data.size < needed:
        return None
    if data.size < height * stride:
        data = np.concatenate([data, np.zeros(height * stride - data.size, dtype=np.uint8)])
    rows = data[: height * stride].reshape(height, stride)
    return np.ascontiguousarray(rows[:, :width], dtype=np.uint8)


def luma_from_4bpp(
    buf, width: int, height: int, stride: int, pixel_format: str = "RGBA"
) -> Optional[np.ndarray]:
    """
    4-byte-per-pixel buffer -> gray image.

    ``stride`` may be given in bytes or in pixels; values too small to hold a
    row of bytes are treated as pixels. Unknown formats fall back to RGBA.
    """
    if buf is None or width <= 0 or height <= 0 or stride <= 0:
        return None
    stride_bytes = stride
    if stride_bytes < width * 4:
        stride_bytes *= 4
    if stride_bytes < width * 4:
        stride_bytes = width * 4

    data = np.frombuffer(bytes(buf), dtype=np.uint8) if not isinstance(buf, np.ndarray) else buf.reshape(-1)
    if data.size < (height - 1) * stride_bytes + width * 4:
        return None
    if data.size < height * stride_bytes:
        data = np.concatenate([data, np.zeros(height * stride_bytes - data.size, dtype=np.uint8)])
    pixels = data[: height * stride_bytes].reshape(height, stride_bytes)[:, : width * 4]
    pixels = pixels.reshape(height, width, 4)

    ri, gi, bi = PIXEL_FORMATS.get((pixel_format or "RGBA").upper(), PIXEL_FORMATS["RGBA"])
    bgr = np.ascontiguousarray(pixels[:, :, [bi, gi, ri]])
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)


class PreprocessStrategy(ABC):
    @abstractmethod
    def apply(self, f: Frame) -> Frame: ...


class LumaFrame(PreprocessStrategy):
    """Reduce camera frames to the single luma channel the decoder reads."""

    def apply(self, f: Frame) -> Frame:
        img = f.image
        if img is None or img.ndim == 2:
            return f
        if img.shape[2] == 4:
            g = cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
        else:
            g = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        return Frame(f.idx, f.ts_iso, g, f.timestamp_ns)
