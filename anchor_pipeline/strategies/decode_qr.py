import logging
from typing import Callable, Optional, Sequence

import cv2
import numpy as np

from ..ap_types import DecodeResult, Point2D

log = logging.getLogger(__name__)


def _adaptive(gray: np.ndarray) -> np.ndarray:
    return cv2.adaptiveThreshold(
        gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 51, 5
    )


def _global(gray: np.ndarray) -> np.ndarray:
    _t, out = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    return out


# Ordered binarizations tried on every frame; the first one that yields a
# payload wins.
BINARIZERS: dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "raw": lambda g: g,
    "adaptive": _adaptive,
    "global": _global,
    "adaptive_inverted": lambda g: _adaptive(cv2.bitwise_not(g)),
    "global_inverted": lambda g: _global(cv2.bitwise_not(g)),
}

DEFAULT_STRATEGIES = ("raw", "adaptive", "global", "adaptive_inverted", "global_inverted")


def get_binarizer(name: str) -> Callable[[np.ndarray], np.ndarray]:
    key = (name or "").strip().lower()
    if key not in BINARIZERS:
        raise ValueError(f"Unknown decode strategy: {name!r} (known: {', '.join(BINARIZERS)})")
    return BINARIZERS[key]


class QrDecode:
    """
    Strategy: decode one QR payload plus its point candidates from a gray image.

    Each binarization is tried in order and returns a present/absent result;
    the first hit short-circuits. Points are left unordered, the
    CornerNormalizer takes care of that.
    """

    def __init__(self, strategies: Sequence[str] = DEFAULT_STRATEGIES, try_rotate_180: bool = True):
        self.strategies = [(s.strip().lower(), get_binarizer(s)) for s in strategies]
        self.try_rotate_180 = try_rotate_180
        self._detector = cv2.QRCodeDetector()

    def decode(self, image: np.ndarray) -> Optional[DecodeResult]:
        if image is None or image.size == 0:
            return None
        gray = image
        if gray.ndim == 3:
            gray = cv2.cvtColor(gray, cv2.COLOR_BGR2GRAY)

        res = self._decode_all(gray)
        if res is not None or not self.try_rotate_180:
            return res

        # Cheap fallback: retry upside down, then map points back.
        res = self._decode_all(cv2.rotate(gray, cv2.ROTATE_180))
        if res is None:
            return None
        h, w = gray.shape[:2]
        res.points = [Point2D(w - 1 - p.x, h - 1 - p.y) for p in res.points]
        res.strategy = f"{res.strategy}+rot180"
        return res

    def _decode_all(self, gray: np.ndarray) -> Optional[DecodeResult]:
        for name, binarize in self.strategies:
            res = self._try_decode(binarize(gray), name)
            if res is not None:
                return res
        return None

    def _try_decode(self, img: np.ndarray, name: str) -> Optional[DecodeResult]:
        try:
            text, points, _straight = self._detector.detectAndDecode(img)
        except cv2.error:
            log.exception("decode attempt %s: unexpected OpenCV error", name)
            return None
        if not text or points is None:
            return None
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if len(pts) < 3:
            return None
        log.debug("QR via %s: %r points=%d", name, text, len(pts))
        return DecodeResult(text, [Point2D(float(x), float(y)) for x, y in pts], name)
