import cv2, numpy as np
from typing import Optional, Tuple

from ..ap_types import Intrinsics

def load_calib(path: str) -> Tuple[np.ndarray, np.ndarray, tuple[int,int]]:
    fs = cv2.FileStorage(path, cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise FileNotFoundError(f"Calibration not readable: {path}")
    K = fs.getNode("camera_matrix").mat()
    dist = fs.getNode("dist_coeffs").mat()
    w = int(fs.getNode("image_width").real()); h = int(fs.getNode("image_height").real())
    fs.release()
    if K is None or K.shape != (3, 3):
        raise ValueError(f"camera_matrix missing or not 3x3 in {path}")
    return K, dist, (w, h)

def load_intrinsics(path: str, width: Optional[int] = None, height: Optional[int] = None) -> Intrinsics:
    """Calibration file -> Intrinsics, rescaled when the working size differs."""
    K, _dist, size = load_calib(path)
    intr = Intrinsics.from_camera_matrix(K, size if size[0] > 0 and size[1] > 0 else None)
    if width and height:
        intr = intr.scaled_to(width, height)
    return intr
