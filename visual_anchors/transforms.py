"""SE(3) helpers around the camera -> marker Pose."""

import numpy as np
import cv2
from typing import Sequence, Tuple

from anchor_pipeline.ap_types import Pose


def rvec_tvec_to_matrix(rvec: np.ndarray, tvec: np.ndarray) -> np.ndarray:
    """
    Convert rotation vector and translation vector to 4x4 transformation matrix.

    Args:
        rvec: Rotation vector (3,) or (3,1)
        tvec: Translation vector (3,) or (3,1)

    Returns:
        4x4 homogeneous transformation matrix
    """
    rvec = np.asarray(rvec, dtype=np.float64).reshape(3, 1)
    tvec = np.asarray(tvec, dtype=np.float64).reshape(3)

    R, _ = cv2.Rodrigues(rvec)

    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = tvec
    return T


def matrix_to_rvec_tvec(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """4x4 transform -> (rvec, tvec), both (3, 1)."""
    R = np.ascontiguousarray(T[:3, :3], dtype=np.float64)
    tvec = np.asarray(T[:3, 3], dtype=np.float64).reshape(3, 1)
    rvec, _ = cv2.Rodrigues(R)
    return rvec, tvec


def pose_to_marker_in_camera(pose: Pose) -> Tuple[np.ndarray, np.ndarray]:
    """
    rvec/tvec of the marker frame expressed in the camera frame.

    This is the direction OpenCV drawing and projection helpers expect; the
    estimator itself returns the inverse (camera -> marker).
    """
    return matrix_to_rvec_tvec(pose.inverse().as_matrix())


def column_major_to_matrix(values: Sequence[float]) -> np.ndarray:
    """16-element column-major layout back to a 4x4 matrix."""
    a = np.asarray(values, dtype=np.float64).reshape(-1)
    if a.size != 16:
        raise ValueError(f"expected 16 values, got {a.size}")
    return a.reshape(4, 4).T.copy()


def rotation_angle_between(R_a: np.ndarray, R_b: np.ndarray) -> float:
    """Angle in radians of the relative rotation R_a^T R_b."""
    R_rel = np.asarray(R_a, dtype=np.float64).T @ np.asarray(R_b, dtype=np.float64)
    c = (np.trace(R_rel) - 1.0) * 0.5
    return float(np.arccos(np.clip(c, -1.0, 1.0)))
