import logging
from typing import Optional

import numpy as np

from ..ap_types import CornerSet, Intrinsics, MarkerGeometry, Pose

log = logging.getLogger(__name__)

# Smallest accepted ratio between the extreme singular values of H.
_MIN_H_CONDITION = 1e-12


def has_collinear_triple(pts: np.ndarray, rel_eps: float = 1e-9) -> bool:
    """True when any three consecutive corners of the quad are (nearly) collinear."""
    pts = np.asarray(pts, dtype=np.float64).reshape(4, 2)
    scale = max(float(np.max(np.sum((pts - np.roll(pts, -1, axis=0)) ** 2, axis=1))), 1e-300)
    for i in range(4):
        a, b, c = pts[i], pts[(i + 1) % 4], pts[(i + 2) % 4]
        cross = (b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0])
        if abs(cross) <= rel_eps * scale:
            return True
    return False


def solve_homography(src: np.ndarray, dst: np.ndarray) -> Optional[np.ndarray]:
    """
    Exact 4-point homography mapping ``src`` onto ``dst`` (both (4, 2)).

    Solves the 8x8 system with h33 fixed to 1. Returns None when the system is
    singular or the resulting H cannot be inverted (collinear or coincident
    points on either side).
    """
    src = np.asarray(src, dtype=np.float64).reshape(4, 2)
    dst = np.asarray(dst, dtype=np.float64).reshape(4, 2)
    if has_collinear_triple(src) or has_collinear_triple(dst):
        return None

    A = np.zeros((8, 8), dtype=np.float64)
    b = np.zeros(8, dtype=np.float64)
    for i, ((x, y), (u, v)) in enumerate(zip(src, dst)):
        A[2 * i] = [x, y, 1.0, 0.0, 0.0, 0.0, -x * u, -y * u]
        A[2 * i + 1] = [0.0, 0.0, 0.0, x, y, 1.0, -x * v, -y * v]
        b[2 * i] = u
        b[2 * i + 1] = v

    try:
        h = np.linalg.solve(A, b)
    except np.linalg.LinAlgError:
        return None

    H = np.append(h, 1.0).reshape(3, 3)
    if not np.all(np.isfinite(H)):
        return None
    s = np.linalg.svd(H, compute_uv=False)
    if not s[0] > 0.0 or s[-1] <= s[0] * _MIN_H_CONDITION:
        return None
    return H


def _normalized(v: np.ndarray) -> np.ndarray:
    n = np.linalg.norm(v)
    return v / n if n > 0.0 else v


class HomographyLocalize:
    """
    Strategy: closed-form marker pose from a planar homography H = K [r1 r2 t].

    Returns the camera -> marker transform, or None when the inputs are invalid
    or the geometry is degenerate. Never raises on bad geometry.
    """

    def estimate(
        self, corners: Optional[CornerSet], size_m: float, intrinsics: Optional[Intrinsics]
    ) -> Optional[Pose]:
        if corners is None:
            log.warning("Invalid corners (none)")
            return None
        if not size_m > 0.0:
            log.warning("Invalid physical size (<=0): %s", size_m)
            return None
        if intrinsics is None or not intrinsics.is_valid():
            log.warning("Invalid intrinsics (fx/fy <= 0): %s", intrinsics)
            return None

        dst = corners.as_array()
        if not np.all(np.isfinite(dst)):
            log.warning("Invalid corners (non-finite)")
            return None

        src = MarkerGeometry(float(size_m)).object_points()
        H = solve_homography(src, dst)
        if H is None:
            log.info("Homography failed (degenerate corners)")
            return None

        Hn = intrinsics.inverse_matrix() @ H
        h1, h2, h3 = Hn[:, 0], Hn[:, 1], Hn[:, 2]

        lam = (np.linalg.norm(h1) + np.linalg.norm(h2)) * 0.5
        if not lam > 0.0:
            log.info("Normalization failed (lambda <= 0)")
            return None

        r1 = h1 / lam
        r2 = h2 / lam
        t = h3 / lam
        r3 = np.cross(r1, r2)

        if np.linalg.det(np.column_stack((r1, r2, r3))) < 0.0:
            r3 = -r3

        r1 = _normalized(r1)
        r2 = _normalized(np.cross(r3, r1))
        r3 = _normalized(np.cross(r1, r2))

        # [R|t] maps marker -> camera; T_mc = [R^T, -R^T t]
        R = np.column_stack((r1, r2, r3))
        if not np.all(np.isfinite(R)) or not np.all(np.isfinite(t)):
            log.info("Pose rejected (non-finite rotation or translation)")
            return None
        if abs(np.linalg.det(R) - 1.0) > 1e-6:
            log.info("Pose rejected (rotation collapsed, det=%.3g)", np.linalg.det(R))
            return None
        R_inv = R.T
        t_inv = R_inv @ (-t)
        return Pose(R_inv, t_inv)
