import numpy as np
import pytest
import cv2

from anchor_pipeline.ap_types import Intrinsics

# Marker facing the camera: image "up" is marker +Y, marker +Z points back at the camera.
FACING = np.diag([1.0, -1.0, -1.0])


def rotation(rx_deg=0.0, ry_deg=0.0, rz_deg=0.0):
    """Rz @ Ry @ Rx built from Rodrigues vectors (degrees)."""
    Rx, _ = cv2.Rodrigues(np.array([np.deg2rad(rx_deg), 0.0, 0.0]))
    Ry, _ = cv2.Rodrigues(np.array([0.0, np.deg2rad(ry_deg), 0.0]))
    Rz, _ = cv2.Rodrigues(np.array([0.0, 0.0, np.deg2rad(rz_deg)]))
    return Rz @ Ry @ Rx


def project(R, t, size_m, intrinsics):
    """Pixel corners TL, TR, BR, BL of a marker placed by marker->camera (R, t)."""
    h = size_m / 2.0
    obj = np.array([[-h, h, 0.0], [h, h, 0.0], [h, -h, 0.0], [-h, -h, 0.0]])
    cam = obj @ np.asarray(R).T + np.asarray(t).reshape(1, 3)
    uvw = cam @ intrinsics.camera_matrix().T
    return uvw[:, :2] / uvw[:, 2:3]


@pytest.fixture
def hd_intrinsics():
    """fx=fy=1000 px, principal point at the centre of a 1280x720 frame."""
    return Intrinsics(1000.0, 1000.0, 640.0, 360.0, 1280, 720)
