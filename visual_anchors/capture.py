import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import cv2
import numpy as np

from anchor_pipeline.ap_types import Frame, Intrinsics, MarkerGeometry

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff"}


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S")


class BaseCapture(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def next_frame(self) -> Frame | None: ...

    @abstractmethod
    def stop(self) -> None: ...

    def exhausted(self) -> bool:
        """True once a finite source has nothing left to deliver."""
        return False


class USBOpenCVCapture(BaseCapture):
    def __init__(self, device: int | str, fps: int, width: int, height: int):
        self.device = device
        self.fps = fps
        self.width = width
        self.height = height
        self.cap: Any = None
        self.idx = 0

    def start(self) -> None:
        if isinstance(self.device, int):
            self.cap = cv2.VideoCapture(self.device, cv2.CAP_V4L2)
        else:
            match = re.match(r"^/dev/video(\d+)$", str(self.device))
            if match:
                self.cap = cv2.VideoCapture(int(match.group(1)), cv2.CAP_V4L2)
            else:
                self.cap = cv2.VideoCapture(str(self.device))

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open camera: {self.device}")

    def next_frame(self) -> Frame | None:
        ok, img = self.cap.read()
        if not ok:
            return None
        self.idx += 1
        return Frame(self.idx, _now_iso(), img, time.time_ns())

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class ImageFolderCapture(BaseCapture):
    """Replays still images (sorted by name) from a folder or a single file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.files: list[Path] = []
        self.idx = 0

    def start(self) -> None:
        if self.path.is_file():
            self.files = [self.path]
        elif self.path.is_dir():
            self.files = sorted(
                p for p in self.path.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES
            )
        else:
            raise FileNotFoundError(f"Input not found: {self.path}")
        self.idx = 0

    def next_frame(self) -> Frame | None:
        if self.exhausted():
            return None
        p = self.files[self.idx]
        self.idx += 1
        img = cv2.imread(str(p), cv2.IMREAD_UNCHANGED)
        if img is None:
            return None
        return Frame(self.idx, _now_iso(), img, time.time_ns())

    def exhausted(self) -> bool:
        return self.idx >= len(self.files)

    def stop(self) -> None:
        return None


def make_qr_symbol(text: str) -> np.ndarray:
    """QR symbol for ``text``, one pixel per module, cropped to the finder edges."""
    sym = cv2.QRCodeEncoder.create().encode(text)
    if sym.ndim == 3:
        sym = cv2.cvtColor(sym, cv2.COLOR_BGR2GRAY)
    ys, xs = np.where(sym < 128)
    return np.ascontiguousarray(sym[ys.min(): ys.max() + 1, xs.min(): xs.max() + 1])


def render_marker(
    symbol: np.ndarray,
    size_m: float,
    intrinsics: Intrinsics,
    R: np.ndarray,
    t: np.ndarray,
    width: int,
    height: int,
) -> np.ndarray:
    """
    Project ``symbol`` as a square of side ``size_m`` placed by the
    marker -> camera transform (R, t) onto a white gray frame.
    """
    n = symbol.shape[0]
    h = size_m * 0.5
    scale = size_m / n
    # symbol pixel (u, v) -> marker plane (X, Y); pixel edges sit at -0.5
    S = np.array(
        [[scale, 0.0, -h + 0.5 * scale], [0.0, -scale, h - 0.5 * scale], [0.0, 0.0, 1.0]]
    )
    R = np.asarray(R, dtype=np.float64)
    t = np.asarray(t, dtype=np.float64).reshape(3)
    H = intrinsics.camera_matrix() @ np.column_stack((R[:, 0], R[:, 1], t)) @ S
    return cv2.warpPerspective(
        symbol,
        H,
        (width, height),
        flags=cv2.INTER_NEAREST,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=255,
    )


def project_marker_corners(size_m: float, intrinsics: Intrinsics, R, t) -> np.ndarray:
    """Pixel positions of the marker corners (TL, TR, BR, BL) under (R, t)."""
    obj = np.hstack([MarkerGeometry(size_m).object_points(), np.zeros((4, 1))])
    cam = obj @ np.asarray(R, dtype=np.float64).T + np.asarray(t, dtype=np.float64).reshape(1, 3)
    uvw = cam @ intrinsics.camera_matrix().T
    return uvw[:, :2] / uvw[:, 2:3]


# Marker facing the camera: marker +Y is image up, marker +Z points at the camera.
FACING_CAMERA = np.diag([1.0, -1.0, -1.0])


class SyntheticCapture(BaseCapture):
    """
    Renders a QR marker at a known pose, slowly yawing, for dry runs.
    """

    def __init__(
        self,
        fps: int,
        width: int,
        height: int,
        intrinsics: Optional[Intrinsics] = None,
        text: str = "visual-anchor",
        size_m: float = 0.10,
        distance_m: float = 0.5,
        yaw_step_deg: float = 2.0,
    ):
        self.fps = fps
        self.width = width
        self.height = height
        # Square pixels, principal point at the centre
        self.intrinsics = intrinsics or Intrinsics(
            0.9 * width, 0.9 * width, width * 0.5, height * 0.5, int(width), int(height)
        )
        self.size_m = size_m
        self.distance_m = distance_m
        self.yaw_step_deg = yaw_step_deg
        self.symbol = make_qr_symbol(text)
        self.idx = 0
        self._last = 0.0

    def start(self) -> None:
        self._last = time.time()

    def pose_for(self, idx: int) -> tuple[np.ndarray, np.ndarray]:
        """Marker -> camera (R, t) used for frame ``idx``."""
        yaw = np.deg2rad(self.yaw_step_deg * (idx - 1))
        R_yaw, _ = cv2.Rodrigues(np.array([0.0, yaw, 0.0]))
        return R_yaw @ FACING_CAMERA, np.array([0.0, 0.0, self.distance_m])

    def next_frame(self) -> Frame | None:
        if self.fps > 0:
            wait = max(0.0, (1.0 / self.fps) - (time.time() - self._last))
            if wait > 0:
                time.sleep(wait)
        self._last = time.time()
        self.idx += 1
        R, t = self.pose_for(self.idx)
        img = render_marker(
            self.symbol, self.size_m, self.intrinsics, R, t, self.width, self.height
        )
        return Frame(self.idx, _now_iso(), img, time.time_ns())

    def stop(self) -> None:
        return None
