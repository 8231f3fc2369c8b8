from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, NamedTuple, Optional, Sequence

import numpy as np


class Point2D(NamedTuple):
    x: float
    y: float


@dataclass(frozen=True)
class CornerSet:
    """Four image corners ordered TL, TR, BR, BL (clockwise, Y down)."""

    points: tuple[Point2D, Point2D, Point2D, Point2D]

    def __post_init__(self):
        pts = tuple(Point2D(float(p[0]), float(p[1])) for p in self.points)
        if len(pts) != 4:
            raise ValueError(f"CornerSet needs exactly 4 points, got {len(pts)}")
        object.__setattr__(self, "points", pts)

    @classmethod
    def from_array(cls, arr: Any) -> "CornerSet":
        a = np.asarray(arr, dtype=np.float64).reshape(-1, 2)
        return cls(tuple(Point2D(float(x), float(y)) for x, y in a))

    def as_array(self) -> np.ndarray:
        return np.array(self.points, dtype=np.float64)

    def flat(self) -> list[float]:
        return [c for p in self.points for c in p]


@dataclass(frozen=True)
class Intrinsics:
    fx: float
    fy: float
    cx: float
    cy: float
    width: Optional[int] = None
    height: Optional[int] = None

    def is_valid(self) -> bool:
        return self.fx > 0 and self.fy > 0

    def camera_matrix(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def inverse_matrix(self) -> np.ndarray:
        fx, fy = float(self.fx), float(self.fy)
        return np.array(
            [
                [1.0 / fx, 0.0, -self.cx / fx],
                [0.0, 1.0 / fy, -self.cy / fy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    def scaled_to(self, width: int, height: int) -> "Intrinsics":
        """Rescale to another working resolution.

        Without a reference resolution there is nothing to scale from, so the
        intrinsics are returned unchanged.
        """
        if not self.width or not self.height:
            return self
        sx = width / float(self.width)
        sy = height / float(self.height)
        return Intrinsics(
            self.fx * sx, self.fy * sy, self.cx * sx, self.cy * sy, int(width), int(height)
        )

    @classmethod
    def approximate(cls, width: int, height: int) -> "Intrinsics":
        # Rough guess for uncalibrated cameras, principal point at the centre.
        return cls(width * 0.9, height * 0.9, width * 0.5, height * 0.5, int(width), int(height))

    @classmethod
    def from_camera_matrix(cls, K: Any, size: Optional[tuple[int, int]] = None) -> "Intrinsics":
        K = np.asarray(K, dtype=np.float64).reshape(3, 3)
        w, h = size if size is not None else (None, None)
        return cls(float(K[0, 0]), float(K[1, 1]), float(K[0, 2]), float(K[1, 2]), w, h)


@dataclass(frozen=True)
class MarkerGeometry:
    side_m: float

    def object_points(self) -> np.ndarray:
        """Marker-plane square centred on the origin, in TL, TR, BR, BL order."""
        h = self.side_m * 0.5
        return np.array([[-h, h], [h, h], [h, -h], [-h, -h]], dtype=np.float64)


@dataclass(frozen=True, eq=False)
class Pose:
    """Camera -> marker rigid transform (rotation + translation)."""

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self):
        R = np.array(self.rotation, dtype=np.float64).reshape(3, 3)
        t = np.array(self.translation, dtype=np.float64).reshape(3)
        R.setflags(write=False)
        t.setflags(write=False)
        object.__setattr__(self, "rotation", R)
        object.__setattr__(self, "translation", t)

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_column_major(self) -> np.ndarray:
        return self.as_matrix().T.reshape(16).astype(np.float32)

    def inverse(self) -> "Pose":
        R_T = self.rotation.T
        return Pose(R_T, -R_T @ self.translation)


@dataclass
class Frame:
    idx: int
    ts_iso: str
    image: Any  # numpy array
    timestamp_ns: Optional[int] = None


@dataclass
class DecodeResult:
    text: str
    points: list[Point2D]
    strategy: str = ""


@dataclass
class ScanResult:
    text: str
    corners: CornerSet
    pose: Optional[Pose]
    width: int
    height: int
    timestamp_ns: Optional[int] = None
    strategy: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "payload": self.text,
            "corners": self.corners.flat(),
            "pose": None if self.pose is None else [float(v) for v in self.pose.to_column_major()],
            "width": self.width,
            "height": self.height,
            "timestamp_ns": self.timestamp_ns,
        }


@dataclass(frozen=True)
class PoseSettings:
    intrinsics: Optional[Intrinsics] = None
    marker_size_m: float = 0.10
    marker_sizes_m: Mapping[str, float] = field(default_factory=dict)

    def size_for(self, payload: Optional[str]) -> float:
        if payload is not None:
            override = self.marker_sizes_m.get(payload)
            if override is not None and override > 0:
                return float(override)
        return float(self.marker_size_m)


def as_points(candidates: Sequence[Any]) -> list[Optional[Point2D]]:
    """Coerce (x, y) pairs, arrays or ``None`` entries into Point2D candidates."""
    out: list[Optional[Point2D]] = []
    for c in candidates:
        if c is None:
            out.append(None)
            continue
        a = np.asarray(c, dtype=np.float64).reshape(-1)
        out.append(Point2D(float(a[0]), float(a[1])))
    return out
