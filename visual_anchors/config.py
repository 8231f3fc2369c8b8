from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Optional

from anchor_pipeline.ap_types import Intrinsics, PoseSettings
from anchor_pipeline.services.calib import load_intrinsics
from anchor_pipeline.strategies.decode_qr import DEFAULT_STRATEGIES

log = logging.getLogger(__name__)


@dataclass
class IntrinsicsConfig:
    """Pinhole intrinsics in pixels, referenced to width x height."""

    fx: float = 0.0
    fy: float = 0.0
    cx: float = 0.0
    cy: float = 0.0
    width: Optional[int] = None  # resolution the values were measured at
    height: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_intrinsics(self) -> Intrinsics:
        return Intrinsics(self.fx, self.fy, self.cx, self.cy, self.width, self.height)


@dataclass
class AnchorConfig:
    camera_name: str = "cam"
    device: int | str = 0
    fps: int = 30
    width: int = 1280
    height: int = 720
    calibration_path: Optional[str] = None
    intrinsics: Optional[IntrinsicsConfig] = None
    approximate_intrinsics: bool = False  # guess fx/fy from the frame size when uncalibrated
    marker_size_m: float = 0.10
    marker_sizes_m: Optional[dict[str, float]] = None  # payload -> side length
    pixel_format: str = "RGBA"
    decode_strategies: Optional[list[str]] = None
    try_rotate_180: bool = True
    min_interval_ms: float = 33.0
    async_decode: bool = False
    session_root: str = "data/sessions"
    duration_sec: float = 30.0
    max_frames: Optional[int] = None
    dry_run: bool = False
    input_dir: Optional[str] = None
    save_frames: bool = False
    save_annotated: bool = True
    failure_log_every: int = 10

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "AnchorConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    def resolve_intrinsics(self) -> Optional[Intrinsics]:
        """
        Intrinsics for the working resolution, or None when unknown.

        Explicit values win over a calibration file; the approximate guess is
        only used when enabled. Invalid explicit values (fx/fy <= 0) are
        logged and treated as unknown.
        """
        if self.intrinsics is not None:
            intr = self.intrinsics.to_intrinsics()
            if not intr.is_valid():
                log.warning("Invalid intrinsics: fx=%s fy=%s", intr.fx, intr.fy)
                return None
            return intr.scaled_to(self.width, self.height)
        if self.calibration_path:
            return load_intrinsics(self.calibration_path, self.width, self.height)
        if self.approximate_intrinsics:
            return Intrinsics.approximate(self.width, self.height)
        return None

    def pose_settings(self) -> PoseSettings:
        return PoseSettings(
            intrinsics=self.resolve_intrinsics(),
            marker_size_m=self.marker_size_m,
            marker_sizes_m=dict(self.marker_sizes_m or {}),
        )


def _normalize_strategies(value: Any) -> Optional[list[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    raise ValueError("decode_strategies must be a list or a comma separated string")


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def load_config(path: str | Path) -> AnchorConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = AnchorConfig()
    cfg.camera_name = str(raw.get("camera_name", cfg.camera_name))
    cfg.device = raw.get("device", cfg.device)
    cfg.fps = int(raw.get("fps", cfg.fps))
    cfg.width = int(raw.get("width", cfg.width))
    cfg.height = int(raw.get("height", cfg.height))
    cfg.calibration_path = raw.get("calibration_path", cfg.calibration_path)
    cfg.approximate_intrinsics = bool(raw.get("approximate_intrinsics", cfg.approximate_intrinsics))
    cfg.marker_size_m = float(raw.get("marker_size_m", cfg.marker_size_m))
    sizes_raw = raw.get("marker_sizes_m", cfg.marker_sizes_m)
    if sizes_raw is not None:
        if not isinstance(sizes_raw, dict):
            raise ValueError("marker_sizes_m must be a mapping of payload -> size_m")
        cfg.marker_sizes_m = {str(k): float(v) for k, v in sizes_raw.items()}
    cfg.pixel_format = str(raw.get("pixel_format", cfg.pixel_format)).upper()
    cfg.decode_strategies = _normalize_strategies(raw.get("decode_strategies", cfg.decode_strategies))
    cfg.try_rotate_180 = bool(raw.get("try_rotate_180", cfg.try_rotate_180))
    cfg.min_interval_ms = float(raw.get("min_interval_ms", cfg.min_interval_ms))
    if "target_fps" in raw and float(raw["target_fps"]) > 0:
        cfg.min_interval_ms = 1000.0 / float(raw["target_fps"])
    cfg.async_decode = bool(raw.get("async_decode", cfg.async_decode))
    cfg.session_root = str(raw.get("session_root", cfg.session_root))
    cfg.duration_sec = float(raw.get("duration_sec", cfg.duration_sec))
    cfg.max_frames = raw.get("max_frames", cfg.max_frames)
    if cfg.max_frames is not None:
        cfg.max_frames = int(cfg.max_frames)
    cfg.dry_run = bool(raw.get("dry_run", cfg.dry_run))
    cfg.input_dir = raw.get("input_dir", cfg.input_dir)
    cfg.save_frames = bool(raw.get("save_frames", cfg.save_frames))
    cfg.save_annotated = bool(raw.get("save_annotated", cfg.save_annotated))
    cfg.failure_log_every = int(raw.get("failure_log_every", cfg.failure_log_every))

    intr_raw = raw.get("intrinsics")
    if intr_raw is not None:
        if not isinstance(intr_raw, dict):
            raise ValueError("intrinsics must be a mapping with fx, fy, cx, cy")
        missing = [k for k in ("fx", "fy", "cx", "cy") if k not in intr_raw]
        if missing:
            raise ValueError(f"intrinsics missing keys: {', '.join(missing)}")
        ic = IntrinsicsConfig()
        ic.fx = float(intr_raw["fx"])
        ic.fy = float(intr_raw["fy"])
        ic.cx = float(intr_raw["cx"])
        ic.cy = float(intr_raw["cy"])
        if intr_raw.get("width") is not None:
            ic.width = int(intr_raw["width"])
        if intr_raw.get("height") is not None:
            ic.height = int(intr_raw["height"])
        cfg.intrinsics = ic

    return cfg


__all__ = ["AnchorConfig", "IntrinsicsConfig", "load_config", "DEFAULT_STRATEGIES"]
