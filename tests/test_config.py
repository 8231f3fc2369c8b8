import json
import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from anchor_pipeline.ap_types import Intrinsics
from visual_anchors.config import AnchorConfig, IntrinsicsConfig, load_config


def test_load_config_json(tmp_path: Path):
    cfg_path = tmp_path / "cam.json"
    cfg_path.write_text(
        json.dumps(
            {
                "camera_name": "dock",
                "device": 2,
                "fps": 20,
                "width": 640,
                "height": 480,
                "marker_size_m": 0.05,
                "marker_sizes_m": {"gate-1": 0.2},
                "decode_strategies": "raw, global",
                "intrinsics": {"fx": 600, "fy": 610, "cx": 320, "cy": 240},
            }
        ),
        encoding="utf-8",
    )

    cfg = load_config(cfg_path)
    assert cfg.camera_name == "dock"
    assert cfg.device == 2
    assert cfg.fps == 20
    assert (cfg.width, cfg.height) == (640, 480)
    assert cfg.marker_size_m == 0.05
    assert cfg.marker_sizes_m == {"gate-1": 0.2}
    assert cfg.decode_strategies == ["raw", "global"]
    assert cfg.intrinsics == IntrinsicsConfig(600.0, 610.0, 320.0, 240.0)

    cfg.apply_overrides(camera_name="dock2", fps=None)
    assert cfg.camera_name == "dock2"
    assert cfg.fps == 20


def test_load_config_yaml(tmp_path: Path):
    cfg_path = tmp_path / "cam.yaml"
    cfg_path.write_text(
        "camera_name: yamlcam\n"
        "target_fps: 10\n"
        "async_decode: true\n"
        "decode_strategies: [raw, adaptive]\n"
        "max_frames: 7\n",
        encoding="utf-8",
    )
    cfg = load_config(cfg_path)
    assert cfg.camera_name == "yamlcam"
    assert cfg.min_interval_ms == pytest.approx(100.0)
    assert cfg.async_decode is True
    assert cfg.decode_strategies == ["raw", "adaptive"]
    assert cfg.max_frames == 7


def test_config_defaults():
    cfg = AnchorConfig()
    assert cfg.session_root
    assert cfg.marker_size_m == 0.10
    assert cfg.try_rotate_180 is True
    assert cfg.resolve_intrinsics() is None


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.json")


@pytest.mark.parametrize(
    "raw",
    [
        [1, 2, 3],
        {"intrinsics": {"fx": 1.0, "fy": 1.0}},
        {"intrinsics": "fx=1"},
        {"marker_sizes_m": [0.1]},
        {"decode_strategies": 5},
    ],
)
def test_invalid_config_rejected(tmp_path: Path, raw):
    cfg_path = tmp_path / "bad.json"
    cfg_path.write_text(json.dumps(raw), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(cfg_path)


def test_explicit_intrinsics_rescaled_to_working_size():
    cfg = AnchorConfig(width=640, height=360, intrinsics=IntrinsicsConfig(1000, 1000, 640, 360, 1280, 720))
    intr = cfg.resolve_intrinsics()
    assert (intr.fx, intr.fy, intr.cx, intr.cy) == (500.0, 500.0, 320.0, 180.0)


def test_invalid_explicit_intrinsics_are_ignored(caplog):
    cfg = AnchorConfig(intrinsics=IntrinsicsConfig(0.0, 1000.0, 640.0, 360.0), approximate_intrinsics=True)
    with caplog.at_level(logging.WARNING):
        assert cfg.resolve_intrinsics() is None
    assert "Invalid intrinsics" in caplog.text


def test_calibration_file_used_when_no_explicit_values():
    cfg = AnchorConfig(calibration_path="calib.yml")
    expected = Intrinsics(900.0, 900.0, 640.0, 360.0, 1280, 720)
    with patch("visual_anchors.config.load_intrinsics", return_value=expected) as li:
        assert cfg.resolve_intrinsics() is expected
    li.assert_called_once_with("calib.yml", 1280, 720)


def test_approximate_intrinsics_opt_in():
    cfg = AnchorConfig(width=1000, height=500, approximate_intrinsics=True)
    intr = cfg.resolve_intrinsics()
    assert (intr.fx, intr.fy, intr.cx, intr.cy) == (900.0, 450.0, 500.0, 250.0)


def test_pose_settings_carry_sizes():
    cfg = AnchorConfig(marker_size_m=0.08, marker_sizes_m={"big": 0.3})
    s = cfg.pose_settings()
    assert s.intrinsics is None
    assert s.size_for("big") == 0.3
    assert s.size_for("other") == 0.08
