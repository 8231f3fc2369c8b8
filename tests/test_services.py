import csv
import json
import math
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from anchor_pipeline.ap_types import CornerSet, Frame, Pose, ScanResult
from anchor_pipeline.services.calib import load_calib, load_intrinsics
from anchor_pipeline.services.csv_writer import ScanCsvWriter
from anchor_pipeline.services.storage import SessionStorage

CORNERS = CornerSet.from_array([[10, 20], [30, 20], [30, 40], [10, 40]])


def test_session_storage_creates_dirs_and_manifest(tmp_path):
    """SessionStorage should create directories, save frames, and emit config."""
    storage = SessionStorage(tmp_path, name="demo")
    session_dir = Path(storage.begin())
    assert (session_dir / "frames").exists()
    assert (session_dir / "annotated").exists()
    assert (session_dir / "logs").exists()

    frame = Frame(1, "ts", np.zeros((2, 2), dtype=np.uint8))
    storage.save_frame(frame)
    assert storage.last_path.endswith("f000001.png")
    assert Path(storage.last_path).exists()
    annotated_path = storage.save_annotated(frame.idx, np.zeros((2, 2, 3), dtype=np.uint8))
    assert annotated_path.endswith("_qr.jpg")

    storage.write_manifest({"name": "demo", "path": tmp_path})
    manifest = json.loads((session_dir / "config.json").read_text())
    assert manifest["name"] == "demo"
    assert manifest["path"] == str(tmp_path)


def test_session_storage_never_reuses_a_directory(tmp_path):
    first = SessionStorage(tmp_path, name="demo").begin()
    second = SessionStorage(tmp_path, name="demo").begin()
    assert first != second


def test_csv_writer_persists_rows(tmp_path):
    csv_path = tmp_path / "scans.csv"
    writer = ScanCsvWriter(str(csv_path))
    writer.open()
    with_pose = ScanResult("a", CORNERS, Pose(np.eye(3), [0.1, 0.2, 0.3]), 64, 48, 1, "raw")
    without_pose = ScanResult("b", CORNERS, None, 64, 48, 2, "global")
    writer.append(1.234567, 1, with_pose, "/tmp/img.png")
    writer.append(2.0, 2, without_pose, None)
    writer.close()

    with csv_path.open(newline="") as fp:
        rows = list(csv.DictReader(fp))
    assert len(rows) == 2
    assert rows[0]["recorded_at"] == "1.234567"
    assert rows[0]["payload"] == "a"
    assert rows[0]["pose_ok"] == "1"
    assert float(rows[0]["m12"]) == pytest.approx(0.1)
    assert float(rows[0]["m14"]) == pytest.approx(0.3)
    assert float(rows[0]["x2"]) == 30.0
    assert rows[1]["pose_ok"] == "0"
    assert math.isnan(float(rows[1]["m00"]))
    assert rows[1]["image_path"] == ""

    inline = ScanCsvWriter.to_csv_line(3.0, 5, without_pose, "img")
    assert inline.startswith("3.000000,5,b,global")
    assert inline.endswith(",img")


def _file_storage(K):
    fs = MagicMock()
    fs.isOpened.return_value = True
    matrix_node = MagicMock()
    matrix_node.mat.return_value = K
    dist_node = MagicMock()
    dist_node.mat.return_value = "D"
    width_node = MagicMock()
    width_node.real.return_value = 1280
    height_node = MagicMock()
    height_node.real.return_value = 720
    fs.getNode.side_effect = [matrix_node, dist_node, width_node, height_node]
    return fs


def test_load_calib_reads_expected_nodes():
    """load_calib must pull the expected nodes from cv2.FileStorage."""
    K = np.array([[1000.0, 0, 640], [0, 1000.0, 360], [0, 0, 1]])
    fs = _file_storage(K)

    with patch("anchor_pipeline.services.calib.cv2.FileStorage", return_value=fs):
        K_out, dist, size = load_calib("calib.yml")

    assert K_out is K
    assert dist == "D"
    assert size == (1280, 720)
    fs.release.assert_called_once()


def test_load_intrinsics_rescales():
    K = np.array([[1000.0, 0, 640], [0, 1000.0, 360], [0, 0, 1]])
    with patch("anchor_pipeline.services.calib.cv2.FileStorage", return_value=_file_storage(K)):
        intr = load_intrinsics("calib.yml", 640, 360)
    assert (intr.fx, intr.cx, intr.cy) == (500.0, 320.0, 180.0)


def test_load_calib_errors():
    closed = MagicMock()
    closed.isOpened.return_value = False
    with patch("anchor_pipeline.services.calib.cv2.FileStorage", return_value=closed):
        with pytest.raises(FileNotFoundError):
            load_calib("missing.yml")

    with patch("anchor_pipeline.services.calib.cv2.FileStorage", return_value=_file_storage(None)):
        with pytest.raises(ValueError):
            load_calib("broken.yml")
