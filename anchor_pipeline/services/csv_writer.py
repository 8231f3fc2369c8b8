import csv
import io
import math

from ..ap_types import ScanResult

CORNER_COLS = [f"{c}{i}" for i in range(4) for c in ("x", "y")]
POSE_COLS = [f"m{i:02d}" for i in range(16)]


class ScanCsvWriter:
    # One row per scan; pose columns hold the column-major 4x4 camera->marker matrix
    HEADER = [
        "recorded_at",
        "frame_idx", "payload", "strategy",
        "width", "height",
        *CORNER_COLS,
        "pose_ok",
        *POSE_COLS,
        "image_path",
    ]

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        self._fh = None
        self._w = None

    def open(self):
        self._fh = open(self.csv_path, "w", newline="", encoding="utf-8")
        self._w = csv.writer(self._fh)
        self._w.writerow(self.HEADER)

    @classmethod
    def row(cls, ts_unix, frame_idx, result: ScanResult, img_path):
        if result.pose is not None:
            pose = [float(v) for v in result.pose.to_column_major()]
        else:
            pose = [math.nan] * 16
        return [
            f"{ts_unix:.6f}",
            frame_idx, result.text, result.strategy,
            result.width, result.height,
            *result.corners.flat(),
            int(result.pose is not None),
            *pose,
            img_path or "",
        ]

    def append(self, ts_unix, frame_idx, result: ScanResult, img_path):
        self._w.writerow(self.row(ts_unix, frame_idx, result, img_path))
        self._fh.flush()

    @classmethod
    def to_csv_line(cls, ts_unix, frame_idx, result: ScanResult, img_path):
        buf = io.StringIO()
        csv.writer(buf).writerow(cls.row(ts_unix, frame_idx, result, img_path))
        return buf.getvalue().strip()

    def close(self):
        if self._fh:
            self._fh.close()
            self._fh = None
            self._w = None
