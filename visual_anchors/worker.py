from __future__ import annotations

import time
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from anchor_pipeline.ap_types import Frame, Intrinsics, ScanResult
from anchor_pipeline.factory import StrategyFactory
from anchor_pipeline.services.storage import SessionStorage

from .async_scan import AsyncScanner
from .capture import BaseCapture, ImageFolderCapture, SyntheticCapture, USBOpenCVCapture
from .config import AnchorConfig
from .logging_utils import add_file_handler, setup_logger
from .output import CsvOutput, OutputSink
from .transforms import pose_to_marker_in_camera


@dataclass
class SessionSummary:
    session_path: str
    frames_processed: int
    detections: int
    poses: int
    csv_path: str
    log_path: str
    avg_fps: float
    errors: int


def annotate(image: np.ndarray, result: ScanResult, intrinsics: Optional[Intrinsics], axis_len: float) -> np.ndarray:
    """Corner polygon, TL marker, payload text and pose axes on a BGR copy."""
    draw = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR) if image.ndim == 2 else image.copy()
    pts = np.round(result.corners.as_array()).astype(np.int32).reshape(-1, 1, 2)
    cv2.polylines(draw, [pts], True, (0, 255, 0), 2, cv2.LINE_AA)
    cv2.circle(draw, tuple(int(v) for v in pts[0, 0]), 6, (0, 0, 255), -1)
    cv2.putText(
        draw,
        result.text[:40],
        (10, 30),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.8,
        (255, 255, 255),
        2,
        cv2.LINE_AA,
    )
    if result.pose is not None and intrinsics is not None:
        rvec, tvec = pose_to_marker_in_camera(result.pose)
        cv2.drawFrameAxes(
            draw, intrinsics.camera_matrix(), np.zeros(5), rvec, tvec, max(0.01, axis_len)
        )
    return draw


class AnchorWorker:
    def __init__(
        self,
        config: AnchorConfig,
        logger=None,
        outputs: Optional[list[OutputSink]] = None,
        capture: Optional[BaseCapture] = None,
    ):
        self.config = config
        self.logger = logger or setup_logger(config.camera_name)
        self.outputs = outputs if outputs is not None else [CsvOutput()]
        self.capture = capture
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def _build_capture(self, intrinsics: Optional[Intrinsics]) -> BaseCapture:
        if self.capture is not None:
            return self.capture
        if self.config.dry_run:
            return SyntheticCapture(
                self.config.fps,
                self.config.width,
                self.config.height,
                intrinsics=intrinsics,
                size_m=self.config.marker_size_m,
            )
        if self.config.input_dir:
            return ImageFolderCapture(self.config.input_dir)
        return USBOpenCVCapture(
            self.config.device,
            self.config.fps,
            self.config.width,
            self.config.height,
        )

    def run(self) -> SessionSummary:
        storage = SessionStorage(self.config.session_root, name=f"{self.config.camera_name}_session")
        session_path = storage.begin()
        storage.write_manifest(self.config.as_dict())

        log_file = str(Path(storage.logs_dir) / "session.log")
        file_handler = add_file_handler(self.logger, self.config.camera_name, log_file)

        settings = self.config.pose_settings()
        if settings.intrinsics is None:
            self.logger.warning("no camera intrinsics configured; scans will carry no pose")

        pre = StrategyFactory.from_config(self.config)[0]
        scanner = StrategyFactory.scanner_from_config(self.config, logger=self.logger)
        cap = self._build_capture(settings.intrinsics)

        for out in self.outputs:
            out.open(Path(storage.session_dir))

        async_scanner = None
        if self.config.async_decode:
            async_scanner = AsyncScanner(
                scanner, settings, self.config.min_interval_ms, logger=self.logger
            )

        self.logger.info("session started: %s", session_path)
        self.logger.info("config: %s", self.config.as_dict())

        counts = {"detections": 0, "poses": 0}
        # frame idx -> saved image path while its scan is outstanding
        frame_paths: dict[int, str] = {}

        def _deliver(f: Frame, res: Optional[ScanResult]) -> None:
            if res is None:
                return
            counts["detections"] += 1
            if res.pose is not None:
                counts["poses"] += 1
            if self.config.save_annotated:
                draw = annotate(f.image, res, settings.intrinsics, settings.size_for(res.text) * 0.5)
                storage.save_annotated(f.idx, draw)
            img_path = frame_paths.pop(f.idx, None)
            ts_unix = time.time()
            for out in self.outputs:
                out.write_scan(ts_unix, f.idx, res, img_path)

        cap.start()
        t0 = time.time()
        frames = 0
        errors = 0

        try:
            while True:
                if self._stop_event.is_set():
                    break
                if self.config.duration_sec and (time.time() - t0) >= self.config.duration_sec:
                    break
                if self.config.max_frames and frames >= self.config.max_frames:
                    break
                if cap.exhausted():
                    break

                f = cap.next_frame()
                if f is None:
                    errors += 1
                    continue

                f = pre.apply(f)
                img_path = None
                if self.config.save_frames:
                    img_path = storage.save_frame(f)
                    frame_paths[f.idx] = img_path

                if async_scanner is None:
                    res = scanner.scan(f.image, settings, f.timestamp_ns)
                    _deliver(f, res)
                    frame_paths.pop(f.idx, None)
                else:
                    accepted = async_scanner.submit(f)
                    if not accepted:
                        self.logger.debug("frame=%d dropped (decoder busy)", f.idx)
                        frame_paths.pop(f.idx, None)
                    pending = async_scanner.poll()
                    res = None
                    if pending is not None:
                        _deliver(*pending)
                        res = pending[1]
                    if accepted:
                        # earlier decodes are finished and their results polled
                        for idx in [i for i in frame_paths if i < f.idx]:
                            del frame_paths[idx]

                self.logger.info(
                    "frame=%d saved=%s qr=%s",
                    f.idx,
                    img_path,
                    res.text if res is not None else "-",
                )
                frames += 1

            if async_scanner is not None:
                async_scanner.wait_idle(timeout=5.0)
                pending = async_scanner.poll()
                if pending is not None:
                    _deliver(*pending)

        finally:
            if async_scanner is not None:
                async_scanner.close()
            try:
                cap.stop()
            except Exception as e:
                self.logger.warning("capture stop failed: %s", e)

            for out in self.outputs:
                try:
                    out.close()
                except Exception as e:
                    self.logger.warning("output close failed: %s", e)

        avg = frames / max(1e-6, (time.time() - t0))
        self.logger.info(
            "summary frames=%d detections=%d poses=%d avg_fps=%.2f errors=%d",
            frames, counts["detections"], counts["poses"], avg, errors,
        )
        self.logger.removeHandler(file_handler)
        file_handler.close()

        csv_path = next(
            (out.path for out in self.outputs if isinstance(out, CsvOutput) and out.path), ""
        )
        return SessionSummary(
            str(session_path),
            frames,
            counts["detections"],
            counts["poses"],
            csv_path,
            log_file,
            avg,
            errors,
        )
