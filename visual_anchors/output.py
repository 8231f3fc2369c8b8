from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from anchor_pipeline.ap_types import ScanResult
from anchor_pipeline.services.csv_writer import ScanCsvWriter


class OutputSink(ABC):
    @abstractmethod
    def open(self, session_dir: Path) -> None: ...

    @abstractmethod
    def write_scan(
        self,
        ts_unix: float,
        frame_idx: int,
        result: ScanResult,
        image_path: Optional[str],
    ) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class CsvOutput(OutputSink):
    def __init__(self, filename: str = "scans.csv"):
        self.filename = filename
        self.path: Optional[str] = None
        self._writer: Optional[ScanCsvWriter] = None

    def open(self, session_dir: Path) -> None:
        self.path = str(session_dir / self.filename)
        self._writer = ScanCsvWriter(self.path)
        self._writer.open()

    def write_scan(
        self,
        ts_unix: float,
        frame_idx: int,
        result: ScanResult,
        image_path: Optional[str],
    ) -> None:
        if self._writer is None:
            return
        self._writer.append(ts_unix, frame_idx, result, image_path)

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None


class CallbackOutput(OutputSink):
    """Push delivery: hands every ScanResult to ``callback(frame_idx, result)``."""

    def __init__(self, callback: Callable[[int, ScanResult], None]):
        self.callback = callback

    def open(self, session_dir: Path) -> None:
        return None

    def write_scan(
        self,
        ts_unix: float,
        frame_idx: int,
        result: ScanResult,
        image_path: Optional[str],
    ) -> None:
        self.callback(frame_idx, result)

    def close(self) -> None:
        return None


class NullOutput(OutputSink):
    def open(self, session_dir: Path) -> None:
        return None

    def write_scan(
        self,
        ts_unix: float,
        frame_idx: int,
        result: ScanResult,
        image_path: Optional[str],
    ) -> None:
        return None

    def close(self) -> None:
        return None
