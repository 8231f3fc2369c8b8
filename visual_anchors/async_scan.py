from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Optional

from anchor_pipeline.ap_types import Frame, PoseSettings, ScanResult
from anchor_pipeline.facade import AnchorScanner

ResultCallback = Callable[[Frame, ScanResult], None]

_STOP = object()


class AsyncScanner:
    """
    Decodes frames on one background thread, never queuing work.

    ``submit`` drops the frame when a decode is still in flight or when it
    arrives sooner than ``min_interval_ms`` after the last accepted frame.
    Results are delivered both by push (callbacks, run on the worker thread)
    and by pull (``poll`` returns the latest unconsumed result).
    """

    def __init__(
        self,
        scanner: AnchorScanner,
        settings: PoseSettings,
        min_interval_ms: float = 0.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.scanner = scanner
        self.settings = settings
        self.min_interval_ns = int(max(0.0, min_interval_ms) * 1_000_000)
        self.log = logger or logging.getLogger(__name__)
        self.dropped = 0
        self.processed = 0

        self._callbacks: list[ResultCallback] = []
        self._inbox: "queue.Queue[object]" = queue.Queue(maxsize=1)
        self._in_flight = threading.Event()
        self._idle = threading.Condition()
        self._lock = threading.Lock()
        self._pending: Optional[tuple[Frame, ScanResult]] = None
        self._last_accept_ns: Optional[int] = None
        self._thread = threading.Thread(target=self._loop, name="qr-decoder", daemon=True)
        self._thread.start()

    def add_callback(self, cb: ResultCallback) -> None:
        self._callbacks.append(cb)

    @property
    def busy(self) -> bool:
        return self._in_flight.is_set()

    def submit(self, frame: Frame) -> bool:
        now = time.monotonic_ns()
        with self._lock:
            if (
                self.min_interval_ns > 0
                and self._last_accept_ns is not None
                and (now - self._last_accept_ns) < self.min_interval_ns
            ):
                self.dropped += 1
                return False
            if self._in_flight.is_set() or not self._thread.is_alive():
                self.dropped += 1
                return False
            self._in_flight.set()
            self._last_accept_ns = now
        self._inbox.put(frame)
        return True

    def poll(self) -> Optional[tuple[Frame, ScanResult]]:
        with self._lock:
            pending, self._pending = self._pending, None
        return pending

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no decode is in flight; False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._in_flight.is_set(), timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        if self._thread.is_alive():
            self._inbox.put(_STOP)
            self._thread.join(timeout)

    def _loop(self) -> None:
        while True:
            item = self._inbox.get()
            if item is _STOP:
                return
            frame = item  # type: Frame
            try:
                self._process(frame)
            except Exception:
                self.log.exception("async scan of frame %s failed", getattr(frame, "idx", "?"))
            finally:
                with self._idle:
                    self._in_flight.clear()
                    self._idle.notify_all()

    def _process(self, frame: Frame) -> None:
        res = self.scanner.scan(frame.image, self.settings, frame.timestamp_ns)
        self.processed += 1
        if res is None:
            return
        with self._lock:
            self._pending = (frame, res)
        for cb in list(self._callbacks):
            try:
                cb(frame, res)
            except Exception:
                self.log.exception("result callback failed")
