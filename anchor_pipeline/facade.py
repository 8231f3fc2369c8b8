import logging
import time
from typing import Optional

import numpy as np

from .ap_types import PoseSettings, ScanResult
from .strategies.decode_qr import QrDecode
from .strategies.localize_homography import HomographyLocalize
from .strategies.normalize_corners import CornerNormalizer


class AnchorScanner:
    """
    decode -> normalize corners -> estimate pose, for one gray image.

    Intrinsics and marker sizes arrive with every call through PoseSettings.
    A missing pose does not fail the scan: payload and corners are still
    returned with ``pose=None``.
    """

    def __init__(
        self,
        decoder: QrDecode,
        normalizer: Optional[CornerNormalizer] = None,
        localizer: Optional[HomographyLocalize] = None,
        logger: Optional[logging.Logger] = None,
        failure_log_every: int = 10,
    ):
        self.decoder = decoder
        self.normalizer = normalizer or CornerNormalizer()
        self.localizer = localizer or HomographyLocalize()
        self.log = logger or logging.getLogger(__name__)
        self.failure_log_every = max(1, int(failure_log_every))
        self.failure_count = 0

    def _record_failure(self, reason: str) -> None:
        self.failure_count += 1
        n = self.failure_count
        if n == 1 or n % self.failure_log_every == 0:
            self.log.warning("QR scan failed: %s (attempts=%d)", reason, n)

    def scan(
        self,
        image: np.ndarray,
        settings: PoseSettings,
        timestamp_ns: Optional[int] = None,
    ) -> Optional[ScanResult]:
        if image is None or getattr(image, "size", 0) == 0:
            self._record_failure("empty image")
            return None

        dec = self.decoder.decode(image)
        if dec is None:
            self._record_failure("no payload")
            return None

        corners = self.normalizer.normalize(dec.points)
        if corners is None:
            self._record_failure(f"too few corners for {dec.text!r}")
            return None
        self.failure_count = 0

        pose = None
        if settings.intrinsics is not None:
            pose = self.localizer.estimate(corners, settings.size_for(dec.text), settings.intrinsics)
            if pose is None:
                self.log.warning("Pose estimation failed for payload %r", dec.text)

        h, w = image.shape[:2]
        self.log.info("QR detected: %r via %s pose=%s", dec.text, dec.strategy, pose is not None)
        return ScanResult(
            dec.text,
            corners,
            pose,
            int(w),
            int(h),
            timestamp_ns if timestamp_ns is not None else time.time_ns(),
            dec.strategy,
        )
