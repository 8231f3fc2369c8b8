"""QR visual anchor detection and camera-relative pose service."""

from .config import AnchorConfig, IntrinsicsConfig, load_config
from .async_scan import AsyncScanner
from .worker import AnchorWorker

__all__ = ["AnchorConfig", "IntrinsicsConfig", "load_config", "AsyncScanner", "AnchorWorker"]
