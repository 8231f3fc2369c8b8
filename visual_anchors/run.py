import argparse
import json
import signal
import sys
from typing import Optional

import cv2

from anchor_pipeline.ap_types import Frame
from anchor_pipeline.factory import StrategyFactory
from anchor_pipeline.strategies.preprocess import PIXEL_FORMATS, luma_from_4bpp, pack_luma

from .config import AnchorConfig, IntrinsicsConfig, load_config
from .logging_utils import setup_logger
from .worker import AnchorWorker


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Detect a QR anchor and estimate its pose")
    ap.add_argument("--config", help="Path to JSON/YAML config")
    ap.add_argument("--image", help="Scan a single image file and print the result as JSON")
    ap.add_argument("--raw", help="Scan a raw camera buffer dump (needs --raw-size)")
    ap.add_argument("--raw-size", nargs=2, type=int, metavar=("W", "H"))
    ap.add_argument("--stride", type=int, help="Row stride of --raw in bytes or pixels")
    ap.add_argument("--pixel-format", choices=[*sorted(PIXEL_FORMATS), "Y8"])

    ap.add_argument("--camera-name")
    ap.add_argument("--device")
    ap.add_argument("--fps", type=int)
    ap.add_argument("--width", type=int)
    ap.add_argument("--height", type=int)
    ap.add_argument("--calib")
    ap.add_argument("--intrinsics", nargs=4, type=float, metavar=("FX", "FY", "CX", "CY"))
    ap.add_argument("--marker-size-m", type=float)
    ap.add_argument("--out")
    ap.add_argument("--input-dir")
    ap.add_argument("--duration", type=float)
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--min-interval-ms", type=float)
    ap.add_argument("--async-decode", action="store_true")
    ap.add_argument("--dry-run", action="store_true")
    ap.add_argument("--save-frames", action="store_true")
    ap.add_argument("--no-save-annotated", action="store_true")

    return ap


def _apply_args(cfg: AnchorConfig, args: argparse.Namespace) -> AnchorConfig:
    device = args.device
    if isinstance(device, str) and device.isdigit():
        device = int(device)

    cfg.apply_overrides(
        camera_name=args.camera_name,
        device=device,
        fps=args.fps,
        width=args.width,
        height=args.height,
        calibration_path=args.calib,
        marker_size_m=args.marker_size_m,
        pixel_format=args.pixel_format,
        session_root=args.out,
        input_dir=args.input_dir,
        duration_sec=args.duration,
        max_frames=args.max_frames,
        min_interval_ms=args.min_interval_ms,
        async_decode=True if args.async_decode else None,
        dry_run=True if args.dry_run else None,
        save_frames=True if args.save_frames else None,
        save_annotated=False if args.no_save_annotated else None,
    )
    if args.intrinsics:
        fx, fy, cx, cy = args.intrinsics
        cfg.intrinsics = IntrinsicsConfig(fx, fy, cx, cy)
    return cfg


def _scan_once(cfg: AnchorConfig, img) -> dict:
    h, w = img.shape[:2]
    # Intrinsics refer to the image actually scanned
    cfg.apply_overrides(width=w, height=h)

    logger = setup_logger(cfg.camera_name)
    pre = StrategyFactory.from_config(cfg)[0]
    scanner = StrategyFactory.scanner_from_config(cfg, logger=logger)
    frame = pre.apply(Frame(1, "", img))
    res = scanner.scan(frame.image, cfg.pose_settings())
    if res is None:
        return {"payload": None, "width": w, "height": h}
    return res.as_dict()


def scan_image(cfg: AnchorConfig, path: str) -> dict:
    """One-shot scan of an image file; ``{"payload": None}`` when nothing decodes."""
    img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise FileNotFoundError(f"Image not readable: {path}")
    return _scan_once(cfg, img)


def scan_raw(cfg: AnchorConfig, path: str, width: int, height: int, stride: Optional[int] = None) -> dict:
    """
    Scan a raw camera buffer laid out as ``cfg.pixel_format``.

    ``Y8`` is a bare luma plane; the 4-byte formats are reduced to luma first.
    """
    with open(path, "rb") as fp:
        buf = fp.read()
    if cfg.pixel_format == "Y8":
        gray = pack_luma(buf, width, height, stride or width)
    else:
        gray = luma_from_4bpp(buf, width, height, stride or width * 4, cfg.pixel_format)
    if gray is None:
        raise ValueError(f"Buffer too small for {width}x{height}: {path} ({len(buf)} bytes)")
    return _scan_once(cfg, gray)


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    cfg = load_config(args.config) if args.config else AnchorConfig()
    cfg = _apply_args(cfg, args)

    if args.image:
        print(json.dumps(scan_image(cfg, args.image), indent=2))
        return 0
    if args.raw:
        if not args.raw_size:
            ap.error("--raw needs --raw-size W H")
        w, h = args.raw_size
        print(json.dumps(scan_raw(cfg, args.raw, w, h, args.stride), indent=2))
        return 0

    worker = AnchorWorker(cfg)

    def _handle_signal(_sig, _frame):
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    summary = worker.run()
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
