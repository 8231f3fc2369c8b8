from .strategies.preprocess import LumaFrame
from .strategies.decode_qr import DEFAULT_STRATEGIES, QrDecode
from .strategies.normalize_corners import CornerNormalizer
from .strategies.localize_homography import HomographyLocalize
from .facade import AnchorScanner


class StrategyFactory:
    @staticmethod
    def from_config(config):
        # Preprocess: every source is reduced to luma before decoding
        pre = LumaFrame()

        # Decoding (ordered binarizations, optional upside-down retry)
        strategies = getattr(config, "decode_strategies", None) or DEFAULT_STRATEGIES
        dec = QrDecode(strategies, try_rotate_180=getattr(config, "try_rotate_180", True))

        # Geometry
        norm = CornerNormalizer()
        loc = HomographyLocalize()

        return pre, dec, norm, loc

    @staticmethod
    def scanner_from_config(config, logger=None) -> AnchorScanner:
        _pre, dec, norm, loc = StrategyFactory.from_config(config)
        return AnchorScanner(
            dec, norm, loc,
            logger=logger,
            failure_log_every=getattr(config, "failure_log_every", 10),
        )
