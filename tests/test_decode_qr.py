from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest

from anchor_pipeline.ap_types import Point2D
from anchor_pipeline.strategies.decode_qr import DEFAULT_STRATEGIES, QrDecode, get_binarizer
from visual_anchors.capture import make_qr_symbol

MISS = ("", None, None)


def _hit(text, pts):
    return text, np.array([pts], dtype=np.float32), None


def _qr_image(text, module_px=8, pad=40):
    sym = make_qr_symbol(text)
    big = cv2.resize(sym, None, fx=module_px, fy=module_px, interpolation=cv2.INTER_NEAREST)
    return cv2.copyMakeBorder(big, pad, pad, pad, pad, cv2.BORDER_CONSTANT, value=255)


def _with_detector(dec, side_effect):
    dec._detector = MagicMock()
    dec._detector.detectAndDecode.side_effect = side_effect
    return dec._detector


def test_decodes_rendered_symbol():
    img = _qr_image("anchor-42")
    res = QrDecode().decode(img)
    assert res is not None
    assert res.text == "anchor-42"
    assert res.strategy == "raw"
    assert len(res.points) >= 3
    h, w = img.shape
    assert all(0 <= p.x < w and 0 <= p.y < h for p in res.points)


def test_decodes_inverted_symbol_with_inverted_strategy():
    img = cv2.bitwise_not(_qr_image("dark-mode"))
    res = QrDecode(["adaptive_inverted", "global_inverted"]).decode(img)
    assert res is not None
    assert res.text == "dark-mode"


def test_blank_image_gives_nothing():
    img = np.full((120, 160), 255, dtype=np.uint8)
    assert QrDecode().decode(img) is None
    assert QrDecode().decode(np.zeros((0, 0), dtype=np.uint8)) is None
    assert QrDecode().decode(None) is None


def test_strategies_tried_in_order_and_short_circuit():
    dec = QrDecode(["raw", "adaptive", "global"])
    det = _with_detector(dec, [MISS, _hit("hi", [[0, 0], [10, 0], [10, 10], [0, 10]]), MISS])
    res = dec.decode(np.zeros((20, 20), dtype=np.uint8))
    assert res.text == "hi"
    assert res.strategy == "adaptive"
    assert det.detectAndDecode.call_count == 2


def test_fewer_than_three_points_is_a_miss():
    dec = QrDecode(["raw"], try_rotate_180=False)
    _with_detector(dec, [_hit("hi", [[0, 0], [10, 0]])])
    assert dec.decode(np.zeros((20, 20), dtype=np.uint8)) is None


def test_opencv_error_moves_on_to_next_strategy():
    dec = QrDecode(["raw", "global"], try_rotate_180=False)
    _with_detector(dec, [cv2.error("boom"), _hit("ok", [[1, 1], [5, 1], [5, 5]])])
    res = dec.decode(np.zeros((8, 8), dtype=np.uint8))
    assert res.text == "ok"
    assert res.strategy == "global"


def test_rotated_retry_maps_points_back():
    dec = QrDecode(["raw"], try_rotate_180=True)
    det = _with_detector(dec, [MISS, _hit("flip", [[0, 0], [10, 0], [10, 10]])])
    res = dec.decode(np.zeros((50, 100), dtype=np.uint8))
    assert res.strategy == "raw+rot180"
    assert res.points == [Point2D(99, 49), Point2D(89, 49), Point2D(89, 39)]
    assert det.detectAndDecode.call_count == 2


def test_no_rotated_retry_when_disabled():
    dec = QrDecode(["raw"], try_rotate_180=False)
    det = _with_detector(dec, [MISS, _hit("flip", [[0, 0], [10, 0], [10, 10]])])
    assert dec.decode(np.zeros((50, 100), dtype=np.uint8)) is None
    assert det.detectAndDecode.call_count == 1


def test_unknown_strategy_rejected():
    with pytest.raises(ValueError):
        QrDecode(["raw", "sharpen"])
    with pytest.raises(ValueError):
        get_binarizer("")


def test_default_binarizers_keep_shape_and_dtype():
    gray = np.tile(np.arange(64, dtype=np.uint8) * 4, (64, 1))
    for name in DEFAULT_STRATEGIES:
        out = get_binarizer(name)(gray)
        assert out.shape == gray.shape
        assert out.dtype == np.uint8
