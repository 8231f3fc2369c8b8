import logging
import math
from typing import Any, Optional, Sequence

from ..ap_types import CornerSet, Point2D, as_points

log = logging.getLogger(__name__)


def _centroid(pts: list[Point2D]) -> tuple[float, float]:
    n = float(len(pts))
    return sum(p.x for p in pts) / n, sum(p.y for p in pts) / n


def signed_area2(pts: Sequence[Point2D]) -> float:
    """Twice the shoelace area; positive means clockwise with Y pointing down."""
    n = len(pts)
    area2 = 0.0
    for i in range(n):
        j = (i + 1) % n
        area2 += pts[i].x * pts[j].y - pts[j].x * pts[i].y
    return area2


class CornerNormalizer:
    """
    Strategy: turn detector point candidates into a canonical CornerSet.

    Three candidates are completed with the parallelogram rule A + C - B,
    which assumes the detector reports B diagonally opposite the missing
    corner. More than four are reduced to the four farthest from the centroid.
    """

    def normalize(self, candidates: Sequence[Any]) -> Optional[CornerSet]:
        raw = [
            p for p in as_points(candidates)
            if p is not None and math.isfinite(p.x) and math.isfinite(p.y)
        ]
        if len(raw) < 3:
            log.debug("normalize: %d usable points, need at least 3", len(raw))
            return None

        if len(raw) == 3:
            a, b, c = raw
            raw.append(Point2D(a.x + c.x - b.x, a.y + c.y - b.y))

        if len(raw) > 4:
            cx, cy = _centroid(raw)
            # sorted() is stable, so equal distances keep their original order
            raw = sorted(raw, key=lambda p: -((p.x - cx) ** 2 + (p.y - cy) ** 2))[:4]

        cx, cy = _centroid(raw)
        raw.sort(key=lambda p: math.atan2(p.y - cy, p.x - cx))

        tl = 0
        best = math.inf
        for i, p in enumerate(raw):
            s = p.x + p.y
            if s < best:
                best = s
                tl = i
        raw = raw[tl:] + raw[:tl]

        if signed_area2(raw) < 0.0:
            raw[1], raw[3] = raw[3], raw[1]

        return CornerSet(tuple(raw))
