"""
Grid Index - deterministic mapping from a coordinate to its fixed-size cell.

Every point inside one physical cell maps to exactly one id, which is what
lets many events aggregate into one risk cell. The id is derived from the
snapped cell centre, never from the input point.
"""

import math
from typing import NamedTuple

from safegrid.core.settings import settings


class GridCell(NamedTuple):
    grid_id: str
    center_lat: float
    center_lng: float


def _snap(value: float, size: float) -> float:
    return math.floor(value / size) * size + (size / 2)


def cell_of(lat: float, lng: float, size: float = None) -> GridCell:
    """Snap a point to the centre of its grid cell."""
    size = size or settings.GRID_SIZE_DEG
    center_lat = _snap(lat, size)
    center_lng = _snap(lng, size)
    return GridCell(
        grid_id=f"{center_lat:.5f}_{center_lng:.5f}",
        center_lat=center_lat,
        center_lng=center_lng,
    )


def center_of(grid_id: str) -> tuple[float, float]:
    """Parse a grid id back into its (lat, lng) centre."""
    lat_str, lng_str = grid_id.split("_")
    return float(lat_str), float(lng_str)
