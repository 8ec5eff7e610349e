"""
Planar geometry helpers for GeoJSON lookups.

Everything here works directly on WGS84/JGD2011 longitude/latitude degrees:
- point-in-polygon uses the even-odd ray casting rule (PNPOLY),
- bounding boxes and the shoelace area are computed on raw degrees,
- distances use the haversine formula on a spherical Earth.

Degrees are not an equal-area projection, so `approx_area` is only meant for
ranking overlapping polygons against each other, never as a real area.

These functions sit inside tight query loops, so malformed geometry (empty or
degenerate rings, NaN vertices) and non-finite query points return
False / 0.0 / inf instead of raising.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

EARTH_RADIUS_M = 6_371_000.0

# Substituted for a zero vertical edge delta so horizontal edges never divide by zero.
_DY_EPSILON = 1e-12


@dataclass(frozen=True)
class BBox:
    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @property
    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.min_lon, self.min_lat, self.max_lon, self.max_lat))

    def contains(self, lon: float, lat: float) -> bool:
        return self.min_lon <= lon <= self.max_lon and self.min_lat <= lat <= self.max_lat

    def as_list(self) -> list[float]:
        return [self.min_lon, self.min_lat, self.max_lon, self.max_lat]


EMPTY_BBOX = BBox(math.inf, math.inf, -math.inf, -math.inf)


def is_finite_point(lon: Any, lat: Any) -> bool:
    try:
        return math.isfinite(lon) and math.isfinite(lat)
    except TypeError:
        return False


def as_ring(coords: Any) -> np.ndarray | None:
    """
    Convert a GeoJSON ring (`[[lon, lat], ...]`) into an (n, 2) float array.

    Extra ordinates (z, m) are dropped. Returns None when the ring cannot form a
    polygon edge set (fewer than 3 vertices, ragged or non-numeric coordinates).
    """
    try:
        arr = np.asarray(coords, dtype=float)
    except (TypeError, ValueError):
        return None
    if arr.ndim != 2 or arr.shape[0] < 3 or arr.shape[1] < 2:
        return None
    return arr[:, :2]


def normalize_ring(coords: Any) -> np.ndarray | None:
    # GeoJSON requires at least 4 positions per ring (first == last).
    arr = as_ring(coords)
    if arr is None or arr.shape[0] < 4:
        return None
    if not np.array_equal(arr[0], arr[-1]):
        arr = np.vstack([arr, arr[:1]])
    return arr


def point_in_ring(lon: float, lat: float, ring: Any) -> bool:
    """Even-odd ray casting test of (lon, lat) against a single ring."""
    if not is_finite_point(lon, lat):
        return False
    arr = ring if isinstance(ring, np.ndarray) and ring.ndim == 2 else as_ring(ring)
    if arr is None or arr.shape[0] < 3:
        return False

    # Edge i joins vertex i to vertex i-1 (wrapping), like the classic PNPOLY loop.
    xi = arr[:, 0]
    yi = arr[:, 1]
    xj = np.roll(xi, 1)
    yj = np.roll(yi, 1)

    with np.errstate(all="ignore"):
        straddles = (yi > lat) != (yj > lat)
        dy = yj - yi
        dy = np.where(dy == 0.0, _DY_EPSILON, dy)
        x_cross = (xj - xi) * (lat - yi) / dy + xi
        crossings = int(np.count_nonzero(straddles & (lon < x_cross)))
    return crossings % 2 == 1


def point_in_polygon(lon: float, lat: float, rings: Sequence[Any], respect_holes: bool) -> bool:
    """
    rings[0] is the outer boundary, rings[1:] are holes.

    With `respect_holes=False` only the outer ring is tested (zoning data is
    converted without holes); with `respect_holes=True` a point inside any hole
    is outside the polygon.
    """
    if rings is None or len(rings) == 0:
        return False
    if not point_in_ring(lon, lat, rings[0]):
        return False
    if respect_holes:
        for hole in rings[1:]:
            if point_in_ring(lon, lat, hole):
                return False
    return True


def point_in_polygons(lon: float, lat: float, polygons: Sequence[Sequence[Any]], respect_holes: bool) -> bool:
    # MultiPolygon semantics: inside any part.
    return any(point_in_polygon(lon, lat, rings, respect_holes) for rings in polygons)


def bounding_box_of(polygons: Sequence[Sequence[Any]]) -> BBox:
    """Min/max over every vertex of every ring (holes included)."""
    arrays = []
    for rings in polygons:
        for ring in rings:
            arr = ring if isinstance(ring, np.ndarray) else as_ring(ring)
            if arr is not None and arr.size:
                arrays.append(arr)
    if not arrays:
        return EMPTY_BBOX
    xy = np.vstack(arrays)
    # NaN vertices propagate into the box so the grid index can skip the feature.
    return BBox(
        min_lon=float(np.min(xy[:, 0])),
        min_lat=float(np.min(xy[:, 1])),
        max_lon=float(np.max(xy[:, 0])),
        max_lat=float(np.max(xy[:, 1])),
    )


def approx_area(rings: Sequence[Any]) -> float:
    """Absolute shoelace area of the outer ring, in square degrees."""
    if rings is None or len(rings) == 0:
        return 0.0
    arr = rings[0] if isinstance(rings[0], np.ndarray) else as_ring(rings[0])
    if arr is None:
        return 0.0
    x = arr[:, 0]
    y = arr[:, 1]
    with np.errstate(all="ignore"):
        total = float(np.sum(np.roll(x, 1) * y - x * np.roll(y, 1)))
    if not math.isfinite(total):
        return 0.0
    return abs(total) / 2.0


def polygons_area(polygons: Sequence[Sequence[Any]]) -> float:
    return float(sum(approx_area(rings) for rings in polygons))


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    if not (is_finite_point(lon1, lat1) and is_finite_point(lon2, lat2)):
        return math.inf
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    d_lat = p2 - p1
    d_lon = math.radians(lon2 - lon1)
    a = math.sin(d_lat / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(d_lon / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def haversine_m_array(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    """Vectorised haversine from one origin to many targets; non-finite targets map to inf."""
    lats = np.asarray(lats, dtype=float)
    lons = np.asarray(lons, dtype=float)
    if not is_finite_point(lon, lat):
        return np.full(lats.shape, np.inf)
    p1 = math.radians(lat)
    p2 = np.deg2rad(lats)
    d_lat = p2 - p1
    d_lon = np.deg2rad(lons - lon)
    with np.errstate(all="ignore"):
        a = np.sin(d_lat / 2.0) ** 2 + math.cos(p1) * np.cos(p2) * np.sin(d_lon / 2.0) ** 2
        d = 2.0 * EARTH_RADIUS_M * np.arcsin(np.minimum(1.0, np.sqrt(a)))
    return np.where(np.isfinite(d), d, np.inf)
