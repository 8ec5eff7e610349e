"""
Uniform lon/lat grid index.

Cells are addressed by `(floor(lat / size), floor(lon / size))`. Point items are
registered in their own cell; box items (polygon bounding boxes) in every cell
their box overlaps. A query therefore never misses an item whose geometry can
touch the searched cells; candidates still need an exact geometry test.

Lookups expand outward ring by ring (Chebyshev distance 0, 1, 2, ... in cells)
so nearby items are found first and the search can stop early.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from hiroval.geo.geometry import BBox, is_finite_point

CellKey = tuple[int, int]

MIN_CELL_SIZE_DEG = 0.001


def _check_cell_size(cell_size_deg: float) -> float:
    size = float(cell_size_deg)
    if not math.isfinite(size) or size <= 0:
        raise ValueError(f"cell_size_deg must be a positive number, got {cell_size_deg!r}")
    return size


def cell_key(lon: float, lat: float, cell_size_deg: float) -> CellKey:
    return (math.floor(lat / cell_size_deg), math.floor(lon / cell_size_deg))


def ring_cells(center: CellKey, radius: int) -> Iterator[CellKey]:
    """Cells at Chebyshev distance exactly `radius` from `center`, row-major."""
    row0, col0 = center
    r = int(radius)
    if r < 0:
        return
    if r == 0:
        yield center
        return
    for dy in range(-r, r + 1):
        if abs(dy) == r:
            for dx in range(-r, r + 1):
                yield (row0 + dy, col0 + dx)
        else:
            yield (row0 + dy, col0 - r)
            yield (row0 + dy, col0 + r)


@dataclass
class GridIndex:
    cell_size_deg: float
    cells: dict[CellKey, list[int]] = field(default_factory=dict)
    # Items rejected at build time because their point/box was not finite.
    skipped: int = 0
    item_count: int = 0

    def __post_init__(self) -> None:
        self.cell_size_deg = _check_cell_size(self.cell_size_deg)

    @classmethod
    def build_from_points(cls, points: Iterable[tuple[float, float]], cell_size_deg: float) -> "GridIndex":
        grid = cls(cell_size_deg)
        for i, (lon, lat) in enumerate(points):
            grid.add_point(i, lon, lat)
        return grid

    @classmethod
    def build_from_boxes(cls, boxes: Iterable[BBox], cell_size_deg: float) -> "GridIndex":
        grid = cls(cell_size_deg)
        for i, bbox in enumerate(boxes):
            grid.add_box(i, bbox)
        return grid

    @property
    def cell_count(self) -> int:
        return len(self.cells)

    def _register(self, key: CellKey, index: int) -> None:
        self.cells.setdefault(key, []).append(index)

    def add_point(self, index: int, lon: float, lat: float) -> bool:
        if not is_finite_point(lon, lat):
            self.skipped += 1
            return False
        self._register(cell_key(lon, lat, self.cell_size_deg), index)
        self.item_count += 1
        return True

    def add_box(self, index: int, bbox: BBox) -> bool:
        if not bbox.is_finite or bbox.min_lon > bbox.max_lon or bbox.min_lat > bbox.max_lat:
            self.skipped += 1
            return False
        row0, col0 = cell_key(bbox.min_lon, bbox.min_lat, self.cell_size_deg)
        row1, col1 = cell_key(bbox.max_lon, bbox.max_lat, self.cell_size_deg)
        for row in range(row0, row1 + 1):
            for col in range(col0, col1 + 1):
                self._register((row, col), index)
        self.item_count += 1
        return True

    def _center(self, lon: float, lat: float) -> CellKey | None:
        if not is_finite_point(lon, lat):
            return None
        return cell_key(lon, lat, self.cell_size_deg)

    def _radius_covering_all(self, center: CellKey) -> int:
        if not self.cells:
            return 0
        return max(max(abs(row - center[0]), abs(col - center[1])) for row, col in self.cells)

    def query_ring(self, lon: float, lat: float, radius: int) -> list[int]:
        """Items registered in cells at Chebyshev distance exactly `radius`."""
        center = self._center(lon, lat)
        if center is None:
            return []
        out: list[int] = []
        seen: set[int] = set()
        for key in ring_cells(center, radius):
            for i in self.cells.get(key, ()):
                if i not in seen:
                    seen.add(i)
                    out.append(i)
        return out

    def iter_rings(self, lon: float, lat: float, max_radius: int | None) -> Iterator[tuple[int, list[int]]]:
        """
        Yield `(radius, new_indices)` for radius 0..max_radius.

        Indices already yielded by a smaller radius are not repeated. `max_radius=None`
        expands until every registered cell has been covered.
        """
        center = self._center(lon, lat)
        if center is None:
            return
        if max_radius is None:
            max_radius = self._radius_covering_all(center)
        seen: set[int] = set()
        for r in range(0, int(max_radius) + 1):
            fresh: list[int] = []
            for key in ring_cells(center, r):
                for i in self.cells.get(key, ()):
                    if i not in seen:
                        seen.add(i)
                        fresh.append(i)
            yield r, fresh

    def query_within(self, lon: float, lat: float, radius: int | None) -> list[int]:
        """Deduplicated items in all cells within `radius` (None: everything indexed)."""
        out: list[int] = []
        for _, fresh in self.iter_rings(lon, lat, radius):
            out.extend(fresh)
        return out
