"""
Zoning (用途地域) lookup over MLIT A29 polygons.

`query(lon, lat)` returns the zone that contains the point together with its
building coverage ratio (建蔽率) and floor-area ratio (容積率).

The A29 GeoJSON we ship is a simplified conversion without holes, so by default
only the outer ring is tested (`respect_holes: false`). Where that makes two
polygons claim the same point (shared edges, slivers) the one with the larger
outer-ring area wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from hiroval.datasets.download import dataset_source
from hiroval.datasets.records import ZoningRecord, parse_zoning_feature
from hiroval.datasets.source import Fetcher
from hiroval.geo.geometry import is_finite_point, point_in_polygons
from hiroval.geo.grid import MIN_CELL_SIZE_DEG, GridIndex
from hiroval.lookup.base import DatasetLookup, fetcher_from_settings

UNNAMED_ZONE = "(名称なし)"


@dataclass(frozen=True)
class ZoningConfig:
    source: str
    cell_size_deg: float = 0.01
    respect_holes: bool = False


@dataclass(frozen=True)
class ZoningResult:
    name: str
    building_coverage_ratio: float | None
    floor_area_ratio: float | None
    attributes: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "building_coverage_ratio": self.building_coverage_ratio,
            "floor_area_ratio": self.floor_area_ratio,
            "attributes": dict(self.attributes),
        }


def build_zoning_config(settings: dict[str, Any]) -> ZoningConfig:
    cfg = (settings.get("datasets", {}) or {}).get("zoning", {}) or {}
    return ZoningConfig(
        source=dataset_source(settings, "zoning"),
        cell_size_deg=max(MIN_CELL_SIZE_DEG, float(cfg.get("cell_size_deg", 0.01))),
        respect_holes=bool(cfg.get("respect_holes", False)),
    )


class ZoningLookup(DatasetLookup):
    dataset_name = "zoning"

    def __init__(self, config: ZoningConfig, *, fetcher: Fetcher | None = None) -> None:
        super().__init__(config.source, fetcher=fetcher)
        self.config = config
        self._records: list[ZoningRecord] = []
        self._grid = GridIndex(config.cell_size_deg)

    @classmethod
    def from_settings(cls, settings: dict[str, Any], *, fetcher: Fetcher | None = None) -> "ZoningLookup":
        return cls(build_zoning_config(settings), fetcher=fetcher or fetcher_from_settings(settings))

    def _build(self, features: list[Any]) -> int:
        records, failures = self._parse_all(features, parse_zoning_feature)
        grid = GridIndex.build_from_boxes((r.feature.bbox for r in records), self.config.cell_size_deg)
        self._records = records
        self._grid = grid
        self.skipped = failures + grid.skipped
        return len(records)

    def matches(self, lon: float, lat: float) -> list[ZoningRecord]:
        """Every zoning polygon containing the point, in load order."""
        self._require_loaded()
        if not is_finite_point(lon, lat):
            return []
        out: list[ZoningRecord] = []
        # Features sit in every cell their bbox overlaps, so the point's own cell is enough.
        for i in self._grid.query_ring(lon, lat, 0):
            rec = self._records[i]
            if not rec.feature.bbox.contains(lon, lat):
                continue
            if point_in_polygons(lon, lat, rec.feature.polygons, self.config.respect_holes):
                out.append(rec)
        return out

    def query(self, lon: float, lat: float) -> ZoningResult | None:
        hits = self.matches(lon, lat)
        if not hits:
            return None
        # max() keeps the first of equal areas, i.e. load order breaks exact ties.
        picked = max(hits, key=lambda r: r.feature.area)
        return ZoningResult(
            name=picked.name if picked.name is not None else UNNAMED_ZONE,
            building_coverage_ratio=picked.building_coverage_ratio,
            floor_area_ratio=picked.floor_area_ratio,
            attributes=picked.feature.attributes,
        )
