"""
Nearest-station search over rail station points (N02 / S12 derived GeoJSON).

The grid is expanded ring by ring around the query cell. Operator/line filters
are applied before distances are computed; candidates beyond `max_meters` are
dropped. Expansion stops at `max_ring_cells` or, when early exit is enabled,
once `early_exit_multiplier * k` candidates have been collected.

Early exit is a speed heuristic: a dense ring followed by sparse ones can hide
a slightly closer station one ring further out. Pass `early_exit_multiplier=0`
for an exhaustive search within the ring cap.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from hiroval.datasets.download import dataset_source
from hiroval.datasets.records import Station, parse_station_feature
from hiroval.datasets.source import Fetcher
from hiroval.geo.geometry import BBox, haversine_m_array, is_finite_point
from hiroval.geo.grid import MIN_CELL_SIZE_DEG, GridIndex
from hiroval.lookup.base import DatasetLookup, fetcher_from_settings


@dataclass(frozen=True)
class StationConfig:
    source: str
    cell_size_deg: float = 0.01
    max_ring_cells: int = 8
    early_exit_multiplier: float | None = 2
    default_k: int = 5
    max_meters: float = 20000.0


@dataclass(frozen=True)
class StationResult:
    name: str
    line: str
    operator: str
    ridership: float | None
    lon: float
    lat: float
    distance_m: float
    attributes: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "line": self.line,
            "operator": self.operator,
            "ridership": self.ridership,
            "lon": self.lon,
            "lat": self.lat,
            "distance_m": self.distance_m,
            "attributes": dict(self.attributes),
        }


def _optional_multiplier(value: Any) -> float | None:
    if value is None:
        return None
    number = float(value)
    return number if number > 0 else None


def build_station_config(settings: dict[str, Any]) -> StationConfig:
    cfg = (settings.get("datasets", {}) or {}).get("stations", {}) or {}
    return StationConfig(
        source=dataset_source(settings, "stations"),
        cell_size_deg=max(MIN_CELL_SIZE_DEG, float(cfg.get("cell_size_deg", 0.01))),
        max_ring_cells=max(0, int(cfg.get("max_ring_cells", 8))),
        early_exit_multiplier=_optional_multiplier(cfg.get("early_exit_multiplier", 2)),
        default_k=max(1, int(cfg.get("default_k", 5))),
        max_meters=max(1.0, float(cfg.get("max_meters", 20000))),
    )


def _like(needle: str | None) -> str:
    return "" if needle is None else str(needle).strip().lower()


class StationProximitySearch(DatasetLookup):
    dataset_name = "stations"

    def __init__(self, config: StationConfig, *, fetcher: Fetcher | None = None) -> None:
        super().__init__(config.source, fetcher=fetcher)
        self.config = config
        self._stations: list[Station] = []
        self._lons = np.empty(0)
        self._lats = np.empty(0)
        self._grid = GridIndex(config.cell_size_deg)

    @classmethod
    def from_settings(cls, settings: dict[str, Any], *, fetcher: Fetcher | None = None) -> "StationProximitySearch":
        return cls(build_station_config(settings), fetcher=fetcher or fetcher_from_settings(settings))

    def _build(self, features: list[Any]) -> int:
        stations, failures = self._parse_all(features, parse_station_feature)
        grid = GridIndex.build_from_points(((s.lon, s.lat) for s in stations), self.config.cell_size_deg)
        self._stations = stations
        self._lons = np.array([s.lon for s in stations], dtype=float)
        self._lats = np.array([s.lat for s in stations], dtype=float)
        self._grid = grid
        self.skipped = failures + grid.skipped
        return len(stations)

    def bounds(self) -> BBox | None:
        self._require_loaded()
        if not self._stations:
            return None
        return BBox(
            min_lon=float(self._lons.min()),
            min_lat=float(self._lats.min()),
            max_lon=float(self._lons.max()),
            max_lat=float(self._lats.max()),
        )

    def _passes(self, station: Station, operator_like: str, line_like: str) -> bool:
        if operator_like and operator_like not in station.operator.lower():
            return False
        if line_like and line_like not in station.line.lower():
            return False
        return True

    def nearest(
        self,
        lon: float,
        lat: float,
        *,
        k: int | None = None,
        max_meters: float | None = None,
        operator_like: str | None = None,
        line_like: str | None = None,
        early_exit_multiplier: float | None = None,
        max_ring_cells: int | None = None,
    ) -> list[StationResult]:
        """
        Up to `k` stations within `max_meters`, nearest first.

        Unset keyword arguments fall back to the configured defaults. An
        `early_exit_multiplier` of 0 searches every ring up to `max_ring_cells`.
        """
        self._require_loaded()
        if not is_finite_point(lon, lat):
            return []

        k = max(1, int(self.config.default_k if k is None else k))
        limit_m = max(1.0, float(self.config.max_meters if max_meters is None else max_meters))
        rings = max(0, int(self.config.max_ring_cells if max_ring_cells is None else max_ring_cells))
        multiplier = (
            self.config.early_exit_multiplier
            if early_exit_multiplier is None
            else _optional_multiplier(early_exit_multiplier)
        )
        stop_at = math.inf if multiplier is None else multiplier * k
        op_like = _like(operator_like)
        ln_like = _like(line_like)

        found: list[tuple[float, int]] = []
        for _, fresh in self._grid.iter_rings(lon, lat, rings):
            idx = [i for i in fresh if self._passes(self._stations[i], op_like, ln_like)]
            if idx:
                dists = haversine_m_array(lat, lon, self._lats[idx], self._lons[idx])
                found.extend((float(d), i) for d, i in zip(dists, idx) if d <= limit_m)
            if len(found) >= stop_at:
                break

        # Stable sort: equal distances keep discovery order.
        found.sort(key=lambda pair: pair[0])
        out: list[StationResult] = []
        for dist, i in found[:k]:
            s = self._stations[i]
            out.append(
                StationResult(
                    name=s.name,
                    line=s.line,
                    operator=s.operator,
                    ridership=s.ridership,
                    lon=s.lon,
                    lat=s.lat,
                    distance_m=dist,
                    attributes=s.attributes,
                )
            )
        return out

    def search_by_name(self, query: str, limit: int = 20) -> list[Station]:
        """Stations whose name contains `query` (case-insensitive), unique by name/line/operator."""
        self._require_loaded()
        q = _like(query)
        if not q:
            return []
        out: list[Station] = []
        seen: set[tuple[str, str, str]] = set()
        for s in self._stations:
            if q not in s.name.lower():
                continue
            key = (s.name, s.line, s.operator)
            if key in seen:
                continue
            seen.add(key)
            out.append(s)
            if len(out) >= max(1, int(limit)):
                break
        return out
