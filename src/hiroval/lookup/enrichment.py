"""
Combine zoning, nearby stations and (optionally) flood hazard for one location.

Station data drives pricing, so a station load failure propagates out of
`load()`. Zoning and flood failures are logged and the lookup is marked
degraded: its part of every later result is `None`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from hiroval.datasets.source import DatasetLoadError, Fetcher
from hiroval.log import get_logger
from hiroval.lookup.base import DatasetNotLoadedError
from hiroval.lookup.flood import FloodHazardLookup, FloodResult
from hiroval.lookup.stations import StationProximitySearch, StationResult
from hiroval.lookup.zoning import ZoningLookup, ZoningResult


@dataclass(frozen=True)
class EnrichmentConfig:
    k: int = 3
    max_meters: float = 20000.0
    include_flood: bool = False


@dataclass(frozen=True)
class EnrichmentResult:
    lon: float
    lat: float
    zoning: ZoningResult | None
    stations: list[StationResult]
    flood: FloodResult | None = None
    degraded: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": {"lon": self.lon, "lat": self.lat},
            "zoning": None if self.zoning is None else self.zoning.to_dict(),
            "stations": [s.to_dict() for s in self.stations],
            "flood": None if self.flood is None else self.flood.to_dict(),
            "degraded": list(self.degraded),
        }


def build_enrichment_config(settings: dict[str, Any]) -> EnrichmentConfig:
    cfg = settings.get("enrichment", {}) or {}
    return EnrichmentConfig(
        k=max(1, int(cfg.get("k", 3))),
        max_meters=max(1.0, float(cfg.get("max_meters", 20000))),
        include_flood=bool(cfg.get("include_flood", False)),
    )


class FeatureEnrichment:
    def __init__(
        self,
        zoning: ZoningLookup,
        stations: StationProximitySearch,
        flood: FloodHazardLookup | None = None,
        *,
        config: EnrichmentConfig | None = None,
    ) -> None:
        self.zoning = zoning
        self.stations = stations
        self.flood = flood
        self.config = config or EnrichmentConfig(include_flood=flood is not None)
        self.degraded: set[str] = set()
        self._loaded = False

    @classmethod
    def from_settings(cls, settings: dict[str, Any], *, fetcher: Fetcher | None = None) -> "FeatureEnrichment":
        config = build_enrichment_config(settings)
        flood = FloodHazardLookup.from_settings(settings, fetcher=fetcher) if config.include_flood else None
        return cls(
            ZoningLookup.from_settings(settings, fetcher=fetcher),
            StationProximitySearch.from_settings(settings, fetcher=fetcher),
            flood,
            config=config,
        )

    def is_loaded(self) -> bool:
        return self._loaded

    def _load_optional(self, name: str, lookup: ZoningLookup | FloodHazardLookup) -> None:
        try:
            lookup.load()
        except DatasetLoadError as e:
            self.degraded.add(name)
            get_logger().warning("%s dataset unavailable, continuing without it: %s", name, e)
        else:
            self.degraded.discard(name)

    def load(self) -> None:
        self._load_optional("zoning", self.zoning)
        if self.flood is not None:
            self._load_optional("flood", self.flood)
        self.stations.load()
        self._loaded = True

    def enrich(
        self,
        lon: float,
        lat: float,
        *,
        k: int | None = None,
        max_meters: float | None = None,
        operator_like: str | None = None,
        line_like: str | None = None,
    ) -> EnrichmentResult:
        if not self._loaded:
            raise DatasetNotLoadedError("enrichment is not loaded; call load() before enrich()")

        zoning = None if "zoning" in self.degraded else self.zoning.query(lon, lat)
        flood = None
        if self.flood is not None and "flood" not in self.degraded:
            flood = self.flood.evaluate(lon, lat)
        stations = self.stations.nearest(
            lon,
            lat,
            k=self.config.k if k is None else k,
            max_meters=self.config.max_meters if max_meters is None else max_meters,
            operator_like=operator_like,
            line_like=line_like,
        )
        return EnrichmentResult(
            lon=lon,
            lat=lat,
            zoning=zoning,
            stations=stations,
            flood=flood,
            degraded=sorted(self.degraded),
        )
