import logging

import pytest

from hiroval.datasets.source import DatasetLoadError
from hiroval.lookup.base import DatasetNotLoadedError
from hiroval.lookup.enrichment import EnrichmentConfig, FeatureEnrichment
from hiroval.lookup.flood import FloodConfig, FloodHazardLookup
from hiroval.lookup.stations import StationConfig, StationProximitySearch
from hiroval.lookup.zoning import ZoningConfig, ZoningLookup

from geojson_factory import CountingFetcher, FailingFetcher, collection, point_feature, polygon_feature, square

ZONES = collection(polygon_feature([square(132.45, 34.39, 132.46, 34.40)], name="商業地域", bcr=80, far=400))
STATIONS = collection(
    point_feature(132.4585, 34.3953, N02_005="紙屋町東", N02_003="本線", N02_004="広島電鉄"),
    point_feature(132.4632, 34.3940, N02_005="八丁堀", N02_003="本線", N02_004="広島電鉄"),
    point_feature(132.4757, 34.3978, N02_005="広島", N02_003="山陽線", N02_004="西日本旅客鉄道"),
    point_feature(132.4493, 34.4103, N02_005="横川", N02_003="山陽線", N02_004="西日本旅客鉄道"),
)
FLOOD = collection(polygon_feature([square(132.45, 34.39, 132.46, 34.40)], waterDepth="0.5～3.0m", riverName="太田川"))


def _enrichment(zoning_fetcher: object, station_fetcher: object, flood_fetcher: object | None = None) -> FeatureEnrichment:
    flood = None
    if flood_fetcher is not None:
        flood = FloodHazardLookup(FloodConfig(source="flood.geojson"), fetcher=flood_fetcher)  # type: ignore[arg-type]
    return FeatureEnrichment(
        ZoningLookup(ZoningConfig(source="zoning.geojson"), fetcher=zoning_fetcher),  # type: ignore[arg-type]
        StationProximitySearch(StationConfig(source="stations.geojson"), fetcher=station_fetcher),  # type: ignore[arg-type]
        flood,
    )


def test_enrich_combines_zoning_and_stations() -> None:
    enrichment = _enrichment(CountingFetcher(ZONES), CountingFetcher(STATIONS))
    enrichment.load()

    result = enrichment.enrich(132.459, 34.396)
    assert result.zoning is not None
    assert result.zoning.name == "商業地域"
    assert [s.name for s in result.stations] == ["紙屋町東", "八丁堀", "広島"]
    assert result.flood is None

    data = result.to_dict()
    assert data["input"] == {"lon": 132.459, "lat": 34.396}
    assert data["zoning"]["floor_area_ratio"] == 400
    assert len(data["stations"]) == 3
    assert data["degraded"] == []


def test_enrich_passes_station_options() -> None:
    enrichment = _enrichment(CountingFetcher(ZONES), CountingFetcher(STATIONS))
    enrichment.load()
    result = enrichment.enrich(132.459, 34.396, k=5, max_meters=1000, operator_like="広島電鉄")
    assert [s.name for s in result.stations] == ["紙屋町東", "八丁堀"]


def test_zoning_failure_degrades(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("hiroval")
    logger.addHandler(caplog.handler)
    try:
        enrichment = _enrichment(FailingFetcher(DatasetLoadError("zoning offline")), CountingFetcher(STATIONS))
        enrichment.load()
    finally:
        logger.removeHandler(caplog.handler)

    result = enrichment.enrich(132.459, 34.396)
    assert result.zoning is None
    assert len(result.stations) == 3
    assert result.degraded == ["zoning"]
    assert any("zoning dataset unavailable" in r.getMessage() for r in caplog.records)


def test_station_failure_is_fatal() -> None:
    enrichment = _enrichment(CountingFetcher(ZONES), FailingFetcher(DatasetLoadError("stations offline")))
    with pytest.raises(DatasetLoadError):
        enrichment.load()
    assert not enrichment.is_loaded()
    with pytest.raises(DatasetNotLoadedError):
        enrichment.enrich(132.459, 34.396)


def test_enrich_before_load_raises() -> None:
    enrichment = _enrichment(CountingFetcher(ZONES), CountingFetcher(STATIONS))
    with pytest.raises(DatasetNotLoadedError):
        enrichment.enrich(132.459, 34.396)


def test_load_twice_fetches_once() -> None:
    zones, stations = CountingFetcher(ZONES), CountingFetcher(STATIONS)
    enrichment = _enrichment(zones, stations)
    enrichment.load()
    enrichment.load()
    assert len(zones.calls) == 1
    assert len(stations.calls) == 1


def test_optional_flood_lookup() -> None:
    enrichment = _enrichment(CountingFetcher(ZONES), CountingFetcher(STATIONS), CountingFetcher(FLOOD))
    assert enrichment.config.include_flood is True
    enrichment.load()
    result = enrichment.enrich(132.455, 34.395)
    assert result.flood is not None
    assert result.flood.in_flood is True
    assert result.flood.factor == 0.90
    assert result.to_dict()["flood"]["depth_class"] == "0.5–3m"


def test_flood_failure_degrades() -> None:
    enrichment = _enrichment(
        CountingFetcher(ZONES), CountingFetcher(STATIONS), FailingFetcher(DatasetLoadError("flood offline"))
    )
    enrichment.load()
    result = enrichment.enrich(132.455, 34.395)
    assert result.flood is None
    assert result.zoning is not None
    assert result.degraded == ["flood"]


def test_invalid_coordinate_yields_empty_parts() -> None:
    enrichment = _enrichment(CountingFetcher(ZONES), CountingFetcher(STATIONS))
    enrichment.load()
    result = enrichment.enrich(float("nan"), 34.396)
    assert result.zoning is None
    assert result.stations == []


def test_from_settings_reads_enrichment_section() -> None:
    settings = {
        "paths": {"root": "/srv/hiroval"},
        "datasets": {
            "zoning": {"source": "zoning.geojson"},
            "flood": {"source": "flood.geojson"},
            "stations": {"source": "stations.geojson"},
        },
        "enrichment": {"k": 2, "max_meters": 5000, "include_flood": True},
    }
    fetcher = CountingFetcher(collection())
    enrichment = FeatureEnrichment.from_settings(settings, fetcher=fetcher)
    assert enrichment.config == EnrichmentConfig(k=2, max_meters=5000.0, include_flood=True)
    assert enrichment.flood is not None
    enrichment.load()
    assert len(fetcher.calls) == 3
