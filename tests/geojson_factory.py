"""Small GeoJSON builders shared by the lookup tests."""

from __future__ import annotations

from typing import Any


def square(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> list[list[float]]:
    return [
        [min_lon, min_lat],
        [max_lon, min_lat],
        [max_lon, max_lat],
        [min_lon, max_lat],
        [min_lon, min_lat],
    ]


def polygon_feature(rings: list[list[list[float]]], **props: Any) -> dict[str, Any]:
    return {"type": "Feature", "geometry": {"type": "Polygon", "coordinates": rings}, "properties": props}


def point_feature(lon: float, lat: float, **props: Any) -> dict[str, Any]:
    return {"type": "Feature", "geometry": {"type": "Point", "coordinates": [lon, lat]}, "properties": props}


def collection(*features: dict[str, Any]) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


class CountingFetcher:
    # Stands in for the dataset fetcher and records how often it was called.
    def __init__(self, payload: Any) -> None:
        self.payload = payload
        self.calls: list[str] = []

    def __call__(self, source: str) -> Any:
        self.calls.append(source)
        return self.payload


class FailingFetcher:
    def __init__(self, error: Exception) -> None:
        self.error = error
        self.calls = 0

    def __call__(self, source: str) -> Any:
        self.calls += 1
        raise self.error
