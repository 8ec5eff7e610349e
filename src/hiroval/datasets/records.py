"""
Typed records parsed from the GeoJSON datasets.

MLIT distributes the same data under several attribute schemes (raw A29/A31a/N02
field codes, or renamed keys after a conversion script). Each dataset has an
explicit alias table below; a parser takes the first alias present and returns
either a record or a `ParseFailure` explaining why the feature was dropped.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from hiroval.geo.geometry import BBox, bounding_box_of, normalize_ring, polygons_area

# MLIT uses 9999 for "not designated / unknown" in the A29 ratio fields.
RATIO_UNKNOWN_SENTINEL = 9999

ZONING_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("A29_005", "name", "youto"),
    "building_coverage_ratio": ("bcr", "A29_006"),
    "floor_area_ratio": ("far", "A29_007"),
}

FLOOD_ALIASES: dict[str, tuple[str, ...]] = {
    "water_depth": ("waterDepth", "A31a_205", "depth"),
    "river_name": ("riverName", "A31a_201", "river"),
    "creating_type": ("creatingType", "A31a_203"),
}

STATION_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("N02_005", "S12_001", "S12_name", "name", "station"),
    "line": ("N02_003", "S12_003", "S12_line", "line"),
    "operator": ("N02_004", "S12_002", "S12_operator", "operator"),
    "ridership": ("ridership_2022", "ridership", "S12_053"),
}

Polygons = tuple[tuple[np.ndarray, ...], ...]


@dataclass(frozen=True)
class ParseFailure:
    reason: str


@dataclass(frozen=True, eq=False)
class PolygonFeature:
    # One entry per polygon part; each part is (outer ring, *holes) as (n, 2) lon/lat arrays.
    polygons: Polygons
    attributes: dict[str, Any]
    bbox: BBox
    # Outer-ring shoelace area summed over parts; only used to rank overlapping matches.
    area: float


@dataclass(frozen=True, eq=False)
class ZoningRecord:
    name: str | None
    building_coverage_ratio: float | None
    floor_area_ratio: float | None
    feature: PolygonFeature


@dataclass(frozen=True, eq=False)
class FloodRecord:
    water_depth: str
    river_name: str
    creating_type: str
    feature: PolygonFeature


@dataclass(frozen=True)
class Station:
    lon: float
    lat: float
    name: str
    line: str
    operator: str
    ridership: float | None = None
    attributes: dict[str, Any] = field(default_factory=dict, compare=False)


def first_present(props: dict[str, Any], aliases: tuple[str, ...]) -> Any:
    for key in aliases:
        value = props.get(key)
        if value is not None:
            return value
    return None


def to_float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def to_ratio_or_none(value: Any) -> float | None:
    number = to_float_or_none(value)
    if number is None or number == RATIO_UNKNOWN_SENTINEL:
        return None
    return number


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _properties(feature: Any) -> dict[str, Any]:
    props = feature.get("properties") if isinstance(feature, dict) else None
    return props if isinstance(props, dict) else {}


def _parse_polygon(coords: Any) -> tuple[np.ndarray, ...] | None:
    if not isinstance(coords, list) or not coords:
        return None
    outer = normalize_ring(coords[0])
    if outer is None:
        return None
    holes = [h for h in (normalize_ring(c) for c in coords[1:]) if h is not None]
    return (outer, *holes)


def parse_polygon_feature(feature: Any) -> PolygonFeature | ParseFailure:
    if not isinstance(feature, dict):
        return ParseFailure("feature is not an object")
    geometry = feature.get("geometry")
    if not isinstance(geometry, dict):
        return ParseFailure("feature has no geometry")
    gtype = geometry.get("type")
    coords = geometry.get("coordinates")

    if gtype == "Polygon":
        parts = [coords]
    elif gtype == "MultiPolygon" and isinstance(coords, list):
        parts = coords
    else:
        return ParseFailure(f"unsupported geometry type: {gtype}")

    polygons = tuple(p for p in (_parse_polygon(c) for c in parts) if p is not None)
    if not polygons:
        return ParseFailure("geometry has no valid outer ring")

    return PolygonFeature(
        polygons=polygons,
        attributes=_properties(feature),
        bbox=bounding_box_of(polygons),
        area=polygons_area(polygons),
    )


def parse_zoning_feature(feature: Any) -> ZoningRecord | ParseFailure:
    poly = parse_polygon_feature(feature)
    if isinstance(poly, ParseFailure):
        return poly
    props = poly.attributes
    name = first_present(props, ZONING_ALIASES["name"])
    return ZoningRecord(
        name=None if name is None else str(name),
        building_coverage_ratio=to_ratio_or_none(first_present(props, ZONING_ALIASES["building_coverage_ratio"])),
        floor_area_ratio=to_ratio_or_none(first_present(props, ZONING_ALIASES["floor_area_ratio"])),
        feature=poly,
    )


def parse_flood_feature(feature: Any) -> FloodRecord | ParseFailure:
    poly = parse_polygon_feature(feature)
    if isinstance(poly, ParseFailure):
        return poly
    props = poly.attributes
    return FloodRecord(
        water_depth=_text(first_present(props, FLOOD_ALIASES["water_depth"])),
        river_name=_text(first_present(props, FLOOD_ALIASES["river_name"])),
        creating_type=_text(first_present(props, FLOOD_ALIASES["creating_type"])),
        feature=poly,
    )


def parse_station_feature(feature: Any) -> Station | ParseFailure:
    if not isinstance(feature, dict):
        return ParseFailure("feature is not an object")
    geometry = feature.get("geometry")
    if not isinstance(geometry, dict) or geometry.get("type") != "Point":
        return ParseFailure("station feature is not a Point")
    coords = geometry.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        return ParseFailure("point has no coordinates")
    lon = to_float_or_none(coords[0])
    lat = to_float_or_none(coords[1])
    if lon is None or lat is None:
        return ParseFailure("point coordinates are not finite numbers")

    props = _properties(feature)
    return Station(
        lon=lon,
        lat=lat,
        name=_text(first_present(props, STATION_ALIASES["name"])),
        line=_text(first_present(props, STATION_ALIASES["line"])),
        operator=_text(first_present(props, STATION_ALIASES["operator"])),
        ridership=to_float_or_none(first_present(props, STATION_ALIASES["ridership"])),
        attributes=props,
    )
