from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class Coordinate(BaseModel):
    lon: float
    lat: float


class ZoningOut(BaseModel):
    name: str
    building_coverage_ratio: float | None = None
    floor_area_ratio: float | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class DepthOut(BaseModel):
    min: float
    max: float | None = None
    label: str


class FloodSample(BaseModel):
    river_name: str
    water_depth: str


class FloodOut(BaseModel):
    in_flood: bool
    depth_class: str | None = None
    depth: DepthOut | None = None
    factor: float = Field(ge=0.0)
    reasons: list[str] = Field(default_factory=list)
    match_count: int = Field(ge=0)
    sample: list[FloodSample] = Field(default_factory=list)


class StationOut(BaseModel):
    name: str
    line: str
    operator: str
    ridership: float | None = None
    lon: float
    lat: float
    distance_m: float = Field(ge=0.0)
    attributes: dict[str, Any] = Field(default_factory=dict)


class StationMatch(BaseModel):
    name: str
    line: str
    operator: str
    ridership: float | None = None
    lon: float
    lat: float


class EnrichmentOut(BaseModel):
    input: Coordinate
    zoning: ZoningOut | None = None
    stations: list[StationOut] = Field(default_factory=list)
    flood: FloodOut | None = None
    degraded: list[str] = Field(default_factory=list)
