from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import FastAPI, HTTPException, Query, Request

from hiroval.api.schemas import EnrichmentOut, FloodOut, StationMatch, StationOut, ZoningOut
from hiroval.datasets.download import read_manifest
from hiroval.lookup.enrichment import FeatureEnrichment
from hiroval.settings import load_settings

CONFIG_PATH = Path(os.getenv("HIROVAL_CONFIG", "config/default.yaml")).resolve()
DEFAULT_PREFECTURE = os.getenv("HIROVAL_PREFECTURE", "hiroshima")


def _dataset_cache_summary(settings: dict[str, Any]) -> dict[str, Any] | None:
    rows = read_manifest(settings)
    if not rows:
        return None
    return {
        name: {
            "fetched_at": row.get("fetched_at"),
            "status": row.get("status"),
            "feature_count": row.get("feature_count"),
            "sha256_short": (row.get("sha256") or "")[:8] or None,
        }
        for name, row in rows.items()
    }


def create_app(
    enrichment: FeatureEnrichment | None = None,
    *,
    settings: dict[str, Any] | None = None,
) -> FastAPI:
    """
    Build the API around one `FeatureEnrichment`.

    Without an injected instance the lookups are built from
    `HIROVAL_CONFIG` / `HIROVAL_PREFECTURE`. Datasets are loaded once at startup;
    a station load failure aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        s = settings
        e = enrichment
        if e is None:
            s = s or load_settings(CONFIG_PATH, prefecture=DEFAULT_PREFECTURE)
            e = FeatureEnrichment.from_settings(s)
        e.load()
        app.state.settings = s or {}
        app.state.enrichment = e
        yield

    app = FastAPI(title="hiroval API", version="0.1.0", lifespan=lifespan)

    def _enrichment(request: Request) -> FeatureEnrichment:
        return request.app.state.enrichment

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        e = _enrichment(request)
        s = request.app.state.settings
        return {
            "ok": True,
            "prefecture": (s.get("_meta", {}) or {}).get("prefecture"),
            "datasets": {
                "zoning": {"loaded": e.zoning.is_loaded(), "count": e.zoning.count(), "skipped": e.zoning.skipped},
                "stations": {"loaded": e.stations.is_loaded(), "count": e.stations.count(), "skipped": e.stations.skipped},
                "flood": None
                if e.flood is None
                else {"loaded": e.flood.is_loaded(), "count": e.flood.count(), "skipped": e.flood.skipped},
            },
            "degraded": sorted(e.degraded),
            "dataset_cache": _dataset_cache_summary(s) if s.get("paths") else None,
        }

    @app.get("/zoning", response_model=ZoningOut | None)
    def zoning(
        request: Request,
        lon: float = Query(..., ge=-180.0, le=180.0),
        lat: float = Query(..., ge=-90.0, le=90.0),
    ) -> dict[str, Any] | None:
        e = _enrichment(request)
        if "zoning" in e.degraded:
            raise HTTPException(status_code=503, detail="Zoning dataset unavailable")
        result = e.zoning.query(lon, lat)
        return None if result is None else result.to_dict()

    @app.get("/flood", response_model=FloodOut)
    def flood(
        request: Request,
        lon: float = Query(..., ge=-180.0, le=180.0),
        lat: float = Query(..., ge=-90.0, le=90.0),
        search_radius_cells: int | None = Query(None, ge=0, le=16),
        limit: int | None = Query(None, ge=1, le=1000),
    ) -> dict[str, Any]:
        e = _enrichment(request)
        if e.flood is None:
            raise HTTPException(status_code=404, detail="Flood lookup is not enabled for this deployment")
        if "flood" in e.degraded:
            raise HTTPException(status_code=503, detail="Flood dataset unavailable")
        return e.flood.evaluate(lon, lat, search_radius_cells=search_radius_cells, limit=limit).to_dict()

    @app.get("/stations/nearest", response_model=list[StationOut])
    def stations_nearest(
        request: Request,
        lon: float = Query(..., ge=-180.0, le=180.0),
        lat: float = Query(..., ge=-90.0, le=90.0),
        k: int = Query(5, ge=1, le=50),
        max_meters: float = Query(20000.0, gt=0.0),
        operator: str | None = None,
        line: str | None = None,
    ) -> list[dict[str, Any]]:
        results = _enrichment(request).stations.nearest(
            lon, lat, k=k, max_meters=max_meters, operator_like=operator, line_like=line
        )
        return [r.to_dict() for r in results]

    @app.get("/stations/search", response_model=list[StationMatch])
    def stations_search(
        request: Request,
        q: str = Query(..., min_length=1),
        limit: int = Query(20, ge=1, le=200),
    ) -> list[dict[str, Any]]:
        matches = _enrichment(request).stations.search_by_name(q, limit=limit)
        return [
            {"name": s.name, "line": s.line, "operator": s.operator, "ridership": s.ridership, "lon": s.lon, "lat": s.lat}
            for s in matches
        ]

    @app.get("/enrich", response_model=EnrichmentOut)
    def enrich(
        request: Request,
        lon: float = Query(..., ge=-180.0, le=180.0),
        lat: float = Query(..., ge=-90.0, le=90.0),
        k: int | None = Query(None, ge=1, le=50),
        max_meters: float | None = Query(None, gt=0.0),
        operator: str | None = None,
        line: str | None = None,
    ) -> dict[str, Any]:
        result = _enrichment(request).enrich(
            lon, lat, k=k, max_meters=max_meters, operator_like=operator, line_like=line
        )
        return result.to_dict()

    return app


app = create_app()
