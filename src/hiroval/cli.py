from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

from hiroval.settings import load_settings


def _add_point(p: argparse.ArgumentParser) -> None:
    p.add_argument("lon", type=float, help="Longitude")
    p.add_argument("lat", type=float, help="Latitude")


def _add_station_filters(p: argparse.ArgumentParser) -> None:
    p.add_argument("--k", type=int, default=None, help="Number of stations to return")
    p.add_argument("--max-meters", type=float, default=None, help="Distance cap in meters")
    p.add_argument("--operator", default=None, help="Operator name substring (e.g. 広島電鉄)")
    p.add_argument("--line", default=None, help="Line name substring (e.g. 本線)")


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default="config/default.yaml", help="Path to config YAML")
    common.add_argument("--prefecture", default="hiroshima", help="Prefecture override (config/prefectures/<name>.yaml)")

    parser = argparse.ArgumentParser(prog="hiroval", description="hiroval geospatial lookups", parents=[common])

    sub = parser.add_subparsers(dest="command", required=True)
    fetch = sub.add_parser("fetch-datasets", parents=[common], help="Download remote GeoJSON datasets into raw_dir")
    fetch.add_argument(
        "--only",
        action="append",
        default=None,
        help="Limit to a dataset name (zoning, flood, stations; repeatable).",
    )
    _add_point(sub.add_parser("zoning", parents=[common], help="Zoning at a coordinate"))
    flood = sub.add_parser("flood", parents=[common], help="Flood hazard evaluation at a coordinate")
    _add_point(flood)
    flood.add_argument("--search-radius-cells", type=int, default=None, help="Grid rings to search")
    stations = sub.add_parser("stations", parents=[common], help="Nearest stations to a coordinate")
    _add_point(stations)
    _add_station_filters(stations)
    search = sub.add_parser("station-search", parents=[common], help="Find stations by name substring")
    search.add_argument("query", help="Station name substring")
    search.add_argument("--limit", type=int, default=20, help="Maximum number of matches")
    enrich = sub.add_parser("enrich", parents=[common], help="Zoning + stations (+ flood) for a coordinate")
    _add_point(enrich)
    _add_station_filters(enrich)
    sub.add_parser("api-info", parents=[common], help="Print API run instructions")
    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(Path(args.config), prefecture=args.prefecture)

    if args.command == "api-info":
        host = settings["api"]["host"]
        port = settings["api"]["port"]
        print(f"Run: uvicorn hiroval.api.main:app --reload --host {host} --port {port}")
        print(f"Env: HIROVAL_CONFIG={args.config} HIROVAL_PREFECTURE={args.prefecture}")
        return

    if args.command == "fetch-datasets":
        from hiroval.datasets.download import fetch_datasets

        only = getattr(args, "only", None)
        only_set = {str(x) for x in (only or [])} if only else None
        fetched = fetch_datasets(settings, only=only_set)
        _print_json({name: entry.to_row() for name, entry in fetched.items()})
        return

    if args.command == "zoning":
        from hiroval.lookup.zoning import ZoningLookup

        lookup = ZoningLookup.from_settings(settings)
        lookup.load()
        result = lookup.query(args.lon, args.lat)
        _print_json(None if result is None else result.to_dict())
        return

    if args.command == "flood":
        from hiroval.lookup.flood import FloodHazardLookup

        lookup = FloodHazardLookup.from_settings(settings)
        lookup.load()
        _print_json(lookup.evaluate(args.lon, args.lat, search_radius_cells=args.search_radius_cells).to_dict())
        return

    if args.command == "stations":
        from hiroval.lookup.stations import StationProximitySearch

        search = StationProximitySearch.from_settings(settings)
        search.load()
        results = search.nearest(
            args.lon,
            args.lat,
            k=args.k,
            max_meters=args.max_meters,
            operator_like=args.operator,
            line_like=args.line,
        )
        _print_json([r.to_dict() for r in results])
        return

    if args.command == "station-search":
        from hiroval.lookup.stations import StationProximitySearch

        search = StationProximitySearch.from_settings(settings)
        search.load()
        _print_json(
            [
                {"name": s.name, "line": s.line, "operator": s.operator, "lon": s.lon, "lat": s.lat}
                for s in search.search_by_name(args.query, limit=args.limit)
            ]
        )
        return

    if args.command == "enrich":
        from hiroval.lookup.enrichment import FeatureEnrichment

        enrichment = FeatureEnrichment.from_settings(settings)
        enrichment.load()
        result = enrichment.enrich(
            args.lon,
            args.lat,
            k=args.k,
            max_meters=args.max_meters,
            operator_like=args.operator,
            line_like=args.line,
        )
        _print_json(result.to_dict())
        return

    raise SystemExit(f"Unknown command: {args.command}")
