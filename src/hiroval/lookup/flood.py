"""
Flood hazard (洪水浸水想定区域) lookup over MLIT A31a polygons.

`evaluate(lon, lat)` answers three questions for a property location:
1) Is it inside any inundation polygon (holes respected)?
2) What is the deepest expected depth class among the matched polygons?
3) Which value-adjustment factor does that class map to?

Depth attributes are free text ("0.5m未満", "0.5～3.0m", "10m以上", "3m程度", ...).
`classify_depth` turns them into a numeric `{min, max}` range; the factor table is
matched on `min`, largest threshold first.

The factor table is a provisional business rule; deployments override it via
`datasets.flood.factor_table` in config or `FloodHazardLookup.configure()`.
"""

from __future__ import annotations

import dataclasses
import math
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Iterable

from hiroval.datasets.download import dataset_source
from hiroval.datasets.records import FloodRecord, parse_flood_feature
from hiroval.datasets.source import Fetcher
from hiroval.geo.geometry import is_finite_point, point_in_polygons
from hiroval.geo.grid import MIN_CELL_SIZE_DEG, GridIndex
from hiroval.lookup.base import DatasetLookup, fetcher_from_settings

REASON_INVALID_COORDINATE = "座標が不正です"
REASON_NOT_IN_FLOOD = "洪水浸水想定区域の該当なし"
REASON_IN_FLOOD = "洪水想定区域内"
REASON_DEPTH_UNKNOWN = "浸水深クラス不明（属性なし）"

_NUM = r"(\d+(?:\.\d+)?)"
_RE_AT_LEAST = re.compile(_NUM + r"m?以上")
_RE_LESS_THAN = re.compile(_NUM + r"m?未満")
_RE_RANGE = re.compile(_NUM + r"~" + _NUM + r"m?")
_RE_APPROX = re.compile(_NUM + r"m?(?:程度)?")

_RANGE_SEPARATORS = ("〜", "～", "–", "—", "－", "-")


@dataclass(frozen=True)
class DepthClass:
    min: float
    max: float
    label: str | None

    @property
    def classified(self) -> bool:
        return self.label is not None


UNCLASSIFIED = DepthClass(min=0.0, max=0.0, label=None)


@dataclass(frozen=True)
class FactorRow:
    min: float
    factor: float
    label: str | None = None


DEFAULT_FACTOR_TABLE: tuple[FactorRow, ...] = (
    FactorRow(min=10.0, factor=0.70, label="10m以上"),
    FactorRow(min=5.0, factor=0.80, label="5.0–10.0m"),
    FactorRow(min=3.0, factor=0.85, label="3.0–5.0m"),
    FactorRow(min=0.5, factor=0.90, label="0.5–3.0m"),
    FactorRow(min=0.0, factor=0.97, label="0–0.5m"),
)


@dataclass(frozen=True)
class FloodConfig:
    source: str
    cell_size_deg: float = 0.02
    respect_holes: bool = True
    search_radius_cells: int = 2
    limit: int = 200
    # Depth is classified over the first N matches in discovery order, not all of them.
    classify_first_n: int = 8
    factor_table: tuple[FactorRow, ...] = DEFAULT_FACTOR_TABLE


@dataclass(frozen=True)
class FloodResult:
    in_flood: bool
    depth_class: str | None
    factor: float
    reasons: list[str]
    match_count: int
    sample: list[dict[str, str]] = field(default_factory=list)
    depth: DepthClass | None = None

    def to_dict(self) -> dict[str, Any]:
        depth = None
        if self.depth is not None and self.depth.classified:
            # JSON has no Infinity; an open-ended class is reported with max=None.
            depth = {
                "min": self.depth.min,
                "max": self.depth.max if math.isfinite(self.depth.max) else None,
                "label": self.depth.label,
            }
        return {
            "in_flood": self.in_flood,
            "depth_class": self.depth_class,
            "depth": depth,
            "factor": self.factor,
            "reasons": list(self.reasons),
            "match_count": self.match_count,
            "sample": [dict(s) for s in self.sample],
        }


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def normalize_depth_text(text: Any) -> str:
    s = unicodedata.normalize("NFKC", str(text))
    for sep in _RANGE_SEPARATORS:
        s = s.replace(sep, "~")
    return re.sub(r"\s+", "", s).lower()


def classify_depth(text: Any) -> DepthClass:
    """
    Parse a free-text inundation depth into a numeric range.

    >>> classify_depth("10m以上")
    DepthClass(min=10.0, max=inf, label='10m以上')
    >>> classify_depth("0.5～3.0m")
    DepthClass(min=0.5, max=3.0, label='0.5–3m')
    """
    if text is None or text == "":
        return UNCLASSIFIED
    s = normalize_depth_text(text)

    m = _RE_AT_LEAST.search(s)
    if m:
        v = float(m.group(1))
        return DepthClass(min=v, max=math.inf, label=f"{_fmt(v)}m以上")

    m = _RE_LESS_THAN.search(s)
    if m:
        v = float(m.group(1))
        return DepthClass(min=0.0, max=v, label=f"0–{_fmt(v)}m")

    m = _RE_RANGE.search(s)
    if m:
        a, b = float(m.group(1)), float(m.group(2))
        lo, hi = min(a, b), max(a, b)
        return DepthClass(min=lo, max=hi, label=f"{_fmt(lo)}–{_fmt(hi)}m")

    m = _RE_APPROX.search(s)
    if m:
        v = float(m.group(1))
        return DepthClass(min=v, max=v, label=f"{_fmt(v)}m")

    return UNCLASSIFIED


def parse_factor_table(rows: Iterable[Any]) -> tuple[FactorRow, ...]:
    """Validate factor rows (FactorRow or {min, factor, label?} mappings) and sort by descending min."""
    out: list[FactorRow] = []
    for row in rows:
        if isinstance(row, FactorRow):
            out.append(row)
            continue
        if not isinstance(row, dict) or "min" not in row or "factor" not in row:
            raise ValueError(f"factor_table rows need 'min' and 'factor': {row!r}")
        label = row.get("label")
        out.append(FactorRow(min=float(row["min"]), factor=float(row["factor"]), label=None if label is None else str(label)))
    return tuple(sorted(out, key=lambda r: r.min, reverse=True))


def factor_for_depth(depth: DepthClass, table: Iterable[FactorRow]) -> float:
    """First row (largest min first) whose threshold is <= the class min; 1.0 when unclassified."""
    if not depth.classified:
        return 1.0
    for row in table:
        if depth.min >= row.min:
            return row.factor
    return 1.0


def deeper(candidate: DepthClass, best: DepthClass) -> bool:
    """Whether `candidate` replaces `best` as the deepest class seen so far."""
    if not candidate.classified:
        return False
    return (
        math.isinf(candidate.max)
        or candidate.max > best.max
        or (not math.isinf(best.max) and candidate.min > best.min)
    )


def build_flood_config(settings: dict[str, Any]) -> FloodConfig:
    cfg = (settings.get("datasets", {}) or {}).get("flood", {}) or {}
    table = cfg.get("factor_table")
    return FloodConfig(
        source=dataset_source(settings, "flood"),
        cell_size_deg=max(MIN_CELL_SIZE_DEG, float(cfg.get("cell_size_deg", 0.02))),
        respect_holes=bool(cfg.get("respect_holes", True)),
        search_radius_cells=max(0, int(cfg.get("search_radius_cells", 2))),
        limit=max(1, int(cfg.get("limit", 200))),
        classify_first_n=max(1, int(cfg.get("classify_first_n", 8))),
        factor_table=parse_factor_table(table) if table else DEFAULT_FACTOR_TABLE,
    )


class FloodHazardLookup(DatasetLookup):
    dataset_name = "flood"

    def __init__(self, config: FloodConfig, *, fetcher: Fetcher | None = None) -> None:
        super().__init__(config.source, fetcher=fetcher)
        self.config = dataclasses.replace(config, factor_table=parse_factor_table(config.factor_table))
        self._records: list[FloodRecord] = []
        self._grid = GridIndex(config.cell_size_deg)

    @classmethod
    def from_settings(cls, settings: dict[str, Any], *, fetcher: Fetcher | None = None) -> "FloodHazardLookup":
        return cls(build_flood_config(settings), fetcher=fetcher or fetcher_from_settings(settings))

    def configure(
        self,
        *,
        source: str | None = None,
        cell_size_deg: float | None = None,
        factor_table: Iterable[Any] | None = None,
    ) -> FloodConfig:
        """
        Override the dataset source, grid cell size and/or factor table.

        Source and cell size only take effect before `load()`; changing them on a
        loaded instance raises RuntimeError. An empty factor table is ignored.
        """
        changes: dict[str, Any] = {}
        if source is not None or cell_size_deg is not None:
            if self._loaded:
                raise RuntimeError("flood dataset already loaded; source and cell size can no longer change")
            if source is not None:
                changes["source"] = str(source)
                self._source = str(source)
            if cell_size_deg is not None and math.isfinite(float(cell_size_deg)):
                changes["cell_size_deg"] = max(MIN_CELL_SIZE_DEG, float(cell_size_deg))
        if factor_table is not None:
            rows = list(factor_table)
            if rows:
                changes["factor_table"] = parse_factor_table(rows)
        if changes:
            self.config = dataclasses.replace(self.config, **changes)
        return self.config

    def _build(self, features: list[Any]) -> int:
        records, failures = self._parse_all(features, parse_flood_feature)
        grid = GridIndex.build_from_boxes((r.feature.bbox for r in records), self.config.cell_size_deg)
        self._records = records
        self._grid = grid
        self.skipped = failures + grid.skipped
        return len(records)

    def matches(
        self,
        lon: float,
        lat: float,
        *,
        search_radius_cells: int | None = None,
        limit: int | None = None,
    ) -> list[FloodRecord]:
        """Polygons containing the point, in discovery order, at most `limit`."""
        self._require_loaded()
        if not is_finite_point(lon, lat):
            return []
        radius = max(0, int(self.config.search_radius_cells if search_radius_cells is None else search_radius_cells))
        cap = max(1, int(self.config.limit if limit is None else limit))

        hits: list[FloodRecord] = []
        for _, fresh in self._grid.iter_rings(lon, lat, radius):
            for i in fresh:
                rec = self._records[i]
                if not rec.feature.bbox.contains(lon, lat):
                    continue
                if point_in_polygons(lon, lat, rec.feature.polygons, self.config.respect_holes):
                    hits.append(rec)
                    if len(hits) >= cap:
                        return hits
        return hits

    def evaluate(
        self,
        lon: float,
        lat: float,
        *,
        search_radius_cells: int | None = None,
        limit: int | None = None,
    ) -> FloodResult:
        self._require_loaded()
        if not is_finite_point(lon, lat):
            return FloodResult(
                in_flood=False,
                depth_class=None,
                factor=1.0,
                reasons=[REASON_INVALID_COORDINATE],
                match_count=0,
            )

        hits = self.matches(lon, lat, search_radius_cells=search_radius_cells, limit=limit)
        if not hits:
            return FloodResult(
                in_flood=False,
                depth_class=None,
                factor=1.0,
                reasons=[REASON_NOT_IN_FLOOD],
                match_count=0,
            )

        best = UNCLASSIFIED
        sample: list[dict[str, str]] = []
        for rec in hits[: self.config.classify_first_n]:
            cls = classify_depth(rec.water_depth)
            if deeper(cls, best):
                best = cls
            sample.append({"river_name": rec.river_name, "water_depth": rec.water_depth})

        factor = factor_for_depth(best, self.config.factor_table)
        reasons = [
            REASON_IN_FLOOD,
            f"想定浸水深クラス: {best.label}" if best.classified else REASON_DEPTH_UNKNOWN,
        ]
        return FloodResult(
            in_flood=True,
            depth_class=best.label,
            factor=factor,
            reasons=reasons,
            match_count=len(hits),
            sample=sample,
            depth=best if best.classified else None,
        )
