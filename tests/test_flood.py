import math

import pytest

from hiroval.lookup.base import DatasetNotLoadedError
from hiroval.lookup.flood import (
    DEFAULT_FACTOR_TABLE,
    REASON_DEPTH_UNKNOWN,
    REASON_IN_FLOOD,
    REASON_INVALID_COORDINATE,
    REASON_NOT_IN_FLOOD,
    DepthClass,
    FactorRow,
    FloodConfig,
    FloodHazardLookup,
    build_flood_config,
    classify_depth,
    factor_for_depth,
    parse_factor_table,
)
from hiroval.lookup.zoning import ZoningConfig, ZoningLookup

from geojson_factory import CountingFetcher, collection, polygon_feature, square

OUTER = square(132.40, 34.35, 132.50, 34.45)
HOLE = square(132.44, 34.39, 132.46, 34.41)


def _flood(*features: dict, **config: object) -> tuple[FloodHazardLookup, CountingFetcher]:
    fetcher = CountingFetcher(collection(*features))
    lookup = FloodHazardLookup(FloodConfig(source="flood.geojson", **config), fetcher=fetcher)  # type: ignore[arg-type]
    lookup.load()
    return lookup, fetcher


@pytest.mark.parametrize(
    "text, expected",
    [
        ("10m以上", (10.0, math.inf, "10m以上")),
        ("0.5m未満", (0.0, 0.5, "0–0.5m")),
        ("0.5～3.0m", (0.5, 3.0, "0.5–3m")),
        ("0.5〜3.0m", (0.5, 3.0, "0.5–3m")),
        ("3.0-0.5m", (0.5, 3.0, "0.5–3m")),
        ("3m程度", (3.0, 3.0, "3m")),
        ("２．０ｍ", (2.0, 2.0, "2m")),
        (" 5 m 以上 ", (5.0, math.inf, "5m以上")),
        # "以上" is matched before "未満", so the rank wording reads as open-ended.
        ("0.5m以上3.0m未満", (0.5, math.inf, "0.5m以上")),
        ("unknown-text", (0.0, 0.0, None)),
        ("", (0.0, 0.0, None)),
        (None, (0.0, 0.0, None)),
    ],
)
def test_classify_depth(text: object, expected: tuple) -> None:
    assert classify_depth(text) == DepthClass(*expected)


def test_factor_for_depth_default_table() -> None:
    assert factor_for_depth(DepthClass(7.0, 7.0, "7m"), DEFAULT_FACTOR_TABLE) == 0.80
    assert factor_for_depth(DepthClass(10.0, math.inf, "10m以上"), DEFAULT_FACTOR_TABLE) == 0.70
    assert factor_for_depth(DepthClass(0.5, 3.0, "0.5–3m"), DEFAULT_FACTOR_TABLE) == 0.90
    assert factor_for_depth(DepthClass(0.0, 0.5, "0–0.5m"), DEFAULT_FACTOR_TABLE) == 0.97
    assert factor_for_depth(DepthClass(0.0, 0.0, None), DEFAULT_FACTOR_TABLE) == 1.0


def test_factor_for_depth_no_matching_row() -> None:
    table = parse_factor_table([{"min": 1.0, "factor": 0.5}])
    assert factor_for_depth(DepthClass(0.2, 0.2, "0.2m"), table) == 1.0


def test_parse_factor_table_sorts_descending_and_validates() -> None:
    table = parse_factor_table([{"min": 0.0, "factor": 0.9}, {"min": 5, "factor": "0.6", "label": "deep"}])
    assert table == (FactorRow(min=5.0, factor=0.6, label="deep"), FactorRow(min=0.0, factor=0.9, label=None))
    with pytest.raises(ValueError):
        parse_factor_table([{"min": 1.0}])


def test_hazard_respects_holes() -> None:
    lookup, _ = _flood(polygon_feature([OUTER, HOLE], waterDepth="3m程度", riverName="太田川"))
    in_hole = lookup.evaluate(132.45, 34.40)
    assert in_hole.in_flood is False
    assert in_hole.match_count == 0
    assert in_hole.reasons == [REASON_NOT_IN_FLOOD]

    in_ring = lookup.evaluate(132.42, 34.37)
    assert in_ring.in_flood is True


def test_zoning_ignores_the_same_hole() -> None:
    fetcher = CountingFetcher(collection(polygon_feature([OUTER, HOLE], name="準工業地域", bcr=60, far=200)))
    zoning = ZoningLookup(ZoningConfig(source="zoning.geojson"), fetcher=fetcher)
    zoning.load()
    result = zoning.query(132.45, 34.40)
    assert result is not None
    assert result.name == "準工業地域"


def test_evaluate_picks_deepest_class() -> None:
    lookup, _ = _flood(
        polygon_feature([OUTER], waterDepth="0.5m未満", riverName="太田川"),
        polygon_feature([OUTER], waterDepth="5.0～10.0m", riverName="太田川"),
        polygon_feature([OUTER], waterDepth="3m程度", riverName="瀬野川"),
    )
    result = lookup.evaluate(132.42, 34.37)
    assert result.in_flood is True
    assert result.depth_class == "5–10m"
    assert result.factor == 0.80
    assert result.match_count == 3
    assert result.reasons == [REASON_IN_FLOOD, "想定浸水深クラス: 5–10m"]
    assert result.sample[0] == {"river_name": "太田川", "water_depth": "0.5m未満"}
    assert len(result.sample) == 3


def test_open_ended_class_wins_over_bounded() -> None:
    lookup, _ = _flood(
        polygon_feature([OUTER], waterDepth="10m以上"),
        polygon_feature([OUTER], waterDepth="5.0～20.0m"),
    )
    result = lookup.evaluate(132.42, 34.37)
    assert result.depth_class == "10m以上"
    assert result.factor == 0.70
    assert result.to_dict()["depth"] == {"min": 10.0, "max": None, "label": "10m以上"}


def test_rank_wording_is_open_ended_and_replaces_earlier_class() -> None:
    lookup, _ = _flood(
        polygon_feature([OUTER], waterDepth="5m以上"),
        polygon_feature([OUTER], waterDepth="0.5m以上3.0m未満"),
    )
    result = lookup.evaluate(132.42, 34.37)
    # Both classes are open-ended; the later one replaces the earlier.
    assert result.depth_class == "0.5m以上"
    assert result.factor == 0.90
    assert result.to_dict()["depth"] == {"min": 0.5, "max": None, "label": "0.5m以上"}


def test_unclassifiable_depth_is_in_flood_with_neutral_factor() -> None:
    lookup, _ = _flood(polygon_feature([OUTER], waterDepth="不明"))
    result = lookup.evaluate(132.42, 34.37)
    assert result.in_flood is True
    assert result.depth_class is None
    assert result.factor == 1.0
    assert result.reasons == [REASON_IN_FLOOD, REASON_DEPTH_UNKNOWN]


def test_only_first_n_matches_are_classified() -> None:
    shallow = [polygon_feature([OUTER], waterDepth="0.5m未満") for _ in range(8)]
    deep = polygon_feature([OUTER], waterDepth="10m以上")
    lookup, _ = _flood(*shallow, deep)
    result = lookup.evaluate(132.42, 34.37)
    assert result.match_count == 9
    assert result.depth_class == "0–0.5m"
    assert result.factor == 0.97
    assert len(result.sample) == 8

    everything, _ = _flood(*shallow, deep, classify_first_n=9)
    assert everything.evaluate(132.42, 34.37).depth_class == "10m以上"


def test_limit_caps_match_count() -> None:
    lookup, _ = _flood(*[polygon_feature([OUTER], waterDepth="1m") for _ in range(5)])
    assert lookup.evaluate(132.42, 34.37, limit=3).match_count == 3
    assert lookup.evaluate(132.42, 34.37).match_count == 5


def test_outside_and_invalid_coordinates() -> None:
    lookup, _ = _flood(polygon_feature([OUTER], waterDepth="1m"))
    outside = lookup.evaluate(133.0, 35.0)
    assert (outside.in_flood, outside.factor, outside.depth_class) == (False, 1.0, None)

    invalid = lookup.evaluate(float("nan"), 34.37)
    assert invalid.in_flood is False
    assert invalid.factor == 1.0
    assert invalid.reasons == [REASON_INVALID_COORDINATE]


def test_configure_before_and_after_load() -> None:
    fetcher = CountingFetcher(collection(polygon_feature([OUTER], waterDepth="7m")))
    lookup = FloodHazardLookup(FloodConfig(source="a.geojson"), fetcher=fetcher)
    lookup.configure(source="b.geojson", cell_size_deg=0.0001)
    assert lookup.source == "b.geojson"
    assert lookup.config.cell_size_deg == 0.001
    lookup.load()
    assert fetcher.calls == ["b.geojson"]
    assert lookup.evaluate(132.42, 34.37).factor == 0.80

    with pytest.raises(RuntimeError):
        lookup.configure(source="c.geojson")
    with pytest.raises(RuntimeError):
        lookup.configure(cell_size_deg=0.05)

    lookup.configure(factor_table=[{"min": 0.0, "factor": 0.5}, {"min": 6.0, "factor": 0.4}])
    assert lookup.evaluate(132.42, 34.37).factor == 0.4
    lookup.configure(factor_table=[])
    assert lookup.evaluate(132.42, 34.37).factor == 0.4


def test_evaluate_before_load_raises() -> None:
    lookup = FloodHazardLookup(FloodConfig(source="flood.geojson"), fetcher=CountingFetcher(collection()))
    with pytest.raises(DatasetNotLoadedError):
        lookup.evaluate(132.42, 34.37)


def test_load_is_idempotent() -> None:
    lookup, fetcher = _flood(polygon_feature([OUTER], waterDepth="1m"))
    assert lookup.load() == 1
    assert len(fetcher.calls) == 1


def test_build_flood_config_reads_factor_table() -> None:
    settings = {
        "paths": {"root": "/srv/hiroval"},
        "datasets": {
            "flood": {
                "source": "https://example.com/flood.geojson",
                "factor_table": [{"min": 0.0, "factor": 0.95}, {"min": 3.0, "factor": 0.8}],
                "classify_first_n": 0,
            }
        },
    }
    config = build_flood_config(settings)
    assert config.source == "https://example.com/flood.geojson"
    assert [row.min for row in config.factor_table] == [3.0, 0.0]
    assert config.classify_first_n == 1
    assert config.respect_holes is True
    assert config.search_radius_cells == 2
