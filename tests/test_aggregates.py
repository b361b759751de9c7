from __future__ import annotations

import pandas as pd
import pytest

from driver_scorecard.config import SeverityConfig
from driver_scorecard.features.aggregates import (
    PER_DRIVER_COLUMNS,
    PER_STATION_COLUMNS,
    aggregate,
    late_drivers,
    ncc_drivers,
    station_trend,
    summarize_scorecard,
    summarize_stations,
)
from driver_scorecard.identity.entities import CanonicalEntitySet, build_canonical_entities
from driver_scorecard.identity.reconciliation import ReconciliationTable
from driver_scorecard.io.schema import (
    NameKeyedRecord,
    ReconciliationEntry,
    StationWeeklyFeed,
    TokenKeyedRecord,
)
from driver_scorecard.preprocess.weeks import TimeWindow, full_window


def _entity_set() -> CanonicalEntitySet:
    table = ReconciliationTable([ReconciliationEntry(name="Alpha, Anna", token="T1")])
    name_records = [
        NameKeyedRecord(
            name="Alpha, Anna",
            home_city="Roma",
            stations=frozenset({"UIT4"}),
            total=10,
            ncc_weeks={"2026-W1": 5, "2026-W2": 5},
        ),
        NameKeyedRecord(
            name="Beta, Bruno",
            home_city="Milano",
            stations=frozenset({"UIT1", "UIT7"}),
            total=1,
            ncc_weeks={"2026-W2": 1},
        ),
    ]
    token_records = [
        TokenKeyedRecord(
            token="T1",
            stations=frozenset({"UIT4"}),
            late_total=20,
            severe_total=10,
            late_weeks={"2026-W1": 10, "2026-W2": 10},
        ),
        TokenKeyedRecord(
            token="T2",
            stations=frozenset({"UIT1"}),
            late_total=6,
            severe_total=0,
            late_weeks={"2025-W52": 4, "2026-W2": 2},
        ),
    ]
    return build_canonical_entities(name_records, token_records, table)


def test_per_driver_sums_and_ordering_without_window() -> None:
    result = aggregate(_entity_set(), None)

    per_driver = result.per_driver
    assert list(per_driver.columns) == PER_DRIVER_COLUMNS
    assert per_driver["key"].tolist() == ["T1", "T2", "Beta, Bruno"]
    top = per_driver.iloc[0]
    assert top["display_name"] == "Alpha, Anna"
    assert (top["ncc"], top["late_total"], top["late"], top["severe"]) == (10, 20, 10, 10)
    assert top["combined"] == 30
    assert top["severity"] == "MEDIUM"
    assert [week_id.label for week_id in result.weeks] == ["2025-W52", "2026-W1", "2026-W2"]


def test_window_restricts_year_and_week_range() -> None:
    result = aggregate(_entity_set(), TimeWindow(start=2, end=2, year=2026))

    by_key = result.per_driver.set_index("key")
    assert by_key.loc["T1", "combined"] == 15
    assert by_key.loc["T1", "severe"] == 5
    assert by_key.loc["T2", "late_total"] == 2
    assert result.week_range == "W2/26 – W2/26"


def test_full_window_equals_no_window() -> None:
    entities = _entity_set()

    unrestricted = aggregate(entities, None)
    full = aggregate(entities, full_window(entities.week_labels()))

    pd.testing.assert_frame_equal(unrestricted.per_driver, full.per_driver)
    pd.testing.assert_frame_equal(unrestricted.per_station, full.per_station)


def test_windowed_severe_is_rounded_once_over_the_window() -> None:
    entities = build_canonical_entities(
        [],
        [
            TokenKeyedRecord(
                token="T3",
                stations=frozenset({"UIT4"}),
                late_total=9,
                severe_total=2,
                late_weeks={"2026-W1": 3, "2026-W2": 3, "2026-W3": 3},
            )
        ],
        ReconciliationTable([]),
    )

    def severe_in(window: TimeWindow | None) -> int:
        return int(aggregate(entities, window).per_driver.iloc[0]["severe"])

    # 3 * 2/9 ~= 0.67
    assert severe_in(TimeWindow(start=3, end=3, year=2026)) == 1
    # 6 * 2/9 ~= 1.33, not 1 + 1
    assert severe_in(TimeWindow(start=2, end=3, year=2026)) == 1
    assert severe_in(None) == 2
    row = aggregate(entities, TimeWindow(start=3, end=3, year=2026)).per_driver.iloc[0]
    assert (row["late_total"], row["late"]) == (3, 2)


def test_aggregate_is_deterministic() -> None:
    entities = _entity_set()
    window = TimeWindow(start=1, end=52)

    first = aggregate(entities, window, ["UIT1", "UIT4"], min_total=1)
    second = aggregate(entities, window, ["UIT4", "UIT1"], min_total=1)

    pd.testing.assert_frame_equal(first.per_driver, second.per_driver)
    pd.testing.assert_frame_equal(first.per_station, second.per_station)


def test_station_filter_and_threshold() -> None:
    entities = _entity_set()

    uit1 = aggregate(entities, None, ["uit1"])
    thresholded = aggregate(entities, None, min_total=5)
    nothing = aggregate(entities, None, [])

    assert uit1.per_driver["key"].tolist() == ["T2", "Beta, Bruno"]
    assert thresholded.per_driver["key"].tolist() == ["T1", "T2"]
    assert nothing.is_empty
    assert list(nothing.per_driver.columns) == PER_DRIVER_COLUMNS
    assert list(nothing.per_station.columns) == PER_STATION_COLUMNS


def test_ties_break_on_key() -> None:
    records = [
        NameKeyedRecord(
            name=name,
            home_city="",
            stations=frozenset({"UIT4"}),
            total=4,
            ncc_weeks={"2026-W1": 4},
        )
        for name in ("Zeta, Zoe", "Alpha, Anna")
    ]
    entities = build_canonical_entities(records, [], ReconciliationTable([]))

    result = aggregate(entities, None)

    assert result.per_driver["key"].tolist() == ["Alpha, Anna", "Zeta, Zoe"]


def test_severity_config_flows_through_aggregate() -> None:
    strict = SeverityConfig(critical_severe_min=5, high_min=10, medium_min=5)

    result = aggregate(_entity_set(), None, severity=strict)

    assert result.per_driver.set_index("key").loc["T1", "severity"] == "CRITICAL"


def test_per_station_from_drivers_counts_every_station() -> None:
    result = aggregate(_entity_set(), None, min_total=5)

    per_station = result.per_station.set_index("station")
    assert per_station.index.tolist() == ["UIT4", "UIT1", "UIT7"]
    assert per_station.loc["UIT4", "combined"] == 30
    assert per_station.loc["UIT1", "ncc"] == 1
    assert per_station.loc["UIT1", "late_total"] == 6
    assert per_station.loc["UIT7", "combined"] == 1
    assert per_station.loc["UIT1", "driver_count"] == 1
    assert per_station.loc["UIT7", "driver_count"] == 0


def test_per_station_prefers_station_feed() -> None:
    feed = StationWeeklyFeed(
        ncc={"UIT4": {"2026-W1": 3, "2026-W2": 4}},
        late={"UIT4": {"2026-W1": 10, "2026-W2": 6}},
        severe={"UIT4": {"2026-W1": 2, "2026-W2": 1}},
    )

    result = aggregate(
        _entity_set(),
        TimeWindow(start=2, end=2, year=2026),
        station_feed=feed,
    )

    row = result.per_station.iloc[0]
    assert row["station"] == "UIT4"
    assert (row["ncc"], row["late_total"], row["late"], row["severe"]) == (4, 6, 5, 1)
    assert row["combined"] == 10
    assert row["driver_count"] == 1


def test_per_feed_driver_views_use_their_own_thresholds() -> None:
    entities = _entity_set()

    ncc = ncc_drivers(entities, None, min_defects=3)
    late = late_drivers(entities, None, min_defects=5)

    assert ncc["key"].tolist() == ["T1"]
    assert ncc.iloc[0]["ncc"] == 10
    assert late["key"].tolist() == ["T1", "T2"]
    assert late.iloc[0]["severe"] == 10


def test_station_trend_is_long_form_and_chronological() -> None:
    feed = StationWeeklyFeed(
        ncc={"UIT1": {"2026-W2": 1}, "UIT4": {"2025-W52": 2}},
        late={"UIT4": {"2025-W52": 5}},
        severe={"UIT4": {"2025-W52": 2}},
    )

    trend = station_trend(feed, None, ["UIT4"])

    assert trend["week_id"].tolist() == ["2025-W52", "2026-W2"]
    assert trend.iloc[0][["ncc", "late_total", "late", "severe"]].tolist() == [2, 5, 3, 2]
    assert set(trend["station"]) == {"UIT4"}


def test_summaries() -> None:
    result = aggregate(_entity_set(), None)

    ncc = summarize_stations(result.per_station, "ncc")
    late = summarize_stations(result.per_station, "late_total")
    scorecard = summarize_scorecard(result.per_driver)

    assert (ncc["total"], ncc["worst_station"], ncc["worst_value"], ncc["worst_pct"]) == (
        12,
        "UIT4",
        10,
        83,
    )
    assert (late["total"], late["worst_pct"], late["severe_pct"]) == (26, 77, 38)
    assert scorecard == {
        "combined": 37,
        "ncc": 11,
        "late": 26,
        "severe": 10,
        "dual": 1,
        "count": 3,
    }


def test_summaries_of_empty_results() -> None:
    empty = aggregate(_entity_set(), None, [])

    assert summarize_stations(empty.per_station)["worst_station"] == "—"
    assert summarize_scorecard(empty.per_driver)["count"] == 0
    with pytest.raises(ValueError, match="Unsupported station metric"):
        summarize_stations(empty.per_station, "severe")
