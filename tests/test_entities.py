from __future__ import annotations

import logging
from pathlib import Path

from driver_scorecard.identity.entities import (
    apportion_severe,
    build_canonical_entities,
    estimate_severe,
    round_half_up,
)
from driver_scorecard.identity.reconciliation import ReconciliationTable
from driver_scorecard.io.read import load_token_feed
from driver_scorecard.io.schema import NameKeyedRecord, ReconciliationEntry, TokenKeyedRecord

SAMPLE_DIR = Path(__file__).resolve().parents[1] / "data" / "sample"

RUGGERI_WEEKS = {
    "2025-W50": 12,
    "2025-W51": 3,
    "2025-W52": 13,
    "2026-W2": 15,
    "2026-W3": 2,
    "2026-W4": 12,
    "2026-W5": 3,
    "2026-W8": 1,
}


def _table(*pairs: tuple[str, str]) -> ReconciliationTable:
    return ReconciliationTable(ReconciliationEntry(name=name, token=token) for name, token in pairs)


def _name_record(
    name: str,
    weeks: dict[str, int],
    stations: tuple[str, ...] = ("UIT4",),
    home_city: str = "",
) -> NameKeyedRecord:
    return NameKeyedRecord(
        name=name,
        home_city=home_city,
        stations=frozenset(stations),
        total=sum(weeks.values()),
        ncc_weeks=weeks,
    )


def _token_record(
    token: str,
    weeks: dict[str, int],
    severe_total: int = 0,
    stations: tuple[str, ...] = ("UIT4",),
) -> TokenKeyedRecord:
    return TokenKeyedRecord(
        token=token,
        stations=frozenset(stations),
        late_total=sum(weeks.values()),
        severe_total=severe_total,
        late_weeks=weeks,
    )


def test_round_half_up() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(4.918) == 5
    assert round_half_up(0.49) == 0


def test_apportioned_severe_matches_ratio_example() -> None:
    estimates = apportion_severe(RUGGERI_WEEKS, late_total=61, severe_total=25)

    # 12 * 25/61 ~= 4.92
    assert estimates["2025-W50"] == 5
    for label, late in RUGGERI_WEEKS.items():
        assert estimates[label] == round_half_up(late * 25 / 61)
        assert estimates[label] <= late


def test_apportioned_severe_rounds_each_week_independently() -> None:
    even = apportion_severe({"2026-W1": 3, "2026-W2": 3, "2026-W3": 3}, 15, 3)
    uneven_weeks = {"2026-W1": 12, "2026-W2": 11, "2026-W3": 11, "2026-W4": 11}
    uneven = apportion_severe(uneven_weeks, 61, 25)

    assert even == {"2026-W1": 1, "2026-W2": 1, "2026-W3": 1}
    assert list(uneven.values()) == [5, 5, 5, 5]


def test_estimate_severe_rounds_exact_halves_up() -> None:
    assert estimate_severe(3, late_total=6, severe_total=1) == 1
    assert estimate_severe(5, late_total=10, severe_total=1) == 1
    assert estimate_severe(2, late_total=10, severe_total=1) == 0
    assert estimate_severe(4, late_total=0, severe_total=0) == 0


def test_apportioned_severe_is_zero_without_late_total() -> None:
    assert apportion_severe({"2026-W1": 0, "2026-W2": 0}, late_total=0, severe_total=0) == {
        "2026-W1": 0,
        "2026-W2": 0,
    }
    assert apportion_severe({}, late_total=10, severe_total=3) == {}


def test_full_period_severe_estimate_equals_severe_total_for_sample_feed() -> None:
    for record in load_token_feed(SAMPLE_DIR / "token_feed.yaml"):
        assert record.severe_total <= record.late_total
        assert sum(record.late_weeks.values()) == record.late_total
        estimate = estimate_severe(record.late_total, record.late_total, record.severe_total)
        assert estimate == record.severe_total


def test_name_only_record_yields_zero_late_branch() -> None:
    weeks = {"2026-W1": 3, "2026-W2": 4}

    entity_set = build_canonical_entities([_name_record("Palma, Maicol", weeks)], [], _table())

    entity = entity_set.by_key()["Palma, Maicol"]
    assert entity.ncc_total == 7
    assert dict(entity.late_weeks) == {}
    assert entity.severe_weeks == {}
    assert entity.has_name_record and not entity.has_token_record


def test_records_merge_through_reconciliation_table() -> None:
    table = _table(("Ruggeri, Ruggero", "AGECZO3FHG9JX"))

    entity_set = build_canonical_entities(
        [_name_record("Ruggeri, Ruggero", {"2026-W2": 2}, stations=("UIT1",), home_city="Roma")],
        [_token_record("AGECZO3FHG9JX", RUGGERI_WEEKS, severe_total=25)],
        table,
    )

    assert len(entity_set) == 1
    entity = entity_set.entities[0]
    assert entity.key == "AGECZO3FHG9JX"
    assert entity.display_name == "Ruggeri, Ruggero"
    assert entity.home_city == "Roma"
    assert entity.stations == frozenset({"UIT1", "UIT4"})
    assert dict(entity.ncc_weeks) == {"2026-W2": 2}
    assert entity.late_total == 61
    assert entity.severe_total == 25
    assert entity.severe_ratio == 25 / 61
    assert entity_set.source_breakdown()["merged"] == 1


def test_late_only_token_without_mapping_displays_token() -> None:
    entity_set = build_canonical_entities(
        [],
        [_token_record("AH60BA77IO1NM", {"2026-W5": 3})],
        _table(),
    )

    entity = entity_set.entities[0]
    assert entity.display_name == "AH60BA77IO1NM"
    assert entity.ncc_total == 0


def test_placeholder_name_prefers_human_name_from_table() -> None:
    table = _table(
        ("ID:A31O1VTQ5ESZ", "A31O1VTQ5ESZYI"),
        ("Wilson Frometa, Ernesto", "A31O1VTQ5ESZYI"),
    )

    entity_set = build_canonical_entities(
        [_name_record("ID:A31O1VTQ5ESZ", {"2026-W1": 1})],
        [_token_record("A31O1VTQ5ESZYI", {"2026-W1": 2})],
        table,
    )

    assert entity_set.entities[0].display_name == "Wilson Frometa, Ernesto"


def test_placeholder_is_kept_when_no_human_name_exists() -> None:
    table = _table(("ID:A1HBAD70KF4B", "A1HBAD70KF4BJS"))

    entity_set = build_canonical_entities(
        [_name_record("ID:A1HBAD70KF4B", {"2026-W1": 1})],
        [_token_record("A1HBAD70KF4BJS", {"2026-W1": 2})],
        table,
    )

    assert entity_set.entities[0].display_name == "ID:A1HBAD70KF4B"


def test_same_feed_collisions_are_counted_and_last_write_wins(caplog) -> None:
    table = _table(
        ("Zyka, Gerti", "A1VBK3NCA1KUB6"),
        ("ZYKA, GERTI", "A1VBK3NCA1KUB6"),
    )

    with caplog.at_level(logging.WARNING):
        entity_set = build_canonical_entities(
            [
                _name_record("Zyka, Gerti", {"2026-W1": 1}, stations=("UIT4",)),
                _name_record("ZYKA, GERTI", {"2026-W2": 5}, stations=("UIT1",)),
            ],
            [],
            table,
        )

    assert entity_set.collision_count == 1
    assert entity_set.collisions.iloc[0]["replaced_label"] == "Zyka, Gerti"
    entity = entity_set.entities[0]
    assert dict(entity.ncc_weeks) == {"2026-W2": 5}
    assert entity.stations == frozenset({"UIT1", "UIT4"})
    assert "Duplicate name-feed record" in caplog.text


def test_home_city_falls_back_to_station_mapping() -> None:
    entity_set = build_canonical_entities(
        [],
        [_token_record("A3UD94Q70561NT", {"2026-W1": 1}, stations=("UIT7", "UIT1"))],
        _table(),
        station_cities={"UIT1": "Milano", "UIT7": "Milano"},
    )

    assert entity_set.entities[0].home_city == "Milano"


def test_weekly_frame_carries_apportioned_severe() -> None:
    entity_set = build_canonical_entities(
        [],
        [_token_record("AGECZO3FHG9JX", RUGGERI_WEEKS, severe_total=25)],
        _table(),
    )

    weekly = entity_set.weekly
    assert list(weekly["week_id"]) == list(RUGGERI_WEEKS)
    assert int(weekly["late_total"].sum()) == 61
    assert weekly["severe"].tolist() == [5, 1, 5, 6, 1, 5, 1, 0]
    assert entity_set.week_labels() == list(RUGGERI_WEEKS)
