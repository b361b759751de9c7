from __future__ import annotations

from pathlib import Path

import pytest

from driver_scorecard.identity.reconciliation import (
    ReconciliationTable,
    is_human_name,
    is_placeholder,
    load_reconciliation_table,
)
from driver_scorecard.io.schema import FeedValidationError, ReconciliationEntry


def _table(*pairs: tuple[str, str]) -> ReconciliationTable:
    return ReconciliationTable(ReconciliationEntry(name=name, token=token) for name, token in pairs)


def test_resolve_falls_back_to_token() -> None:
    table = _table(("Ruggeri, Ruggero", "AGECZO3FHG9JX"))

    assert table.resolve("AGECZO3FHG9JX") == "Ruggeri, Ruggero"
    assert table.resolve("AUNKNOWN123") == "AUNKNOWN123"


def test_reverse_resolve_is_exact_match_only() -> None:
    table = _table(("Ruggeri, Ruggero", "AGECZO3FHG9JX"))

    assert table.reverse_resolve("Ruggeri, Ruggero") == "AGECZO3FHG9JX"
    assert table.reverse_resolve(" Ruggeri, Ruggero ") == "AGECZO3FHG9JX"
    assert table.reverse_resolve("RUGGERI, RUGGERO") is None


def test_name_mapped_to_two_tokens_is_rejected() -> None:
    with pytest.raises(FeedValidationError, match="maps to two tokens"):
        _table(("Medici, Sergio", "AMDQHZ3LZK9PR"), ("Medici, Sergio", "AOTHER000001"))


def test_placeholder_names_are_kept_separate_from_real_names() -> None:
    table = _table(
        ("ID:A31O1VTQ5ESZ", "A31O1VTQ5ESZYI"),
        ("Wilson Frometa, Ernesto", "A31O1VTQ5ESZYI"),
    )

    assert len(table) == 2
    assert table.resolve("A31O1VTQ5ESZYI") == "Wilson Frometa, Ernesto"
    assert table.reverse_resolve("ID:A31O1VTQ5ESZ") == "A31O1VTQ5ESZYI"


def test_placeholder_only_token_resolves_to_placeholder() -> None:
    table = _table(("ID:A1HBAD70KF4B", "A1HBAD70KF4BJS"))

    assert table.resolve("A1HBAD70KF4BJS") == "ID:A1HBAD70KF4B"


def test_human_name_detection() -> None:
    assert is_placeholder("ID:A1HBAD70KF4B")
    assert not is_placeholder("Idris, Otmani")
    assert is_human_name("Cau, Daniele")
    assert not is_human_name("ID:A1HBAD70KF4B")
    assert not is_human_name("A2VN2H0236SIOC", token="A2VN2H0236SIOC")
    assert not is_human_name("   ")


def test_load_reconciliation_table_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "reconciliation.yaml"
    path.write_text(
        "schema_version: 1\n"
        "entries:\n"
        "  - {name: \"Palma, Maicol\", token: AE5QJFCD0PTFU}\n"
        "  - {name: \"Cau, Tiziano\", token: A2VN2H0236SIOC}\n",
        encoding="utf-8",
    )

    table = load_reconciliation_table(path)

    assert table.name_to_token["Palma, Maicol"] == "AE5QJFCD0PTFU"
    assert table.token_to_name["A2VN2H0236SIOC"] == "Cau, Tiziano"


def test_load_reconciliation_table_reports_missing_fields(tmp_path: Path) -> None:
    path = tmp_path / "reconciliation.yaml"
    path.write_text("entries:\n  - {name: \"Palma, Maicol\"}\n", encoding="utf-8")

    with pytest.raises(FeedValidationError, match="field 'token'"):
        load_reconciliation_table(path)
