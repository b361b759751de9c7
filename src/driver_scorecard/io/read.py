from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

import yaml

from driver_scorecard.io.schema import (
    IssueCollector,
    NameKeyedRecord,
    ReconciliationEntry,
    StationWeeklyFeed,
    TokenKeyedRecord,
    check_schema_version,
    parse_name_record,
    parse_token_record,
    parse_weekly_bucket,
    require_string,
)

LOGGER = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {".yaml", ".yml", ".json"}


def load_yaml_document(path: str | Path) -> Mapping[str, Any]:
    """Read a YAML (or JSON) document and require a mapping at the top level."""
    source_path = Path(path).resolve()
    if source_path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported input file type: {source_path.suffix}")
    with source_path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"{source_path.name} must contain a mapping/object")
    return payload


def _record_list(
    payload: Mapping[str, Any],
    key: str,
    issues: IssueCollector,
) -> list[Mapping[str, Any]]:
    raw = payload.get(key)
    if not isinstance(raw, list):
        issues.add(f"'{key}' must be a list")
        return []
    rows: list[Mapping[str, Any]] = []
    for index, item in enumerate(raw):
        if not isinstance(item, Mapping):
            issues.add(f"{key}[{index}] must be a mapping")
            continue
        rows.append(item)
    return rows


def parse_name_feed(
    payload: Mapping[str, Any],
    *,
    source: str = "name feed",
) -> list[NameKeyedRecord]:
    issues = IssueCollector(source)
    check_schema_version(payload, issues)
    records = [
        parse_name_record(row, context=f"drivers[{index}]", issues=issues)
        for index, row in enumerate(_record_list(payload, "drivers", issues))
    ]
    issues.raise_if_any()
    return records


def parse_token_feed(
    payload: Mapping[str, Any],
    *,
    source: str = "token feed",
) -> list[TokenKeyedRecord]:
    issues = IssueCollector(source)
    check_schema_version(payload, issues)
    records = [
        parse_token_record(row, context=f"drivers[{index}]", issues=issues)
        for index, row in enumerate(_record_list(payload, "drivers", issues))
    ]
    issues.raise_if_any()
    return records


def parse_reconciliation_entries(
    payload: Mapping[str, Any],
    *,
    source: str = "reconciliation table",
) -> list[ReconciliationEntry]:
    issues = IssueCollector(source)
    check_schema_version(payload, issues)
    entries: list[ReconciliationEntry] = []
    for index, row in enumerate(_record_list(payload, "entries", issues)):
        context = f"entries[{index}]"
        name = require_string(row.get("name"), context=context, field_name="name", issues=issues)
        token = require_string(row.get("token"), context=context, field_name="token", issues=issues)
        if name and token:
            entries.append(ReconciliationEntry(name=name, token=token))
    issues.raise_if_any()
    return entries


def parse_station_feed(
    payload: Mapping[str, Any],
    *,
    source: str = "station feed",
) -> StationWeeklyFeed:
    issues = IssueCollector(source)
    check_schema_version(payload, issues)
    raw_stations = payload.get("stations")
    if not isinstance(raw_stations, Mapping):
        issues.add("'stations' must be a mapping of station code to weekly buckets")
        raw_stations = {}

    ncc: dict[str, dict[str, int]] = {}
    late: dict[str, dict[str, int]] = {}
    severe: dict[str, dict[str, int]] = {}
    for raw_code, raw_buckets in raw_stations.items():
        code = str(raw_code).strip().upper()
        if not isinstance(raw_buckets, Mapping):
            issues.add(f"stations.{code} must be a mapping")
            continue
        ncc[code] = parse_weekly_bucket(
            raw_buckets.get("ncc"), context=f"stations.{code}.ncc", issues=issues
        )
        late[code] = parse_weekly_bucket(
            raw_buckets.get("late"), context=f"stations.{code}.late", issues=issues
        )
        severe[code] = parse_weekly_bucket(
            raw_buckets.get("severe"), context=f"stations.{code}.severe", issues=issues
        )
        for label, count in severe[code].items():
            if count > late[code].get(label, 0):
                issues.add(f"stations.{code} {label}: severe count exceeds late count")
    issues.raise_if_any()
    return StationWeeklyFeed(ncc=ncc, late=late, severe=severe)


def load_name_feed(path: str | Path) -> list[NameKeyedRecord]:
    records = parse_name_feed(load_yaml_document(path), source=Path(path).name)
    LOGGER.info("Loaded %d name-keyed records from %s", len(records), path)
    return records


def load_token_feed(path: str | Path) -> list[TokenKeyedRecord]:
    records = parse_token_feed(load_yaml_document(path), source=Path(path).name)
    LOGGER.info("Loaded %d token-keyed records from %s", len(records), path)
    return records


def load_reconciliation_entries(path: str | Path) -> list[ReconciliationEntry]:
    return parse_reconciliation_entries(load_yaml_document(path), source=Path(path).name)


def load_station_feed(path: str | Path | None) -> StationWeeklyFeed | None:
    if not path:
        return None
    feed = parse_station_feed(load_yaml_document(path), source=Path(path).name)
    LOGGER.info("Loaded station weekly feed for %d stations from %s", len(feed.stations), path)
    return feed
