from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

from driver_scorecard.drilldown.snapshot import (
    ATTRIBUTION_COLUMNS,
    ATTRIBUTION_SITE_COLUMNS,
    DEFECT_TYPE_COLUMNS,
    DRIVER_COLUMNS,
    FlowSnapshot,
)
from driver_scorecard.io.read import load_yaml_document
from driver_scorecard.io.schema import (
    IssueCollector,
    check_schema_version,
    parse_count,
    require_string,
)

LOGGER = logging.getLogger(__name__)


def _parse_defect_types(
    raw: Any,
    issues: IssueCollector,
) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        issues.add("'defect_types' must be a list")
        return []
    rows = []
    for index, item in enumerate(raw):
        context = f"defect_types[{index}]"
        if not isinstance(item, Mapping):
            issues.add(f"{context} must be a mapping")
            continue
        key = require_string(item.get("key"), context=context, field_name="key", issues=issues)
        rows.append(
            {
                "key": key,
                "label": str(item.get("label") or key),
                "count": parse_count(item.get("count"), context=context, issues=issues),
            }
        )
    return rows


def _parse_attributions(
    raw: Any,
    issues: IssueCollector,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    if not isinstance(raw, Mapping):
        issues.add("'attributions' must map defect type to a list of attributions")
        return [], []
    rows: list[dict[str, Any]] = []
    site_rows: list[dict[str, Any]] = []
    for defect_type, items in raw.items():
        defect_key = str(defect_type).strip()
        if not isinstance(items, list):
            issues.add(f"attributions.{defect_key} must be a list")
            continue
        for index, item in enumerate(items):
            context = f"attributions.{defect_key}[{index}]"
            if not isinstance(item, Mapping):
                issues.add(f"{context} must be a mapping")
                continue
            key = require_string(item.get("key"), context=context, field_name="key", issues=issues)
            sites = item.get("sites") or {}
            if not isinstance(sites, Mapping):
                issues.add(f"{context}: sites must be a mapping of site to count")
                sites = {}
            site_counts = {
                str(site).strip().upper(): parse_count(
                    count, context=f"{context}.sites.{site}", issues=issues
                )
                for site, count in sites.items()
            }
            for site, count in site_counts.items():
                site_rows.append(
                    {"defect_type": defect_key, "attribution": key, "site": site, "count": count}
                )
            rows.append(
                {
                    "defect_type": defect_key,
                    "attribution": key,
                    "label": str(item.get("label") or key),
                    "count": parse_count(
                        item.get("count"),
                        context=context,
                        issues=issues,
                        default=sum(site_counts.values()),
                    ),
                }
            )
    return rows, site_rows


def _parse_drivers(raw: Any, issues: IssueCollector) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        issues.add("'drivers' must be a list")
        return []
    rows = []
    for index, item in enumerate(raw):
        context = f"drivers[{index}]"
        if not isinstance(item, Mapping):
            issues.add(f"{context} must be a mapping")
            continue
        site = require_string(item.get("site"), context=context, field_name="site", issues=issues)
        attribution = require_string(
            item.get("attribution"), context=context, field_name="attribution", issues=issues
        )
        entries = item.get("entries") or []
        if not isinstance(entries, list):
            issues.add(f"{context}: entries must be a list")
            continue
        for entry_index, entry in enumerate(entries):
            entry_context = f"{context}.entries[{entry_index}]"
            if not isinstance(entry, Mapping):
                issues.add(f"{entry_context} must be a mapping")
                continue
            rows.append(
                {
                    "defect_type": str(item.get("defect_type") or "").strip(),
                    "attribution": attribution,
                    "site": site.upper(),
                    "driver": require_string(
                        entry.get("name"), context=entry_context, field_name="name", issues=issues
                    ),
                    "count": parse_count(entry.get("count"), context=entry_context, issues=issues),
                }
            )
    return rows


def parse_flow_snapshot(
    payload: Mapping[str, Any],
    *,
    source: str = "flow snapshot",
) -> FlowSnapshot:
    issues = IssueCollector(source)
    check_schema_version(payload, issues)
    defect_rows = _parse_defect_types(payload.get("defect_types"), issues)
    attribution_rows, site_rows = _parse_attributions(payload.get("attributions"), issues)
    driver_rows = _parse_drivers(payload.get("drivers"), issues)

    known_types = {row["key"] for row in defect_rows}
    for row in attribution_rows:
        if row["defect_type"] not in known_types:
            issues.add(f"attributions reference unknown defect type {row['defect_type']!r}")
            break
    issues.raise_if_any()

    return FlowSnapshot(
        week=str(payload.get("week") or ""),
        defect_types=pd.DataFrame(defect_rows, columns=DEFECT_TYPE_COLUMNS),
        attributions=pd.DataFrame(attribution_rows, columns=ATTRIBUTION_COLUMNS),
        attribution_sites=pd.DataFrame(site_rows, columns=ATTRIBUTION_SITE_COLUMNS),
        drivers=pd.DataFrame(driver_rows, columns=DRIVER_COLUMNS),
    )


def load_flow_snapshot(path: str | Path | None) -> FlowSnapshot | None:
    if not path:
        return None
    snapshot = parse_flow_snapshot(load_yaml_document(path), source=Path(path).name)
    LOGGER.info(
        "Loaded flow snapshot %s: %d defect types, %d attributions, %d driver rows",
        snapshot.week or "(unlabelled)",
        len(snapshot.defect_types),
        len(snapshot.attributions),
        len(snapshot.drivers),
    )
    return snapshot
