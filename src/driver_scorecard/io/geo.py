from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

from driver_scorecard.features.geo import ATTRIBUTION_COLUMNS, GeoDataset, GeoSite
from driver_scorecard.io.read import load_yaml_document
from driver_scorecard.io.schema import (
    IssueCollector,
    check_schema_version,
    parse_count,
    require_string,
)

LOGGER = logging.getLogger(__name__)


def _parse_defect_counts(
    raw: Any,
    *,
    context: str,
    issues: IssueCollector,
) -> dict[str, int]:
    if not isinstance(raw, Mapping):
        issues.add(f"{context}: defects must be a mapping of defect type to count")
        return {}
    return {
        str(key).strip(): parse_count(value, context=f"{context}.{key}", issues=issues)
        for key, value in raw.items()
    }


def parse_geo_dataset(payload: Mapping[str, Any], *, source: str = "geo sites") -> GeoDataset:
    issues = IssueCollector(source)
    check_schema_version(payload, issues)

    raw_types = payload.get("defect_types") or []
    if not isinstance(raw_types, list):
        issues.add("'defect_types' must be a list")
        raw_types = []
    defect_types = tuple(str(item).strip() for item in raw_types if str(item).strip())

    sites: list[GeoSite] = []
    for index, row in enumerate(payload.get("sites") or []):
        context = f"sites[{index}]"
        if not isinstance(row, Mapping):
            issues.add(f"{context} must be a mapping")
            continue
        key = require_string(row.get("key"), context=context, field_name="key", issues=issues)
        defects = _parse_defect_counts(row.get("defects"), context=context, issues=issues)
        declared = row.get("total")
        if declared is not None and declared != sum(defects.values()):
            issues.add(f"{context}: total {declared!r} does not match sum of defects")
        sites.append(
            GeoSite(key=key.upper(), label=str(row.get("label") or key), defects=defects)
        )

    attribution_rows: list[dict[str, Any]] = []
    for index, row in enumerate(payload.get("attributions") or []):
        context = f"attributions[{index}]"
        if not isinstance(row, Mapping):
            issues.add(f"{context} must be a mapping")
            continue
        attribution_rows.append(
            {
                "defect": require_string(
                    row.get("defect"), context=context, field_name="defect", issues=issues
                ),
                "attribution": require_string(
                    row.get("attribution"),
                    context=context,
                    field_name="attribution",
                    issues=issues,
                ),
                "count": parse_count(row.get("count"), context=context, issues=issues),
            }
        )

    driver_rows: list[dict[str, Any]] = []
    for index, row in enumerate(payload.get("drivers") or []):
        context = f"drivers[{index}]"
        if not isinstance(row, Mapping):
            issues.add(f"{context} must be a mapping")
            continue
        counts = _parse_defect_counts(row.get("counts"), context=context, issues=issues)
        driver_rows.append(
            {
                "name": require_string(
                    row.get("name"), context=context, field_name="name", issues=issues
                ),
                **{key: counts.get(key, 0) for key in defect_types},
            }
        )

    issues.raise_if_any()
    return GeoDataset(
        year=str(payload.get("year") or ""),
        defect_types=defect_types,
        sites=tuple(sites),
        attributions=pd.DataFrame(attribution_rows, columns=ATTRIBUTION_COLUMNS),
        drivers=pd.DataFrame(driver_rows, columns=["name", *defect_types]),
    )


def load_geo_dataset(path: str | Path | None) -> GeoDataset | None:
    if not path:
        return None
    dataset = parse_geo_dataset(load_yaml_document(path), source=Path(path).name)
    LOGGER.info(
        "Loaded geo dataset with %d sites and %d drivers from %s",
        len(dataset.sites),
        len(dataset.drivers),
        path,
    )
    return dataset
