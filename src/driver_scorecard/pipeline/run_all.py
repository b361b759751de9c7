from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from driver_scorecard.config import AppConfig
from driver_scorecard.drilldown.snapshot import FlowSnapshot
from driver_scorecard.features.aggregates import (
    WindowedAggregate,
    aggregate,
    late_drivers,
    ncc_drivers,
    station_trend,
    summarize_scorecard,
    summarize_stations,
)
from driver_scorecard.features.geo import (
    GeoDataset,
    aggregate_geo,
    driver_matrix,
    filter_attributions,
)
from driver_scorecard.identity.entities import CanonicalEntitySet, build_canonical_entities
from driver_scorecard.identity.reconciliation import (
    ReconciliationTable,
    load_reconciliation_table,
)
from driver_scorecard.io.flow_snapshot import load_flow_snapshot
from driver_scorecard.io.geo import load_geo_dataset
from driver_scorecard.io.read import load_name_feed, load_station_feed, load_token_feed
from driver_scorecard.io.schema import StationWeeklyFeed
from driver_scorecard.io.write import write_summary, write_tables
from driver_scorecard.paths import build_output_paths
from driver_scorecard.preprocess.weeks import TimeWindow, effective_window, full_window

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedInputs:
    table: ReconciliationTable
    entities: CanonicalEntitySet
    station_feed: StationWeeklyFeed | None = None
    flow_snapshot: FlowSnapshot | None = None
    geo: GeoDataset | None = None

    def week_labels(self) -> list[str]:
        labels = set(self.entities.week_labels())
        if self.station_feed is not None:
            labels |= self.station_feed.week_labels()
        return sorted(labels)


def load_inputs(config: AppConfig) -> LoadedInputs:
    """Load every configured feed once; malformed files raise ``FeedValidationError``."""
    table = load_reconciliation_table(config.input.reconciliation_path)
    entities = build_canonical_entities(
        load_name_feed(config.input.name_feed_path),
        load_token_feed(config.input.token_feed_path),
        table,
        station_cities=config.stations.cities,
    )
    return LoadedInputs(
        table=table,
        entities=entities,
        station_feed=load_station_feed(config.input.station_feed_path),
        flow_snapshot=load_flow_snapshot(config.input.flow_snapshot_path),
        geo=load_geo_dataset(config.input.geo_sites_path),
    )


def build_window(
    week_labels: list[str],
    *,
    year: int | None = None,
    week_from: int | None = None,
    week_to: int | None = None,
) -> TimeWindow:
    window = full_window(week_labels, year)
    if week_from is not None:
        window = window.with_start(week_from)
    if week_to is not None:
        window = window.with_end(week_to)
    return effective_window(window, week_labels)


def station_filter_from(stations: list[str]) -> list[str] | None:
    return list(stations) or None


def build_scorecard(
    inputs: LoadedInputs,
    config: AppConfig,
    window: TimeWindow | None,
    *,
    stations: list[str] | None = None,
    min_total: int | None = None,
) -> WindowedAggregate:
    return aggregate(
        inputs.entities,
        window,
        stations,
        min_total=config.filters.scorecard_min_total if min_total is None else min_total,
        station_feed=inputs.station_feed,
        severity=config.severity,
    )


def _window_summary(window: TimeWindow, scorecard: WindowedAggregate) -> dict[str, Any]:
    return {
        "year": window.year,
        "week_from": window.start,
        "week_to": window.end,
        "weeks": [week_id.label for week_id in scorecard.weeks],
        "range": scorecard.week_range,
    }


def run_all(out_dir: Path, config: AppConfig) -> Path:
    inputs = load_inputs(config)
    filters = config.filters
    window = build_window(
        inputs.week_labels(),
        year=filters.year,
        week_from=filters.week_from,
        week_to=filters.week_to,
    )
    stations = station_filter_from(filters.stations)
    scorecard = build_scorecard(inputs, config, window, stations=stations)

    tables: dict[str, pd.DataFrame] = {
        "scorecard": scorecard.per_driver,
        "stations": scorecard.per_station,
        "ncc_drivers": ncc_drivers(
            inputs.entities, window, stations, min_defects=filters.ncc_min_defects
        ),
        "late_drivers": late_drivers(
            inputs.entities, window, stations, min_defects=filters.late_min_defects
        ),
        "collisions": inputs.entities.collisions,
    }
    summary: dict[str, Any] = {
        "window": _window_summary(window, scorecard),
        "entities": inputs.entities.source_breakdown(),
        "scorecard": summarize_scorecard(scorecard.per_driver),
        "stations": {
            "ncc": summarize_stations(scorecard.per_station, "ncc"),
            "late": summarize_stations(scorecard.per_station, "late_total"),
        },
    }
    if inputs.station_feed is not None:
        tables["station_trend"] = station_trend(inputs.station_feed, window, stations)
    if inputs.geo is not None:
        geo = aggregate_geo(inputs.geo.sites)
        matrix = driver_matrix(inputs.geo.drivers, None, inputs.geo.defect_types)
        tables["geo_sites"] = geo.to_frame()
        tables["geo_attributions"] = filter_attributions(inputs.geo.attributions)
        tables["geo_drivers"] = matrix.rows
        summary["geo"] = {
            "year": inputs.geo.year,
            "max_total": geo.max_total,
            "totals": matrix.totals,
        }
    if inputs.flow_snapshot is not None:
        tables["flow_defect_types"] = inputs.flow_snapshot.defect_types
        summary["flow"] = {
            "week": inputs.flow_snapshot.week,
            "defect_types": len(inputs.flow_snapshot.defect_types),
        }

    paths = build_output_paths(out_dir)
    write_tables(tables, paths, fmt=config.outputs.tables_format)
    summary_path = write_summary(summary, paths.summary_file)
    LOGGER.info(
        "Run complete: %d scorecard rows, summary at %s",
        len(scorecard.per_driver),
        summary_path,
    )
    return summary_path
