from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

import pandas as pd

from driver_scorecard.config import SeverityConfig
from driver_scorecard.features.severity import classify_severity_frame
from driver_scorecard.identity.entities import CanonicalEntitySet, estimate_severe
from driver_scorecard.io.schema import StationWeeklyFeed
from driver_scorecard.preprocess.weeks import TimeWindow, WeekId, week_range_label, weeks_in_window

METRIC_COLUMNS = ["ncc", "late_total", "severe"]
WINDOWED_COLUMNS = ["ncc", "late_total"]
PER_DRIVER_COLUMNS = [
    "key",
    "display_name",
    "home_city",
    "stations",
    "ncc",
    "late_total",
    "late",
    "severe",
    "combined",
    "severity",
    "has_ncc",
    "has_late",
]
PER_STATION_COLUMNS = [
    "station",
    "ncc",
    "late_total",
    "late",
    "severe",
    "combined",
    "driver_count",
]
NCC_DRIVER_COLUMNS = ["key", "display_name", "home_city", "stations", "ncc"]
LATE_DRIVER_COLUMNS = ["key", "display_name", "stations", "late_total", "late", "severe"]
STATION_TREND_COLUMNS = [
    "week_id",
    "year",
    "week",
    "station",
    "ncc",
    "late_total",
    "late",
    "severe",
]


@dataclass(frozen=True)
class WindowedAggregate:
    per_driver: pd.DataFrame
    per_station: pd.DataFrame
    weeks: tuple[WeekId, ...] = ()

    @property
    def week_range(self) -> str:
        return week_range_label(list(self.weeks))

    @property
    def is_empty(self) -> bool:
        return self.per_driver.empty


def normalize_station_filter(station_filter: Iterable[str] | None) -> frozenset[str] | None:
    """``None`` keeps every station; an empty iterable keeps none."""
    if station_filter is None:
        return None
    return frozenset(str(code).strip().upper() for code in station_filter if str(code).strip())


def window_mask(frame: pd.DataFrame, window: TimeWindow | None) -> pd.Series:
    if window is None or frame.empty:
        return pd.Series(True, index=frame.index)
    mask = frame["week"].astype(int).between(window.start, window.end)
    if window.year is not None:
        mask &= frame["year"].astype(int) == window.year
    return mask


def _windowed_entity_frame(
    entities: CanonicalEntitySet,
    window: TimeWindow | None,
    station_filter: frozenset[str] | None,
) -> pd.DataFrame:
    """One row per entity at the filtered stations with windowed metric sums."""
    rows = [
        {
            "key": entity.key,
            "display_name": entity.display_name,
            "home_city": entity.home_city,
            "stations": ",".join(sorted(entity.stations)),
            "has_name_record": entity.has_name_record,
            "has_token_record": entity.has_token_record,
            "entity_late_total": entity.late_total,
            "entity_severe_total": entity.severe_total,
        }
        for entity in entities
        if station_filter is None or entity.stations & station_filter
    ]
    base = pd.DataFrame(
        rows,
        columns=[
            "key",
            "display_name",
            "home_city",
            "stations",
            "has_name_record",
            "has_token_record",
            "entity_late_total",
            "entity_severe_total",
        ],
    )

    weekly = entities.weekly
    if weekly.empty:
        sums = pd.DataFrame(0, index=base["key"], columns=WINDOWED_COLUMNS)
    else:
        included = weekly.loc[window_mask(weekly, window)]
        sums = included.groupby("key")[WINDOWED_COLUMNS].sum().reindex(base["key"], fill_value=0)
    sums.index.name = "key"

    frame = base.merge(sums.reset_index(), on="key", how="left")
    for column in [*WINDOWED_COLUMNS, "entity_late_total", "entity_severe_total"]:
        frame[column] = pd.to_numeric(frame[column], errors="coerce").fillna(0).astype(int)
    # rounded once over the window at the entity's overall severe ratio
    frame["severe"] = pd.Series(
        [
            estimate_severe(late, late_total, severe_total)
            for late, late_total, severe_total in zip(
                frame["late_total"], frame["entity_late_total"], frame["entity_severe_total"]
            )
        ],
        index=frame.index,
        dtype=int,
    )
    frame["late"] = frame["late_total"] - frame["severe"]
    # severe is already inside late_total
    frame["combined"] = frame["ncc"] + frame["late_total"]
    frame["has_ncc"] = frame["ncc"] > 0
    frame["has_late"] = frame["late_total"] > 0
    return frame


def _sort_metric(frame: pd.DataFrame, metric: str, key: str = "key") -> pd.DataFrame:
    return frame.sort_values(
        [metric, key],
        ascending=[False, True],
        kind="mergesort",
    ).reset_index(drop=True)


def _station_sums_from_feed(
    feed: StationWeeklyFeed,
    window: TimeWindow | None,
    station_filter: frozenset[str] | None,
) -> pd.DataFrame:
    trend = station_trend(feed, window, station_filter)
    stations = [
        code for code in feed.stations if station_filter is None or code in station_filter
    ]
    index = pd.Index(stations, name="station")
    if trend.empty:
        sums = pd.DataFrame(0, index=index, columns=METRIC_COLUMNS)
    else:
        sums = trend.groupby("station")[METRIC_COLUMNS].sum().reindex(index, fill_value=0)
    return sums.reset_index()


def _station_sums_from_drivers(
    frame: pd.DataFrame,
    station_filter: frozenset[str] | None,
) -> pd.DataFrame:
    if frame.empty:
        return pd.DataFrame(columns=["station", *METRIC_COLUMNS])
    # each driver counts in full at every station it operates from
    exploded = frame.assign(station=frame["stations"].str.split(",")).explode("station")
    if station_filter is not None:
        exploded = exploded.loc[exploded["station"].isin(station_filter)]
    if exploded.empty:
        return pd.DataFrame(columns=["station", *METRIC_COLUMNS])
    return exploded.groupby("station")[METRIC_COLUMNS].sum().reset_index()


def _driver_counts(per_driver: pd.DataFrame) -> pd.Series:
    if per_driver.empty:
        return pd.Series(dtype=int)
    exploded = per_driver.assign(station=per_driver["stations"].str.split(",")).explode("station")
    return exploded.groupby("station")["key"].nunique()


def aggregate(
    entities: CanonicalEntitySet,
    window: TimeWindow | None,
    station_filter: Iterable[str] | None = None,
    *,
    min_total: int = 0,
    station_feed: StationWeeklyFeed | None = None,
    severity: SeverityConfig | None = None,
) -> WindowedAggregate:
    """Windowed, severity-tagged per-driver and per-station sums.

    ``combined`` counts NCC, non-severe late and severe late once each, so it
    equals ``ncc + late_total``. Per-driver ``severe`` is estimated once over
    the window from the driver's overall severe ratio. Drivers below
    ``min_total`` are dropped from ``per_driver`` but still contribute to
    per-station sums when no station feed is supplied.
    """
    stations = normalize_station_filter(station_filter)
    labels = entities.week_labels()
    if station_feed is not None:
        labels = sorted(set(labels) | station_feed.week_labels())
    included_weeks = tuple(weeks_in_window(labels, window))

    frame = _windowed_entity_frame(entities, window, stations)
    per_driver = frame.loc[frame["combined"] >= min_total].copy()
    per_driver["severity"] = classify_severity_frame(per_driver, severity)
    per_driver = _sort_metric(per_driver[PER_DRIVER_COLUMNS], "combined")

    if station_feed is not None:
        per_station = _station_sums_from_feed(station_feed, window, stations)
    else:
        per_station = _station_sums_from_drivers(frame, stations)
    for column in METRIC_COLUMNS:
        per_station[column] = pd.to_numeric(per_station[column]).fillna(0).astype(int)
    per_station["late"] = per_station["late_total"] - per_station["severe"]
    per_station["combined"] = per_station["ncc"] + per_station["late_total"]
    counts = _driver_counts(per_driver)
    per_station["driver_count"] = (
        per_station["station"].map(counts).fillna(0).astype(int) if not per_station.empty else 0
    )
    per_station = _sort_metric(per_station[PER_STATION_COLUMNS], "combined", key="station")

    return WindowedAggregate(per_driver=per_driver, per_station=per_station, weeks=included_weeks)


def ncc_drivers(
    entities: CanonicalEntitySet,
    window: TimeWindow | None,
    station_filter: Iterable[str] | None = None,
    *,
    min_defects: int = 3,
) -> pd.DataFrame:
    frame = _windowed_entity_frame(entities, window, normalize_station_filter(station_filter))
    selected = frame.loc[frame["has_name_record"] & (frame["ncc"] >= min_defects)]
    return _sort_metric(selected[NCC_DRIVER_COLUMNS], "ncc")


def late_drivers(
    entities: CanonicalEntitySet,
    window: TimeWindow | None,
    station_filter: Iterable[str] | None = None,
    *,
    min_defects: int = 5,
) -> pd.DataFrame:
    frame = _windowed_entity_frame(entities, window, normalize_station_filter(station_filter))
    selected = frame.loc[frame["has_token_record"] & (frame["late_total"] >= min_defects)]
    return _sort_metric(selected[LATE_DRIVER_COLUMNS], "late_total")


def station_trend(
    feed: StationWeeklyFeed,
    window: TimeWindow | None,
    station_filter: Iterable[str] | None = None,
) -> pd.DataFrame:
    """Long-form week x station counts from the station feed, chronological."""
    stations = normalize_station_filter(station_filter)
    rows: list[dict[str, Any]] = []
    for week_id in weeks_in_window(feed.week_labels(), window):
        for code in feed.stations:
            if stations is not None and code not in stations:
                continue
            late_total = feed.late.get(code, {}).get(week_id.label, 0)
            severe = feed.severe.get(code, {}).get(week_id.label, 0)
            rows.append(
                {
                    "week_id": week_id.label,
                    "year": week_id.year,
                    "week": week_id.week,
                    "station": code,
                    "ncc": feed.ncc.get(code, {}).get(week_id.label, 0),
                    "late_total": late_total,
                    "late": late_total - severe,
                    "severe": severe,
                }
            )
    return pd.DataFrame(rows, columns=STATION_TREND_COLUMNS)


def _percent(part: float, whole: float) -> int:
    if whole <= 0:
        return 0
    return int(part * 100 / whole + 0.5)


def summarize_stations(per_station: pd.DataFrame, metric: str = "ncc") -> dict[str, Any]:
    if metric not in {"ncc", "late_total", "combined"}:
        raise ValueError(f"Unsupported station metric: {metric}")
    if per_station.empty:
        total = severe_total = late_total = 0
        worst_station, worst_value = "—", 0
    else:
        total = int(per_station[metric].sum())
        severe_total = int(per_station["severe"].sum())
        late_total = int(per_station["late_total"].sum())
        worst = _sort_metric(per_station, metric, key="station").iloc[0]
        worst_station, worst_value = str(worst["station"]), int(worst[metric])
    return {
        "metric": metric,
        "total": total,
        "worst_station": worst_station,
        "worst_value": worst_value,
        "worst_pct": _percent(worst_value, total),
        "severe_total": severe_total,
        "severe_pct": _percent(severe_total, late_total),
    }


def summarize_scorecard(per_driver: pd.DataFrame) -> dict[str, int]:
    if per_driver.empty:
        return {"combined": 0, "ncc": 0, "late": 0, "severe": 0, "dual": 0, "count": 0}
    return {
        "combined": int(per_driver["combined"].sum()),
        "ncc": int(per_driver["ncc"].sum()),
        "late": int(per_driver["late_total"].sum()),
        "severe": int(per_driver["severe"].sum()),
        "dual": int((per_driver["has_ncc"] & per_driver["has_late"]).sum()),
        "count": int(len(per_driver)),
    }
