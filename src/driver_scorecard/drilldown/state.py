"""Immutable four-level drill-down selection and its pure transitions.

Levels are ordered defect type, attribution, site, driver. Selecting a level
requires every level above it; changing a level clears every level below it;
re-selecting the current value toggles it off. A transition attempted out of
order returns the selection unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass

import pandas as pd

from driver_scorecard.drilldown.snapshot import FlowSnapshot

LEVELS = ("defect_type", "attribution", "site", "driver")
OPTION_COLUMNS = ["key", "label", "count"]


@dataclass(frozen=True)
class DrillDownSelection:
    defect_type: str | None = None
    attribution: str | None = None
    site: str | None = None
    driver: str | None = None

    def __post_init__(self) -> None:
        values = [getattr(self, level) for level in LEVELS]
        for upper, lower, name in zip(values, values[1:], LEVELS[1:]):
            if upper is None and lower is not None:
                raise ValueError(f"{name} cannot be set while the level above it is unset")

    @property
    def depth(self) -> int:
        return sum(1 for level in LEVELS if getattr(self, level) is not None)

    def as_dict(self) -> dict[str, str | None]:
        return {level: getattr(self, level) for level in LEVELS}


def reset() -> DrillDownSelection:
    return DrillDownSelection()


def select_defect_type(selection: DrillDownSelection, value: str) -> DrillDownSelection:
    if value == selection.defect_type:
        return DrillDownSelection()
    return DrillDownSelection(defect_type=value)


def select_attribution(selection: DrillDownSelection, value: str) -> DrillDownSelection:
    if selection.defect_type is None:
        return selection
    if value == selection.attribution:
        return DrillDownSelection(defect_type=selection.defect_type)
    return DrillDownSelection(defect_type=selection.defect_type, attribution=value)


def select_site(selection: DrillDownSelection, value: str) -> DrillDownSelection:
    if selection.attribution is None:
        return selection
    keep = DrillDownSelection(
        defect_type=selection.defect_type,
        attribution=selection.attribution,
    )
    if value == selection.site:
        return keep
    return DrillDownSelection(
        defect_type=keep.defect_type,
        attribution=keep.attribution,
        site=value,
    )


def select_driver(selection: DrillDownSelection, value: str) -> DrillDownSelection:
    if selection.site is None:
        return selection
    return DrillDownSelection(
        defect_type=selection.defect_type,
        attribution=selection.attribution,
        site=selection.site,
        driver=None if value == selection.driver else value,
    )


@dataclass(frozen=True)
class DrillDownOptions:
    defect_types: pd.DataFrame
    attributions: pd.DataFrame
    sites: pd.DataFrame
    drivers: pd.DataFrame

    def for_level(self, level: str) -> pd.DataFrame:
        if level not in LEVELS:
            raise ValueError(f"Unknown drill-down level: {level}")
        return getattr(self, f"{level}s")

    def keys(self, level: str) -> list[str]:
        return self.for_level(level)["key"].tolist()


def _options(frame: pd.DataFrame) -> pd.DataFrame:
    if frame.empty:
        return pd.DataFrame(columns=OPTION_COLUMNS)
    selected = frame.loc[frame["count"] > 0, OPTION_COLUMNS]
    return selected.sort_values(
        ["count", "key"], ascending=[False, True], kind="mergesort"
    ).reset_index(drop=True)


def _empty_options() -> pd.DataFrame:
    return pd.DataFrame(columns=OPTION_COLUMNS)


def available_options(
    snapshot: FlowSnapshot,
    selection: DrillDownSelection,
) -> DrillDownOptions:
    """Option lists at every level under the current selection, recomputed per call.

    Only options with a non-zero count under the ancestors' selections are
    listed, ordered by count descending then key. Levels whose parent is unset
    have no options.
    """
    defect_types = _options(snapshot.defect_types)

    attributions = _empty_options()
    if selection.defect_type is not None:
        frame = snapshot.attributions
        matched = frame.loc[frame["defect_type"] == selection.defect_type]
        attributions = _options(
            matched.rename(columns={"attribution": "key"})[["key", "label", "count"]]
        )

    sites = _empty_options()
    if selection.attribution is not None:
        frame = snapshot.attribution_sites
        matched = frame.loc[
            (frame["defect_type"] == selection.defect_type)
            & (frame["attribution"] == selection.attribution)
        ]
        sites = _options(
            matched.assign(key=matched["site"], label=matched["site"])[OPTION_COLUMNS]
        )

    drivers = _empty_options()
    if selection.site is not None:
        frame = snapshot.drivers
        matched = frame.loc[
            frame["defect_type"].isin(["", selection.defect_type])
            & (frame["attribution"] == selection.attribution)
            & (frame["site"] == selection.site)
        ]
        if not matched.empty:
            # type-specific lists win over shared ones
            specific = matched.loc[matched["defect_type"] == selection.defect_type]
            matched = specific if not specific.empty else matched
            grouped = matched.groupby("driver", as_index=False)["count"].sum()
            drivers = _options(
                grouped.assign(key=grouped["driver"], label=grouped["driver"])[OPTION_COLUMNS]
            )

    return DrillDownOptions(
        defect_types=defect_types,
        attributions=attributions,
        sites=sites,
        drivers=drivers,
    )
