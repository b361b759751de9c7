from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

import pandas as pd

ATTRIBUTION_COLUMNS = ["defect", "attribution", "count"]


@dataclass(frozen=True)
class GeoSite:
    key: str
    label: str
    defects: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class GeoSiteAggregate:
    site: str
    label: str
    by_type: dict[str, int]
    total: int


@dataclass(frozen=True)
class GeoAggregate:
    per_site: tuple[GeoSiteAggregate, ...]
    max_total: int

    def site(self, key: str) -> GeoSiteAggregate:
        for item in self.per_site:
            if item.site == key:
                return item
        raise KeyError(key)

    def share(self, key: str) -> float:
        """Site total over the normalization denominator, in ``[0, 1]``."""
        return self.site(key).total / self.max_total

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {"site": item.site, "label": item.label, **item.by_type, "total": item.total}
            for item in self.per_site
        ]
        frame = pd.DataFrame(rows)
        if frame.empty:
            return pd.DataFrame(columns=["site", "label", "total"])
        frame["share"] = frame["total"] / self.max_total
        return frame


@dataclass(frozen=True)
class GeoDriverMatrix:
    rows: pd.DataFrame
    totals: dict[str, int]
    max_total: int


@dataclass(frozen=True)
class GeoDataset:
    year: str
    defect_types: tuple[str, ...]
    sites: tuple[GeoSite, ...]
    attributions: pd.DataFrame
    drivers: pd.DataFrame


def _active_types(
    active_types: Iterable[str] | None,
    known_types: Iterable[str],
) -> list[str]:
    source = known_types if active_types is None else active_types
    ordered: list[str] = []
    for item in source:
        key = str(item).strip()
        if key and key not in ordered:
            ordered.append(key)
    return ordered


def aggregate_geo(
    sites: Iterable[GeoSite],
    active_types: Iterable[str] | None = None,
) -> GeoAggregate:
    """Per-site sums restricted to ``active_types`` and the largest site total.

    ``max_total`` is only a denominator for proportional scaling; it is 1 when
    every site sums to zero under the active filter. ``active_types=None``
    keeps every type seen on any site.
    """
    site_list = list(sites)
    known: list[str] = []
    for site in site_list:
        known.extend(key for key in site.defects if key not in known)
    types = _active_types(active_types, known)

    per_site = []
    for site in site_list:
        by_type = {key: int(site.defects.get(key, 0)) for key in types}
        per_site.append(
            GeoSiteAggregate(
                site=site.key,
                label=site.label,
                by_type=by_type,
                total=sum(by_type.values()),
            )
        )
    max_total = max((item.total for item in per_site), default=0)
    return GeoAggregate(per_site=tuple(per_site), max_total=max_total or 1)


def filter_attributions(
    attributions: pd.DataFrame,
    active_types: Iterable[str] | None = None,
) -> pd.DataFrame:
    if attributions.empty:
        return pd.DataFrame(columns=ATTRIBUTION_COLUMNS)
    selected = attributions
    if active_types is not None:
        selected = attributions.loc[attributions["defect"].isin(set(active_types))]
    return selected.sort_values("count", ascending=False, kind="mergesort").reset_index(drop=True)


def driver_matrix(
    drivers: pd.DataFrame,
    active_types: Iterable[str] | None,
    defect_types: Iterable[str],
) -> GeoDriverMatrix:
    types = [key for key in _active_types(active_types, defect_types) if key in drivers.columns]
    if drivers.empty:
        rows = pd.DataFrame(columns=["name", *types, "total"])
        return GeoDriverMatrix(rows=rows, totals={key: 0 for key in types}, max_total=1)

    rows = drivers[["name", *types]].copy()
    rows["total"] = rows[types].sum(axis=1).astype(int) if types else 0
    rows = rows.sort_values(
        ["total", "name"], ascending=[False, True], kind="mergesort"
    ).reset_index(drop=True)
    totals = {key: int(rows[key].sum()) for key in types}
    max_total = int(rows["total"].max()) if not rows.empty else 0
    return GeoDriverMatrix(rows=rows, totals=totals, max_total=max(max_total, 1))
