from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

import pandas as pd

from driver_scorecard.identity.reconciliation import ReconciliationTable, is_human_name
from driver_scorecard.io.schema import NameKeyedRecord, TokenKeyedRecord
from driver_scorecard.preprocess.weeks import parse_week_id

LOGGER = logging.getLogger(__name__)

WEEKLY_COLUMNS = ["key", "week_id", "year", "week", "sort_key", "ncc", "late_total", "severe"]
COLLISION_COLUMNS = ["key", "feed", "kept_label", "replaced_label"]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_severe(late: int, late_total: int, severe_total: int) -> int:
    """Severe (>15 min) share of ``late`` deliveries at the entity's overall ratio."""
    if late_total <= 0:
        return 0
    return round_half_up(late * severe_total / late_total)


def apportion_severe(
    late_weeks: Mapping[str, int],
    late_total: int,
    severe_total: int,
) -> dict[str, int]:
    """Estimate per-week severe (>15 min) late counts from the overall severe ratio.

    The token feed only reports severe counts for the whole period, so each
    week gets ``round_half_up(late_w * severe_total / late_total)`` (0 when
    ``late_total`` is 0). This is an approximation consistent with the
    aggregate ratio, never a source of truth for any individual week. Weeks are
    rounded independently, so their sum can drift from ``severe_total``;
    windowed totals use :func:`estimate_severe` on the windowed late count.
    """
    ordered = sorted(late_weeks, key=lambda label: parse_week_id(label).sort_key)
    return {
        label: estimate_severe(late_weeks[label], late_total, severe_total) for label in ordered
    }


@dataclass(frozen=True)
class CanonicalDriverEntity:
    key: str
    display_name: str
    home_city: str
    stations: frozenset[str]
    ncc_weeks: Mapping[str, int]
    late_weeks: Mapping[str, int]
    late_total: int = 0
    severe_total: int = 0
    has_name_record: bool = False
    has_token_record: bool = False
    source_names: tuple[str, ...] = ()

    @property
    def severe_ratio(self) -> float:
        return self.severe_total / self.late_total if self.late_total > 0 else 0.0

    @property
    def severe_weeks(self) -> dict[str, int]:
        """Apportioned estimate, see :func:`apportion_severe`."""
        return apportion_severe(self.late_weeks, self.late_total, self.severe_total)

    @property
    def ncc_total(self) -> int:
        return int(sum(self.ncc_weeks.values()))

    @property
    def week_labels(self) -> list[str]:
        labels = set(self.ncc_weeks) | set(self.late_weeks)
        return sorted(labels, key=lambda label: parse_week_id(label).sort_key)


@dataclass
class _EntityDraft:
    key: str
    name: str | None = None
    token: str | None = None
    name_city: str = ""
    token_city: str = ""
    stations: set[str] = field(default_factory=set)
    ncc_weeks: dict[str, int] = field(default_factory=dict)
    late_weeks: dict[str, int] = field(default_factory=dict)
    late_total: int = 0
    severe_total: int = 0
    has_name_record: bool = False
    has_token_record: bool = False
    source_names: list[str] = field(default_factory=list)

    def display_name(self, table: ReconciliationTable) -> str:
        candidates = [self.name, table.resolve(self.token) if self.token else None]
        for candidate in candidates:
            if is_human_name(candidate, self.token):
                return str(candidate).strip()
        for candidate in candidates:
            if candidate and str(candidate).strip():
                return str(candidate).strip()
        return self.key

    def home_city(self, station_cities: Mapping[str, str]) -> str:
        if self.name_city:
            return self.name_city
        if self.token_city:
            return self.token_city
        for station in sorted(self.stations):
            city = station_cities.get(station, "").strip()
            if city:
                return city
        return ""

    def freeze(
        self,
        table: ReconciliationTable,
        station_cities: Mapping[str, str],
    ) -> CanonicalDriverEntity:
        return CanonicalDriverEntity(
            key=self.key,
            display_name=self.display_name(table),
            home_city=self.home_city(station_cities),
            stations=frozenset(self.stations),
            ncc_weeks=MappingProxyType(dict(self.ncc_weeks)),
            late_weeks=MappingProxyType(dict(self.late_weeks)),
            late_total=self.late_total,
            severe_total=self.severe_total,
            has_name_record=self.has_name_record,
            has_token_record=self.has_token_record,
            source_names=tuple(self.source_names),
        )


@dataclass(frozen=True)
class CanonicalEntitySet:
    entities: tuple[CanonicalDriverEntity, ...]
    weekly: pd.DataFrame
    collisions: pd.DataFrame

    def __iter__(self) -> Iterator[CanonicalDriverEntity]:
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)

    @property
    def collision_count(self) -> int:
        return int(len(self.collisions))

    def by_key(self) -> dict[str, CanonicalDriverEntity]:
        return {entity.key: entity for entity in self.entities}

    def week_labels(self) -> list[str]:
        if self.weekly.empty:
            return []
        ordered = self.weekly.drop_duplicates("week_id").sort_values("sort_key")
        return ordered["week_id"].tolist()

    def source_breakdown(self) -> dict[str, int]:
        merged = sum(1 for item in self.entities if item.has_name_record and item.has_token_record)
        ncc_only = sum(
            1 for item in self.entities if item.has_name_record and not item.has_token_record
        )
        return {
            "entities": len(self.entities),
            "merged": merged,
            "ncc_only": ncc_only,
            "late_only": len(self.entities) - merged - ncc_only,
            "collisions": self.collision_count,
        }


def build_weekly_frame(entities: Iterable[CanonicalDriverEntity]) -> pd.DataFrame:
    rows: list[dict[str, object]] = []
    for entity in entities:
        severe_weeks = entity.severe_weeks
        for label in entity.week_labels:
            week_id = parse_week_id(label)
            rows.append(
                {
                    "key": entity.key,
                    "week_id": label,
                    "year": week_id.year,
                    "week": week_id.week,
                    "sort_key": week_id.sort_key,
                    "ncc": int(entity.ncc_weeks.get(label, 0)),
                    "late_total": int(entity.late_weeks.get(label, 0)),
                    "severe": int(severe_weeks.get(label, 0)),
                }
            )
    if not rows:
        return pd.DataFrame(columns=WEEKLY_COLUMNS)
    return pd.DataFrame(rows, columns=WEEKLY_COLUMNS).sort_values(
        ["key", "sort_key"], kind="mergesort"
    ).reset_index(drop=True)


def _record_collision(
    collisions: list[dict[str, str]],
    *,
    key: str,
    feed: str,
    kept: str,
    replaced: str,
) -> None:
    LOGGER.warning(
        "Duplicate %s-feed record for canonical key %s: %r replaces %r",
        feed,
        key,
        kept,
        replaced,
    )
    collisions.append({"key": key, "feed": feed, "kept_label": kept, "replaced_label": replaced})


def build_canonical_entities(
    name_records: Iterable[NameKeyedRecord],
    token_records: Iterable[TokenKeyedRecord],
    table: ReconciliationTable,
    *,
    station_cities: Mapping[str, str] | None = None,
) -> CanonicalEntitySet:
    """Merge both driver feeds into one entity per resolved identity.

    Name-keyed records are keyed by their reconciled token when the table knows
    the name, otherwise by the name itself; token-keyed records are always keyed
    by token. A record without a counterpart yields an entity whose other
    metric branch is empty. Two records of the same feed landing on one key are
    resolved last-write-wins for their bucket and reported in ``collisions``.
    """
    cities = dict(station_cities or {})
    drafts: dict[str, _EntityDraft] = {}
    collisions: list[dict[str, str]] = []

    for record in name_records:
        token = table.reverse_resolve(record.name)
        key = token or record.name
        draft = drafts.setdefault(key, _EntityDraft(key=key))
        if draft.has_name_record:
            _record_collision(
                collisions, key=key, feed="name", kept=record.name, replaced=draft.name or ""
            )
        draft.has_name_record = True
        draft.name = record.name
        draft.token = token or draft.token
        draft.name_city = record.home_city or draft.name_city
        draft.stations.update(record.stations)
        draft.ncc_weeks = dict(record.ncc_weeks)
        draft.source_names.append(record.name)

    for record in token_records:
        key = record.token
        draft = drafts.setdefault(key, _EntityDraft(key=key))
        if draft.has_token_record:
            _record_collision(collisions, key=key, feed="token", kept=key, replaced=key)
        draft.has_token_record = True
        draft.token = key
        draft.token_city = record.home_city or draft.token_city
        draft.stations.update(record.stations)
        draft.late_weeks = dict(record.late_weeks)
        draft.late_total = record.late_total
        draft.severe_total = record.severe_total

    entities = tuple(drafts[key].freeze(table, cities) for key in sorted(drafts))
    entity_set = CanonicalEntitySet(
        entities=entities,
        weekly=build_weekly_frame(entities),
        collisions=pd.DataFrame(collisions, columns=COLLISION_COLUMNS),
    )
    LOGGER.info("Built canonical driver entities: %s", entity_set.source_breakdown())
    return entity_set
