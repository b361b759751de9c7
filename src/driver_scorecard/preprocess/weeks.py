from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable, Sequence

MIN_WEEK = 1
MAX_WEEK = 53

# 2026-W7, 2026-W07, 2026W7, 2026 W7
WEEK_LABEL_RE = re.compile(r"^(?P<year>\d{4})\s*-?\s*W\s*(?P<week>\d{1,2})$", re.IGNORECASE)


@dataclass(frozen=True, order=True)
class WeekId:
    year: int
    week: int

    @property
    def label(self) -> str:
        return f"{self.year}-W{self.week}"

    @property
    def sort_key(self) -> int:
        return self.year * 100 + self.week

    def __str__(self) -> str:
        return self.label


def parse_week_id(value: str | WeekId) -> WeekId:
    """Parse a week label such as ``2026-W7`` into a :class:`WeekId`."""
    if isinstance(value, WeekId):
        return value
    match = WEEK_LABEL_RE.match(str(value).strip())
    if match is None:
        raise ValueError(f"invalid week label: {value!r}")
    week = int(match.group("week"))
    if not MIN_WEEK <= week <= MAX_WEEK:
        raise ValueError(f"week number out of range in label: {value!r}")
    return WeekId(year=int(match.group("year")), week=week)


def canonical_week_label(value: str | WeekId) -> str:
    return parse_week_id(value).label


def _check_ordinal(week: int, *, field_name: str) -> int:
    week = int(week)
    if not MIN_WEEK <= week <= MAX_WEEK:
        raise ValueError(f"{field_name} must be between {MIN_WEEK} and {MAX_WEEK}, got {week}")
    return week


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive week-ordinal range with an optional single-year constraint.

    ``start > end`` is never an error: construction collapses ``end`` onto
    ``start``, and the ``with_*`` helpers collapse the opposite bound onto the
    bound that moved.
    """

    start: int = MIN_WEEK
    end: int = MAX_WEEK
    year: int | None = None

    def __post_init__(self) -> None:
        start = _check_ordinal(self.start, field_name="start")
        end = _check_ordinal(self.end, field_name="end")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", max(start, end))

    def contains(self, week: WeekId) -> bool:
        if self.year is not None and week.year != self.year:
            return False
        return self.start <= week.week <= self.end

    def with_start(self, week: int) -> TimeWindow:
        week = _check_ordinal(week, field_name="start")
        return replace(self, start=week, end=max(self.end, week))

    def with_end(self, week: int) -> TimeWindow:
        week = _check_ordinal(week, field_name="end")
        return TimeWindow(start=min(self.start, week), end=week, year=self.year)

    def with_year(self, year: int | None, weeks: Iterable[str | WeekId]) -> TimeWindow:
        """Switch the year constraint and reset bounds to that year's available weeks."""
        ordinals = available_weeks(weeks, year)
        if not ordinals:
            return replace(self, year=year)
        return TimeWindow(start=ordinals[0], end=ordinals[-1], year=year)


def available_weeks(weeks: Iterable[str | WeekId], year: int | None = None) -> list[int]:
    """Sorted distinct week ordinals present in ``weeks`` for ``year`` (None = all years)."""
    ordinals: set[int] = set()
    for value in weeks:
        week_id = parse_week_id(value)
        if year is None or week_id.year == year:
            ordinals.add(week_id.week)
    return sorted(ordinals)


def effective_window(window: TimeWindow, weeks: Iterable[str | WeekId]) -> TimeWindow:
    """Snap bounds that are not present in the data to the first/last available week."""
    ordinals = available_weeks(weeks, window.year)
    if not ordinals:
        return window
    start = window.start if window.start in ordinals else ordinals[0]
    end = window.end if window.end in ordinals else ordinals[-1]
    return TimeWindow(start=start, end=end, year=window.year)


def full_window(weeks: Iterable[str | WeekId], year: int | None = None) -> TimeWindow:
    ordinals = available_weeks(weeks, year)
    if not ordinals:
        return TimeWindow(year=year)
    return TimeWindow(start=ordinals[0], end=ordinals[-1], year=year)


def weeks_in_window(
    weeks: Iterable[str | WeekId],
    window: TimeWindow | None,
) -> list[WeekId]:
    parsed = sorted({parse_week_id(value) for value in weeks}, key=lambda item: item.sort_key)
    if window is None:
        return parsed
    return [week_id for week_id in parsed if window.contains(week_id)]


def week_range_label(weeks: Sequence[WeekId]) -> str:
    if not weeks:
        return "—"
    ordered = sorted(weeks, key=lambda item: item.sort_key)
    first, last = ordered[0], ordered[-1]
    return f"W{first.week}/{first.year % 100:02d} – W{last.week}/{last.year % 100:02d}"
