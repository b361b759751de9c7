from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from driver_scorecard.preprocess.weeks import parse_week_id

SUPPORTED_SCHEMA_VERSION = 1
UNKNOWN_CITY_MARKERS = {"", "?", "-", "—"}

WeeklyBucket = dict[str, int]


class FeedValidationError(ValueError):
    """Static input data is malformed; raised at load time with every issue found."""

    def __init__(self, source: str, issues: list[str]) -> None:
        self.source = source
        self.issues = list(issues)
        preview = "; ".join(self.issues[:5])
        more = f" (+{len(self.issues) - 5} more)" if len(self.issues) > 5 else ""
        super().__init__(f"{source}: {len(self.issues)} issue(s): {preview}{more}")


@dataclass(frozen=True)
class NameKeyedRecord:
    name: str
    home_city: str
    stations: frozenset[str]
    total: int
    ncc_weeks: WeeklyBucket = field(default_factory=dict)


@dataclass(frozen=True)
class TokenKeyedRecord:
    token: str
    stations: frozenset[str]
    late_total: int
    severe_total: int
    late_weeks: WeeklyBucket = field(default_factory=dict)
    home_city: str = ""


@dataclass(frozen=True)
class ReconciliationEntry:
    name: str
    token: str


@dataclass(frozen=True)
class StationWeeklyFeed:
    """Station-keyed weekly counts; ``severe`` carries real per-week >15 min splits."""

    ncc: dict[str, WeeklyBucket] = field(default_factory=dict)
    late: dict[str, WeeklyBucket] = field(default_factory=dict)
    severe: dict[str, WeeklyBucket] = field(default_factory=dict)

    @property
    def stations(self) -> list[str]:
        return sorted(set(self.ncc) | set(self.late) | set(self.severe))

    def week_labels(self) -> set[str]:
        labels: set[str] = set()
        for buckets in (self.ncc, self.late, self.severe):
            for bucket in buckets.values():
                labels.update(bucket)
        return labels


class IssueCollector:
    def __init__(self, source: str) -> None:
        self.source = source
        self.issues: list[str] = []

    def add(self, message: str) -> None:
        self.issues.append(message)

    def raise_if_any(self) -> None:
        if self.issues:
            raise FeedValidationError(self.source, self.issues)


def check_schema_version(payload: Mapping[str, Any], issues: IssueCollector) -> None:
    version = payload.get("schema_version", SUPPORTED_SCHEMA_VERSION)
    try:
        parsed = int(version)
    except (TypeError, ValueError):
        issues.add(f"schema_version must be an integer, got {version!r}")
        return
    if parsed != SUPPORTED_SCHEMA_VERSION:
        issues.add(f"unsupported schema_version: {parsed}")


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_count(value: Any, *, context: str, issues: IssueCollector, default: int = 0) -> int:
    if value is None:
        return default
    if not _is_count(value):
        issues.add(f"{context}: count must be an integer, got {value!r}")
        return default
    if value < 0:
        issues.add(f"{context}: count must be non-negative, got {value}")
        return default
    return int(value)


def parse_weekly_bucket(raw: Any, *, context: str, issues: IssueCollector) -> WeeklyBucket:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        issues.add(f"{context}: weeks must be a mapping of week label to count")
        return {}

    bucket: WeeklyBucket = {}
    for raw_label, raw_count in raw.items():
        try:
            label = parse_week_id(str(raw_label)).label
        except ValueError:
            issues.add(f"{context}: invalid week label {raw_label!r}")
            continue
        if label in bucket:
            issues.add(f"{context}: duplicate week {label}")
            continue
        bucket[label] = parse_count(raw_count, context=f"{context} {label}", issues=issues)
    return bucket


def parse_stations(raw: Any, *, context: str, issues: IssueCollector) -> frozenset[str]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple, set, frozenset)):
        issues.add(f"{context}: stations must be a list of station codes")
        return frozenset()
    stations = frozenset(str(item).strip().upper() for item in raw if str(item).strip())
    if not stations:
        issues.add(f"{context}: station set must not be empty")
    return stations


def normalize_city(raw: Any) -> str:
    text = str(raw or "").strip()
    return "" if text in UNKNOWN_CITY_MARKERS else text


def require_string(raw: Any, *, context: str, field_name: str, issues: IssueCollector) -> str:
    if not isinstance(raw, str) or not raw.strip():
        issues.add(f"{context}: field '{field_name}' must be a non-empty string")
        return ""
    return raw.strip()


def parse_name_record(
    raw: Mapping[str, Any],
    *,
    context: str,
    issues: IssueCollector,
) -> NameKeyedRecord:
    name = require_string(raw.get("name"), context=context, field_name="name", issues=issues)
    weeks = parse_weekly_bucket(raw.get("weeks"), context=context, issues=issues)
    if not weeks:
        issues.add(f"{context}: record references no week keys")
    return NameKeyedRecord(
        name=name,
        home_city=normalize_city(raw.get("home_city")),
        stations=parse_stations(raw.get("stations"), context=context, issues=issues),
        total=parse_count(
            raw.get("total"),
            context=f"{context} total",
            issues=issues,
            default=sum(weeks.values()),
        ),
        ncc_weeks=weeks,
    )


def parse_token_record(
    raw: Mapping[str, Any],
    *,
    context: str,
    issues: IssueCollector,
) -> TokenKeyedRecord:
    token = require_string(raw.get("token"), context=context, field_name="token", issues=issues)
    weeks = parse_weekly_bucket(raw.get("weeks"), context=context, issues=issues)
    if not weeks:
        issues.add(f"{context}: token references no week keys")
    weekly_total = sum(weeks.values())
    late_total = parse_count(
        raw.get("late_total"),
        context=f"{context} late_total",
        issues=issues,
        default=weekly_total,
    )
    if weeks and late_total != weekly_total:
        issues.add(
            f"{context}: late_total ({late_total}) does not match the sum of weeks ({weekly_total})"
        )
    severe_total = parse_count(
        raw.get("severe_total"),
        context=f"{context} severe_total",
        issues=issues,
    )
    if severe_total > late_total:
        issues.add(
            f"{context}: severe_total ({severe_total}) must be <= late_total ({late_total})"
        )
    return TokenKeyedRecord(
        token=token,
        stations=parse_stations(raw.get("stations"), context=context, issues=issues),
        late_total=late_total,
        severe_total=severe_total,
        late_weeks=weeks,
        home_city=normalize_city(raw.get("home_city")),
    )
