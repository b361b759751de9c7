from __future__ import annotations

from enum import Enum

import numpy as np
import pandas as pd

from driver_scorecard.config import SeverityConfig


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def classify_severity(
    ncc: int,
    late: int,
    severe: int,
    config: SeverityConfig | None = None,
) -> Severity:
    """Tier for one entity's windowed counts; ``late`` excludes the severe share.

    Checks run CRITICAL, HIGH, MEDIUM in that order and the first match wins.
    """
    thresholds = config or SeverityConfig()
    if severe >= thresholds.critical_severe_min:
        return Severity.CRITICAL
    volume = ncc + late
    if volume >= thresholds.high_min:
        return Severity.HIGH
    if volume >= thresholds.medium_min:
        return Severity.MEDIUM
    return Severity.LOW


def classify_severity_frame(
    df: pd.DataFrame,
    config: SeverityConfig | None = None,
) -> pd.Series:
    thresholds = config or SeverityConfig()
    if df.empty:
        return pd.Series([], index=df.index, dtype=object, name="severity")

    volume = df["ncc"].to_numpy() + df["late"].to_numpy()
    severe = df["severe"].to_numpy()
    labels = np.select(
        [
            severe >= thresholds.critical_severe_min,
            volume >= thresholds.high_min,
            volume >= thresholds.medium_min,
        ],
        [Severity.CRITICAL.value, Severity.HIGH.value, Severity.MEDIUM.value],
        default=Severity.LOW.value,
    )
    return pd.Series(labels, index=df.index, dtype=object, name="severity")
