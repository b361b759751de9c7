from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

from driver_scorecard.paths import OutputPaths

LOGGER = logging.getLogger(__name__)

TABLE_FORMATS = ("csv", "parquet")


def write_table(df: pd.DataFrame, path: Path, fmt: str = "csv") -> Path:
    if fmt not in TABLE_FORMATS:
        raise ValueError(f"Unsupported table format: {fmt}")
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "parquet":
        df.to_parquet(path, index=False)
    else:
        df.to_csv(path, index=False)
    return path


def write_tables(
    tables: Mapping[str, pd.DataFrame],
    paths: OutputPaths,
    fmt: str = "csv",
) -> dict[str, Path]:
    written = {
        name: write_table(frame, paths.table_path(name, fmt), fmt=fmt)
        for name, frame in tables.items()
    }
    LOGGER.info("Wrote %d %s tables to %s", len(written), fmt, paths.tables)
    return written


def write_summary(data: Mapping[str, Any], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    # default=str covers Path and enum values nested in the summary
    path.write_text(json.dumps(data, indent=2, sort_keys=True, default=str), encoding="utf-8")
    return path
