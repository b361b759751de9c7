from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

DATA_DIR_ENV_VAR = "DRIVER_SCORECARD_DATA_DIR"


class InputConfig(BaseModel):
    name_feed_path: str
    token_feed_path: str
    reconciliation_path: str
    station_feed_path: str | None = None
    flow_snapshot_path: str | None = None
    geo_sites_path: str | None = None


class SeverityConfig(BaseModel):
    critical_severe_min: int = Field(default=15, ge=0)
    high_min: int = Field(default=40, ge=0)
    medium_min: int = Field(default=20, ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> SeverityConfig:
        if self.medium_min > self.high_min:
            raise ValueError("severity.medium_min must be <= severity.high_min")
        return self


class FiltersConfig(BaseModel):
    stations: list[str] = Field(default_factory=list)
    year: int | None = None
    week_from: int | None = Field(default=None, ge=1, le=53)
    week_to: int | None = Field(default=None, ge=1, le=53)
    scorecard_min_total: int = Field(default=5, ge=0)
    ncc_min_defects: int = Field(default=3, ge=0)
    late_min_defects: int = Field(default=5, ge=0)


class StationsConfig(BaseModel):
    cities: dict[str, str] = Field(default_factory=dict)


class OutputsConfig(BaseModel):
    tables_format: Literal["csv", "parquet"] = "csv"


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    input: InputConfig
    severity: SeverityConfig = Field(default_factory=SeverityConfig)
    filters: FiltersConfig = Field(default_factory=FiltersConfig)
    stations: StationsConfig = Field(default_factory=StationsConfig)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


def _resolve_optional_path(path_value: str | None, base_dir: Path) -> str | None:
    if not path_value:
        return None
    candidate = Path(path_value)
    if candidate.is_absolute():
        return str(candidate)
    return str((base_dir / candidate).resolve())


def load_config(path: Path) -> AppConfig:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    config = AppConfig.model_validate(data)
    env_data_dir = os.getenv(DATA_DIR_ENV_VAR)
    base_dir = Path(env_data_dir).resolve() if env_data_dir else path.resolve().parent

    config.input.name_feed_path = (
        _resolve_optional_path(config.input.name_feed_path, base_dir) or ""
    )
    config.input.token_feed_path = (
        _resolve_optional_path(config.input.token_feed_path, base_dir) or ""
    )
    config.input.reconciliation_path = (
        _resolve_optional_path(config.input.reconciliation_path, base_dir) or ""
    )
    config.input.station_feed_path = _resolve_optional_path(
        config.input.station_feed_path,
        base_dir,
    )
    config.input.flow_snapshot_path = _resolve_optional_path(
        config.input.flow_snapshot_path,
        base_dir,
    )
    config.input.geo_sites_path = _resolve_optional_path(config.input.geo_sites_path, base_dir)
    return config
