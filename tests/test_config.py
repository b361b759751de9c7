from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from driver_scorecard.config import DATA_DIR_ENV_VAR, load_config


def _write_config(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def _inputs() -> dict:
    return {
        "name_feed_path": "name_feed.yaml",
        "token_feed_path": "token_feed.yaml",
        "reconciliation_path": "reconciliation.yaml",
        "geo_sites_path": "geo_sites.yaml",
    }


def test_load_config_resolves_relative_paths(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv(DATA_DIR_ENV_VAR, raising=False)
    config_path = _write_config(tmp_path / "config.yaml", {"input": _inputs()})

    cfg = load_config(config_path)

    assert Path(cfg.input.name_feed_path) == tmp_path.resolve() / "name_feed.yaml"
    assert Path(cfg.input.geo_sites_path or "").is_absolute()
    assert cfg.input.station_feed_path is None
    assert cfg.filters.scorecard_min_total == 5
    assert cfg.severity.critical_severe_min == 15


def test_load_config_uses_env_data_dir(monkeypatch, tmp_path: Path) -> None:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setenv(DATA_DIR_ENV_VAR, str(data_dir))
    config_path = _write_config(tmp_path / "config.yaml", {"input": _inputs()})

    cfg = load_config(config_path)

    assert Path(cfg.input.token_feed_path) == data_dir.resolve() / "token_feed.yaml"


def test_load_config_keeps_absolute_paths(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv(DATA_DIR_ENV_VAR, raising=False)
    absolute = tmp_path / "elsewhere" / "names.yaml"
    inputs = {**_inputs(), "name_feed_path": str(absolute)}
    config_path = _write_config(tmp_path / "config.yaml", {"input": inputs})

    assert load_config(config_path).input.name_feed_path == str(absolute)


def test_load_config_rejects_unknown_sections(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "config.yaml", {"input": _inputs(), "report": {}})

    with pytest.raises(ValueError, match="report"):
        load_config(config_path)


def test_load_config_validates_filters(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "config.yaml",
        {"input": _inputs(), "filters": {"week_from": 60}},
    )

    with pytest.raises(ValueError, match="week_from"):
        load_config(config_path)


def test_default_config_loads() -> None:
    workspace = Path(__file__).resolve().parents[1]

    cfg = load_config(workspace / "configs" / "default.yaml")

    assert Path(cfg.input.reconciliation_path).exists()
    assert cfg.stations.cities["UIT4"] == "Roma"
    assert cfg.outputs.tables_format == "csv"
