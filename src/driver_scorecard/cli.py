from __future__ import annotations

from pathlib import Path

import pandas as pd
import typer

from driver_scorecard.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from driver_scorecard.drilldown.state import (
    LEVELS,
    DrillDownSelection,
    available_options,
    select_attribution,
    select_defect_type,
    select_driver,
    select_site,
)
from driver_scorecard.features.aggregates import summarize_scorecard
from driver_scorecard.features.geo import aggregate_geo, driver_matrix, filter_attributions
from driver_scorecard.io.schema import FeedValidationError
from driver_scorecard.io.write import write_table
from driver_scorecard.logging import configure_logging
from driver_scorecard.pipeline.run_all import (
    LoadedInputs,
    build_scorecard,
    build_window,
    load_inputs,
    run_all,
    station_filter_from,
)

app = typer.Typer(no_args_is_help=True, add_completion=False)


def _load_app_config(config_path: Path) -> AppConfig:
    return load_config(config_path)


def _report_feed_error(exc: FeedValidationError) -> typer.Exit:
    typer.echo(f"Invalid input data in {exc.source}:", err=True)
    for issue in exc.issues:
        typer.echo(f"- {issue}", err=True)
    return typer.Exit(code=1)


def _load_inputs_or_exit(cfg: AppConfig) -> LoadedInputs:
    try:
        return load_inputs(cfg)
    except FeedValidationError as exc:
        raise _report_feed_error(exc) from exc


def _echo_frame(frame: pd.DataFrame, limit: int | None = None) -> None:
    if frame.empty:
        typer.echo("(no rows)")
        return
    shown = frame.head(limit) if limit else frame
    typer.echo(shown.to_string(index=False))


@app.command()
def validate(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    log_level: str = typer.Option("INFO", help="Logging level."),
) -> None:
    """Load every configured input and report entity counts and collisions."""
    configure_logging(log_level)
    cfg = _load_app_config(config)
    inputs = _load_inputs_or_exit(cfg)
    typer.echo("Inputs valid")
    typer.echo(f"- reconciliation_names: {len(inputs.table)}")
    for key, value in inputs.entities.source_breakdown().items():
        typer.echo(f"- {key}: {value}")
    typer.echo(f"- weeks: {len(inputs.week_labels())}")
    typer.echo(f"- station_feed: {'yes' if inputs.station_feed is not None else 'no'}")
    typer.echo(f"- flow_snapshot: {'yes' if inputs.flow_snapshot is not None else 'no'}")
    typer.echo(f"- geo_sites: {'yes' if inputs.geo is not None else 'no'}")


@app.command()
def scorecard(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    year: int | None = typer.Option(None, help="Restrict to one year; default all years."),
    week_from: int | None = typer.Option(None, min=1, max=53),
    week_to: int | None = typer.Option(None, min=1, max=53),
    station: list[str] | None = typer.Option(
        None,
        "--station",
        help="Station code to include; repeat for several. Default: config filter or all.",
    ),
    min_total: int | None = typer.Option(None, min=0),
    limit: int = typer.Option(25, min=1, help="Rows to print."),
    out: Path | None = typer.Option(None, resolve_path=True, help="Optional CSV output path."),
    log_level: str = typer.Option("WARNING", help="Logging level."),
) -> None:
    """Print the merged, severity-tagged driver scorecard for a week window."""
    configure_logging(log_level)
    cfg = _load_app_config(config)
    inputs = _load_inputs_or_exit(cfg)

    window = build_window(
        inputs.week_labels(),
        year=cfg.filters.year if year is None else year,
        week_from=cfg.filters.week_from if week_from is None else week_from,
        week_to=cfg.filters.week_to if week_to is None else week_to,
    )
    stations = station_filter_from(station or cfg.filters.stations)
    result = build_scorecard(inputs, cfg, window, stations=stations, min_total=min_total)

    summary = summarize_scorecard(result.per_driver)
    typer.echo(
        f"Weeks {result.week_range}: {summary['count']} drivers, "
        f"combined {summary['combined']} (ncc {summary['ncc']}, late {summary['late']}, "
        f"severe {summary['severe']}), dual-defect {summary['dual']}"
    )
    _echo_frame(result.per_driver, limit=limit)
    if out is not None:
        write_table(result.per_driver, out, fmt="csv")
        typer.echo(f"Scorecard written to: {out}")


@app.command()
def drilldown(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    defect_type: str | None = typer.Option(None),
    attribution: str | None = typer.Option(None),
    site: str | None = typer.Option(None),
    driver: str | None = typer.Option(None),
    log_level: str = typer.Option("WARNING", help="Logging level."),
) -> None:
    """Apply drill-down selections in order and print the options at each level."""
    configure_logging(log_level)
    cfg = _load_app_config(config)
    inputs = _load_inputs_or_exit(cfg)
    snapshot = inputs.flow_snapshot
    if snapshot is None:
        raise typer.BadParameter("input.flow_snapshot_path is not configured")

    selection = DrillDownSelection()
    if defect_type:
        selection = select_defect_type(selection, defect_type)
    if attribution:
        selection = select_attribution(selection, attribution)
    if site:
        selection = select_site(selection, site.upper())
    if driver:
        selection = select_driver(selection, driver)

    options = available_options(snapshot, selection)
    typer.echo(f"Snapshot {snapshot.week or '(unlabelled)'}")
    for level in LEVELS:
        value = getattr(selection, level)
        typer.echo(f"[{level}] selected: {value if value is not None else '-'}")
        if level != "driver" or value is None:
            _echo_frame(options.for_level(level))


@app.command()
def geo(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    defect_type: list[str] | None = typer.Option(
        None,
        "--type",
        help="Active defect type; repeat for several. Default: all types.",
    ),
    limit: int = typer.Option(15, min=1, help="Driver rows to print."),
    log_level: str = typer.Option("WARNING", help="Logging level."),
) -> None:
    """Print per-site totals, the scaling denominator and the driver matrix."""
    configure_logging(log_level)
    cfg = _load_app_config(config)
    inputs = _load_inputs_or_exit(cfg)
    dataset = inputs.geo
    if dataset is None:
        raise typer.BadParameter("input.geo_sites_path is not configured")

    active = list(defect_type) if defect_type else None
    unknown = sorted(set(active or []) - set(dataset.defect_types))
    if unknown:
        raise typer.BadParameter(f"Unknown defect type(s): {', '.join(unknown)}")

    result = aggregate_geo(dataset.sites, active)
    typer.echo(f"Geo {dataset.year or ''} max_total={result.max_total}".strip())
    _echo_frame(result.to_frame())
    typer.echo("Attributions:")
    _echo_frame(filter_attributions(dataset.attributions, active))
    typer.echo("Drivers:")
    _echo_frame(driver_matrix(dataset.drivers, active, dataset.defect_types).rows, limit=limit)


@app.command("run-all")
def run_all_command(
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    log_level: str = typer.Option("INFO", help="Logging level."),
) -> None:
    """Write every table and the JSON summary for the configured window."""
    configure_logging(log_level)
    cfg = _load_app_config(config)
    try:
        summary_path = run_all(out_dir=out, config=cfg)
    except FeedValidationError as exc:
        raise _report_feed_error(exc) from exc
    typer.echo(f"Run complete. Summary: {summary_path}")


if __name__ == "__main__":
    app()
