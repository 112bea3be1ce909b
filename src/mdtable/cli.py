"""Command-line interface for mdtable."""

from __future__ import annotations

import decimal
import sys
from pathlib import Path
from typing import Any

import click

from mdtable import __version__
from mdtable.config import ConfigError, load_config
from mdtable.logging import set_log_dir


@click.group()
@click.version_option(version=__version__, prog_name="mdtable")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="YAML config file (default: ./mdtable.yaml if present).",
)
@click.option(
    "--log-dir",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Write structured events to LOG_DIR/events.ndjson.",
)
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, log_dir: Path | None) -> None:
    """mdtable -- spreadsheet-style formulas inside markdown tables."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    if log_dir is not None:
        config["log_dir"] = str(log_dir)
    set_log_dir(config["log_dir"], fsync=config["logging_fsync"])
    ctx.obj = config


# ---------------------------------------------------------------------------
# Table processing
# ---------------------------------------------------------------------------


@main.command("table")
@click.argument("file", type=click.File("r"), default="-")
@click.pass_obj
def table_cmd(config: dict[str, Any], file) -> None:
    """Evaluate formulas and align every table in FILE (default: stdin)."""
    from mdtable.tables import process_document

    result = process_document(file.read(), config)
    click.echo(result.output, nl=not result.output.endswith("\n"))

    for err in result.errors:
        click.echo(f"error: line {err.line}: {err.message}", err=True)
    if result.has_errors:
        sys.exit(1)


@main.command("new")
@click.argument("spec")
def new_cmd(spec: str) -> None:
    """Print an empty table for SPEC, written table:ROWS:COLS."""
    from mdtable.tables import create_table, parse_table_spec

    try:
        rows, cols = parse_table_spec(spec)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    click.echo(create_table(rows, cols))


@main.command("eval")
@click.argument("expression")
@click.option("--file", "file", default=None, type=click.File("r"), help="Markdown document holding the table.")
@click.option("--table", "table_id", default=None, help="Evaluate against the table with this id (default: the first table).")
@click.pass_obj
def eval_cmd(config: dict[str, Any], expression: str, file, table_id: str | None) -> None:
    """Evaluate EXPRESSION and print the resulting value."""
    from mdtable.formulas import FormulaError, evaluate, format_value, parse_expression
    from mdtable.tables import TableEvaluator, find_tables

    grid: list[list[str]] = []
    registry: dict[str, list[list[str]]] = {}
    if file is not None:
        blocks = find_tables(file.read().split("\n"), config["error_marker"])
        evaluator = TableEvaluator(blocks, precision=config["precision"])
        registry = evaluator.evaluate_all()
        if table_id is not None:
            if table_id not in registry:
                raise click.ClickException(f"table '{table_id}' not found")
            grid = registry[table_id]
        elif blocks:
            grid = evaluator.grids[blocks[0].start]
    elif table_id is not None:
        raise click.ClickException("--table requires --file")

    with decimal.localcontext() as ctx:
        ctx.prec = config["precision"]
        try:
            value = evaluate(parse_expression(expression), grid, registry)
        except FormulaError as e:
            raise click.ClickException(e.with_context(expression)) from e
    click.echo(format_value(value))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@main.command("events")
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
@click.pass_obj
def events_cmd(config: dict[str, Any], level: str | None, event_type: str | None, limit: int) -> None:
    """Show the structured event log, newest first."""
    from mdtable.logging.sink import EventSink

    if not config.get("log_dir"):
        raise click.ClickException("no log directory configured (use --log-dir or log_dir in mdtable.yaml)")

    sink = EventSink(Path(config["log_dir"]))
    events = sink.read_events(level=level, event_type=event_type, limit=limit)

    if not events:
        click.echo("No events found.")
        return

    for evt in events:
        ts = evt.get("ts", "")
        lvl = evt.get("level", "").upper()
        etype = evt.get("event_type", "")
        msg = " | ".join(evt.get("message", "").splitlines())
        err = evt.get("error_code")
        line = f"[{ts}] {lvl:7s} {etype}: {msg}"
        if err:
            line += f"  ({err})"
        click.echo(line)
