from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import typer
import uvicorn
from dotenv import load_dotenv

from .config import load_config
from .core.diff import compare_documents, render_value
from .core.normalize import normalize
from .core.suggestions import SuggestionSearchController
from .data import SourceError, source_from_config
from .reporting.csv_export import EXPORT_FILENAME, ExperimentCSVExporter
from .reporting.listing import SORT_KEYS, filter_experiments, sort_experiments
from .utils.json_utils import parse_json_or_default, safe_json_dumps

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _setup(config: str | None):
    load_dotenv()
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    try:
        return load_config(config)
    except (OSError, ValueError) as exc:
        typer.secho(f"Invalid config {config}: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc


def _read_document(path: Path) -> dict:
    try:
        text = path.read_text()
    except OSError as exc:
        typer.secho(f"Cannot read {path}: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc
    raw = parse_json_or_default(text, None)
    if not isinstance(raw, dict):
        typer.secho(f"{path} does not contain a JSON object", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2)
    return normalize(raw)


@app.command()
def serve(
    config: str | None = typer.Option(None, help="Path to YAML config"),
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
):
    """Run the dashboard web server."""
    from .dashboard.server import create_app

    cfg = _setup(config)
    backend = cfg.api_base_url if cfg.uses_api else f"reports dir {cfg.reports_dir}"
    typer.echo(f"Serving experiments from {backend} on http://{host}:{port}")
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(cfg),
            host=host,
            port=port,
            log_level=os.environ.get("LOG_LEVEL", "info").lower(),
        )
    )
    server.run()


@app.command()
def diff(
    file_a: Path = typer.Argument(..., help="JSON document for experiment A"),
    file_b: Path = typer.Argument(..., help="JSON document for experiment B"),
    max_items: int = typer.Option(300, min=1, help="Maximum differences per section"),
    max_depth: int = typer.Option(32, min=1, help="Maximum nesting depth to descend"),
    as_json: bool = typer.Option(False, "--json", help="Print the sections as JSON"),
):
    """Compare the params and summary sections of two experiment documents."""
    doc_a = _read_document(file_a)
    doc_b = _read_document(file_b)
    sections = compare_documents(doc_a, doc_b, max_items=max_items, max_depth=max_depth)
    if as_json:
        typer.echo(safe_json_dumps([s.to_dict() for s in sections], indent=2))
        return
    for section in sections:
        typer.echo(f"[{section.section}] {len(section.changes)} difference(s)")
        for change in section.changes:
            typer.echo(
                f"  {change.kind:<8} {change.path}: "
                f"{render_value(change.before)} -> {render_value(change.after)}"
            )
        if section.truncated:
            typer.echo(f"  ... truncated at {max_items}")


@app.command()
def export_csv(
    config: str | None = typer.Option(None, help="Path to YAML config"),
    output_dir: str = typer.Option("exports", help="Directory for the CSV file"),
    search: str = typer.Option("", help="Search text over code, author and description"),
    filter_type: str = typer.Option("all", "--filter", help="Quick filter or improvement name"),
    tag: list[str] = typer.Option([], help="Keep experiments carrying any of these tags"),
    sort: str = typer.Option("date", help=f"Sort key: {', '.join(SORT_KEYS)}"),
    direction: str = typer.Option("desc", help="asc or desc"),
):
    """Export the experiment metrics table to CSV."""
    cfg = _setup(config)
    if sort not in SORT_KEYS:
        typer.secho(f"Unknown sort key: {sort}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2)
    source = source_from_config(cfg)
    try:
        listing = source.list_experiments({"search": search or None})
    except SourceError as exc:
        typer.secho(f"Could not load experiments: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    records = [normalize(r) for r in listing.get("results", [])]
    rows = sort_experiments(
        filter_experiments(records, search=search, filter_type=filter_type, tags=tag),
        key=sort,
        direction=direction,
    )
    path = ExperimentCSVExporter(Path(output_dir)).export(rows, EXPORT_FILENAME)
    typer.echo(f"Wrote {len(rows)} experiments to {path}")


@app.command()
def suggest(
    query: str = typer.Argument(..., help="Search text"),
    config: str | None = typer.Option(None, help="Path to YAML config"),
    exclude: list[str] = typer.Option([], help="Experiment ids or codes to leave out"),
):
    """Print the suggestion candidates for a query."""
    cfg = _setup(config)
    source = source_from_config(cfg)
    controller = SuggestionSearchController(
        source.fetch_candidates_async, limit=cfg.suggestion_limit, exclude=exclude
    )
    state = asyncio.run(controller.search(query))
    if state.error:
        typer.secho(f"Lookup failed: {state.error}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not state.candidates:
        typer.echo("No matches")
        return
    for candidate in state.candidates:
        label = candidate.get("code") or candidate.get("id")
        typer.echo(f"- {label}\t{candidate.get('date') or ''}")


if __name__ == "__main__":
    app()
