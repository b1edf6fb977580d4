"""CLI for HomeMatch property ingestion."""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv
from typing import Optional

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

import typer
from rich.console import Console
from rich.table import Table

from .config import get_ingest_settings, load_config, resolve_sort, split_locations
from .exceptions import ConfigError
from .ingest import ingest_locations
from .logging_config import setup_logging
from .models import IngestSummary
from .storage import Storage, export_properties_csv, export_summary_json

app = typer.Typer(
    name="homematch-ingest",
    help="Pull for-sale listings from Zillow (RapidAPI) into the HomeMatch property store",
)
console = Console()


def _get_output_dir() -> Path:
    """Default output directory for runs."""
    return Path("output")


def _run_id() -> str:
    """Generate run ID from timestamp."""
    return datetime.utcnow().strftime("%Y%m%d_%H%M%S")


def _display_summary(summary: IngestSummary, run_id: str, json_path: Optional[Path] = None) -> None:
    """Per-location results table plus totals."""
    table = Table(title=f"Ingestion (Run {run_id})")
    table.add_column("Location", style="cyan")
    table.add_column("Status", style="dim")
    table.add_column("Attempted", justify="right")
    table.add_column("Unmapped", justify="right")
    table.add_column("Transformed", justify="right")
    table.add_column("Upserted", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Errors", justify="right")

    for loc in summary.per_location:
        status_style = "green" if loc.status == "done" and not loc.errors else "yellow"
        table.add_row(
            loc.location,
            f"[{status_style}]{loc.status}[/{status_style}]",
            str(loc.attempted),
            str(loc.unmapped),
            str(loc.transformed),
            str(loc.inserted_or_updated),
            str(loc.skipped),
            str(len(loc.errors)),
        )

    t = summary.totals
    table.add_row(
        "[bold]Total[/bold]",
        "cancelled" if summary.cancelled else "",
        str(t.attempted),
        str(t.unmapped),
        str(t.transformed),
        str(t.inserted_or_updated),
        str(t.skipped),
        str(sum(len(loc.errors) for loc in summary.per_location)),
    )
    console.print(table)

    if summary.property_type_counts:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(summary.property_type_counts.items()))
        console.print(f"[dim]Property types: {counts}[/dim]")

    for loc in summary.per_location:
        if loc.errors:
            shown = " | ".join(loc.errors[:3])
            console.print(f"[yellow]{loc.location} errors (showing up to 3): {shown}[/yellow]")

    if json_path:
        console.print(f"\n[dim]Full summary: {json_path}[/dim]")


@app.command()
def ingest(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
    locations: Optional[str] = typer.Option(None, "--locations", "-l", help='Semicolon-separated, e.g. "Oakland, CA;Berkeley, CA"'),
    page_size: Optional[int] = typer.Option(None, "--page-size", help="Results per page"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages", help="Max pages per location"),
    sort: Optional[str] = typer.Option(None, "--sort", help="Newest, Price_High_Low, Price_Low_High, Beds, Baths, Square_Feet"),
    min_price: Optional[int] = typer.Option(None, "--min-price", help="Minimum list price"),
    max_price: Optional[int] = typer.Option(None, "--max-price", help="Maximum list price"),
    debug: bool = typer.Option(False, "--debug", help="Verbose per-page logging"),
) -> None:
    """Fetch listings for each location and upsert them into the property store."""
    setup_logging("DEBUG" if debug else "INFO")
    cfg = load_config(config_path)
    settings = get_ingest_settings(cfg)

    if locations:
        settings.locations = split_locations(locations)
    if page_size and page_size > 0:
        settings.page_size = page_size
    if max_pages and max_pages > 0:
        settings.max_pages = max_pages
    if sort:
        settings.sort = resolve_sort(sort)
    if min_price is not None:
        settings.min_price = min_price
    if max_price is not None:
        settings.max_price = max_price

    console.print(
        f"[bold]Ingesting {len(settings.locations)} locations "
        f"(pageSize={settings.page_size}, maxPages={settings.max_pages}, sort={settings.sort})...[/bold]"
    )

    storage = Storage(settings.db_path)
    try:
        summary = asyncio.run(
            ingest_locations(
                settings.locations,
                settings.api_key,
                storage.table("properties"),
                host=settings.host,
                page_size=settings.page_size,
                max_pages=settings.max_pages,
                delay_seconds=settings.delay_seconds,
                sort=settings.sort,
                min_price=settings.min_price,
                max_price=settings.max_price,
            )
        )
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        storage.close()

    run_id = _run_id()
    json_path = _get_output_dir() / f"ingest_{run_id}.json"
    export_summary_json(summary, json_path, run_id=run_id)
    _display_summary(summary, run_id, json_path=json_path)


@app.command()
def properties(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max properties to show"),
    csv_path: Optional[Path] = typer.Option(None, "--csv", help="Export all stored properties to CSV"),
) -> None:
    """Show stored properties and counts by property type."""
    cfg = load_config(config_path)
    settings = get_ingest_settings(cfg)
    storage = Storage(settings.db_path)
    try:
        rows = storage.load_properties(limit=None if csv_path else limit)
        counts = storage.count_by_property_type()
    finally:
        storage.close()

    if not rows:
        console.print("[yellow]No properties stored. Run 'ingest' first.[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"Stored Properties ({sum(counts.values())} total)")
    table.add_column("ZPID", style="dim")
    table.add_column("Address", style="cyan")
    table.add_column("City")
    table.add_column("Price", justify="right")
    table.add_column("Bd/Ba", justify="right")
    table.add_column("Type")
    table.add_column("Status")

    for r in rows[:limit]:
        addr = r.get("address", "")
        addr_display = addr[:30] + "..." if len(addr) > 30 else addr
        table.add_row(
            str(r.get("zpid", "")),
            addr_display,
            f"{r.get('city', '')}, {r.get('state', '')}",
            f"${r.get('price', 0):,.0f}",
            f"{r.get('bedrooms', 0)}/{r.get('bathrooms', 0)}",
            str(r.get("property_type", "")),
            str(r.get("listing_status", "")),
        )
    console.print(table)
    console.print(f"[dim]By type: {', '.join(f'{k}={v}' for k, v in counts.items())}[/dim]")

    if csv_path:
        export_properties_csv(rows, csv_path)
        console.print(f"  CSV:  {csv_path}")


if __name__ == "__main__":
    app()
