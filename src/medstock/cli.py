"""MedStock CLI - register device usage and inspect stock from the terminal.

Usage:
    medstock identify 1000000000001
    medstock register --barcode 1000000000001 --notes "Cath lab 2"
    medstock register --category "Guide Wire" --products "260J 0.35" --stock 20
    medstock stock
    medstock used
    medstock reorder 123 10
    medstock delete 456 123
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console
from rich.table import Table

from medstock.barcode.resolver import resolve_barcode
from medstock.core.logging_config import setup_logging
from medstock.fhir.errors import FHIRRequestError, MedStockError
from medstock.fhir.gateway import FHIRGateway
from medstock.fhir.resources import category_of, display_name_of, get_stock_level, manufacturer_of
from medstock.fhir.smart import BearerTokenClient, build_auth_context
from medstock.inventory.models import StockStatus
from medstock.inventory.service import InventoryService, RegistrationForm

T = TypeVar("T")

app = typer.Typer(
    name="medstock",
    help="MedStock - FHIR medical device stock",
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    setup_logging(verbose=verbose)


def _run(action: Callable[[InventoryService], Awaitable[T]]) -> T:
    """Run ``action`` against a service bound to a fresh gateway."""

    async def runner() -> T:
        auth = build_auth_context()
        try:
            async with FHIRGateway(auth=auth) as gateway:
                return await action(InventoryService(gateway))
        finally:
            if isinstance(auth.client, BearerTokenClient):
                await auth.client.aclose()

    try:
        return asyncio.run(runner())
    except FHIRRequestError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    except MedStockError as e:
        console.print(f"[yellow]![/yellow] {e}")
        raise typer.Exit(code=2)


def _status_style(status: StockStatus) -> str:
    return {
        StockStatus.ADEQUATE: "green",
        StockStatus.LOW: "yellow",
        StockStatus.CRITICAL: "red",
        StockStatus.OUT_OF_STOCK: "dim",
    }[status]


@app.command()
def identify(raw: str = typer.Argument(..., help="Scanned barcode or QR payload")) -> None:
    """Show what a barcode resolves to, without touching the store."""
    described = resolve_barcode(raw)
    table = Table(title="Identified Device", show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    for field, value in described.model_dump().items():
        table.add_row(field, str(value))
    console.print(table)


@app.command()
def register(
    barcode: str | None = typer.Option(None, "--barcode", "-b", help="Scanned barcode (pre-fills the form)"),
    category: str | None = typer.Option(None, "--category", "-c", help="Device category"),
    products: str | None = typer.Option(None, "--products", "-p", help="Product name/specification"),
    supplier: str | None = typer.Option(None, "--supplier", "-s", help="Supplier/manufacturer"),
    stock: int | None = typer.Option(None, "--stock", min=0, help="Stock level before this use"),
    notes: str = typer.Option("", "--notes", "-n", help="Review notes"),
) -> None:
    """Register one use of a device (scan or manual entry)."""
    form = RegistrationForm.from_scan(barcode, notes=notes) if barcode else RegistrationForm(notes=notes)
    overrides = {
        "category": category,
        "products": products,
        "supplier": supplier,
        "stock_level": stock,
    }
    form = form.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    result = _run(lambda service: service.save(form))
    kind = "existing" if result.existing_device else "new"
    console.print(f"[green]✓[/green] Saved to FHIR ({kind} device {result.device_ref}, stock {result.stock_level})")


@app.command()
def stock() -> None:
    """List grouped inventory, most recent activity first."""
    rows = _run(lambda service: service.load_stock())

    table = Table(title="Stock", show_header=True)
    table.add_column("Last Activity", style="dim")
    table.add_column("Device")
    table.add_column("Category", style="cyan")
    table.add_column("Supplier")
    table.add_column("Uses", justify="right")
    table.add_column("Stock", justify="right")
    table.add_column("Device ID", style="dim")

    for row in rows:
        level = get_stock_level(row.device)
        status = StockStatus.for_level(level)
        table.add_row(
            row.when.strftime("%Y-%m-%d %H:%M") if row.when else "--",
            display_name_of(row.device) or "(Not filled)",
            category_of(row.device),
            manufacturer_of(row.device) or "-",
            str(row.count),
            f"[{_status_style(status)}]{level} ({status.value})[/{_status_style(status)}]",
            (row.device or {}).get("id", "-"),
        )

    if not rows:
        console.print("[dim]No device records[/dim]")
        return
    console.print(table)


@app.command()
def used() -> None:
    """List recorded device uses."""
    pairs = _run(lambda service: service.load_used())

    table = Table(title="Used Devices", show_header=True)
    table.add_column("When", style="dim")
    table.add_column("Device")
    table.add_column("Category", style="cyan")
    table.add_column("Usage ID", style="dim")
    table.add_column("Device Reference", style="dim")

    for pair in pairs:
        when = pair.usage.get("timingDateTime") or (pair.usage.get("timingPeriod") or {}).get("start")
        table.add_row(
            when or "--",
            display_name_of(pair.device) or "(Not filled)",
            category_of(pair.device),
            pair.usage.get("id", "-"),
            InventoryService.usage_device_reference(pair.usage) or "Not recorded",
        )

    if not pairs:
        console.print("[dim]No used devices[/dim]")
        return
    console.print(table)


@app.command()
def reorder(
    device_id: str = typer.Argument(..., help="Device id"),
    quantity: int = typer.Argument(..., help="Units received"),
) -> None:
    """Add received units to a Device's stock."""

    async def action(service: InventoryService) -> None:
        device = await service.fetch_device(device_id)
        await service.reorder(device, quantity)

    _run(action)
    console.print(f"[green]✓[/green] Device/{device_id} restocked by {quantity}")


@app.command()
def delete(
    usage_id: str = typer.Argument(..., help="DeviceUseStatement id"),
    device_id: str = typer.Argument(..., help="Device id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a usage record and its Device."""
    if not yes:
        typer.confirm(
            "Delete this medical device record and all related usage records? (cannot be undone)",
            abort=True,
        )
    _run(lambda service: service.delete_record({"id": usage_id}, {"id": device_id}))
    console.print("[green]✓[/green] Device record and related usage records deleted")


if __name__ == "__main__":
    app()
