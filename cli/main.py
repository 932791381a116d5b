"""
SHOP - Main CLI Application

Command-line interface for the customer command pipeline.
"""
import asyncio
import json
import logging
from datetime import datetime
from enum import Enum
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Config, get_config
from core.bootstrap import Application, bootstrap
from core.types import Result, ResultStatus
from db.commands import CreateCustomerCommand
from db.queries import GetCustomerByIdQuery, ListCustomersQuery
from db.query_models import CustomerQueryModel
from db.repositories import CustomerWriteOnlyRepository
from domain.entities import Gender
from observability import setup_observability, shutdown_observability

# Initialize app
app = typer.Typer(
    name="shop",
    help="SHOP - customer command pipeline",
    add_completion=False
)

console = Console()
logger = logging.getLogger("shop.cli")


class RebuildSource(str, Enum):
    """Where projections are rebuilt from."""
    EVENT_LOG = "event-log"
    WRITE_STORE = "write-store"


def _config() -> Config:
    return get_config()


@app.callback()
def _setup(verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output")):
    """Configure logging and telemetry before any command runs."""
    config = _config()
    if verbose:
        config.observability.log_level = "DEBUG"
    setup_observability(config)


def _print_result(result: Result) -> None:
    if result.status is ResultStatus.OK:
        console.print(Panel.fit(
            f"[bold green]{result.success_message or 'OK'}[/bold green]\n"
            f"{json.dumps(result.to_dict()['value'], default=str)}",
            border_style="green"
        ))
    elif result.status is ResultStatus.INVALID:
        table = Table(title="Validation Errors")
        table.add_column("Field", style="cyan")
        table.add_column("Error", style="red")
        for detail in result.validation_errors:
            table.add_row(detail.identifier, detail.error_message)
        console.print(table)
    else:
        for message in result.errors:
            console.print(f"[red]{message}[/red]")


def _customer_table(customers: List[CustomerQueryModel]) -> Table:
    table = Table(title="Customers")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Gender")
    table.add_column("E-mail", style="green")
    table.add_column("Date of Birth")
    for customer in customers:
        table.add_row(
            customer.id,
            customer.full_name,
            customer.gender.value if customer.gender else "",
            customer.email,
            customer.date_of_birth.isoformat() if customer.date_of_birth else "",
        )
    return table


@app.command()
def status():
    """Show configuration and store health."""
    config = _config()

    async def _check() -> List[tuple]:
        app_ = Application(config)
        rows = []
        try:
            await app_.write_db.initialize()
            await app_.event_log_db.initialize()
            rows.append(("Write store", await app_.write_db.health_check()))
            rows.append(("Event log", await app_.event_log_db.health_check()))
        finally:
            await app_.write_db.close()
            await app_.event_log_db.close()
        return rows

    table = Table(title="SHOP Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status")
    for name, healthy in asyncio.run(_check()):
        table.add_row(name, "[green]✓ Ready[/green]" if healthy else "[red]✗ Unavailable[/red]")
    table.add_row("Read store", config.read_store.backend)
    console.print(table)
    console.print_json(json.dumps(config.to_dict()))


@app.command("init-db")
def init_db():
    """Create write store and event log tables."""

    async def _init() -> None:
        async with bootstrap(_config(), create_tables=True):
            pass

    asyncio.run(_init())
    console.print("[green]Database tables created[/green]")


@app.command("create-customer")
def create_customer(
    first_name: str = typer.Argument(..., help="First name"),
    last_name: str = typer.Argument(..., help="Last name"),
    gender: Gender = typer.Option(..., "--gender", "-g", case_sensitive=False, help="Gender"),
    email: str = typer.Option(..., "--email", "-e", help="E-mail address"),
    date_of_birth: datetime = typer.Option(
        ..., "--dob", formats=["%Y-%m-%d"], help="Date of birth (YYYY-MM-DD)"
    ),
):
    """Register a new customer."""

    async def _create() -> Result:
        async with bootstrap(_config()) as shop:
            return await shop.mediator.send(CreateCustomerCommand(
                first_name=first_name,
                last_name=last_name,
                gender=gender,
                email=email,
                date_of_birth=date_of_birth.date(),
            ))

    result = asyncio.run(_create())
    _print_result(result)
    if result.is_failure:
        raise typer.Exit(1)


@app.command("get-customer")
def get_customer(customer_id: str = typer.Argument(..., help="Customer id")):
    """Show one customer from the read store."""

    async def _get() -> Result:
        async with bootstrap(_config()) as shop:
            return await shop.mediator.send(GetCustomerByIdQuery(customer_id=customer_id))

    result = asyncio.run(_get())
    if result.is_failure:
        _print_result(result)
        raise typer.Exit(1)
    console.print(_customer_table([result.value]))


@app.command("list-customers")
def list_customers():
    """List customers from the read store."""

    async def _list() -> Result:
        async with bootstrap(_config()) as shop:
            return await shop.mediator.send(ListCustomersQuery())

    result = asyncio.run(_list())
    console.print(_customer_table(result.value))


@app.command("relay-outbox")
def relay_outbox(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum messages to relay"),
    include_failed: bool = typer.Option(
        False, "--include-failed", help="Requeue messages that gave up before relaying"
    ),
):
    """Append outbox messages the event log has not received yet."""

    async def _relay() -> dict:
        async with bootstrap(_config()) as shop:
            report = await shop.outbox_relay.process_pending(limit, include_failed=include_failed)
            return report.to_dict()

    report = asyncio.run(_relay())
    table = Table(title="Outbox Relay")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key, value in report.items():
        table.add_row(key, str(value))
    console.print(table)
    if report["failed"]:
        raise typer.Exit(1)


@app.command("retry-sync")
def retry_sync(
    aggregate_ids: List[str] = typer.Argument(..., help="Customer ids to re-project"),
):
    """Re-apply read model sync for customers from their stored events."""

    async def _retry() -> tuple:
        async with bootstrap(_config()) as shop:
            synced = 0
            for aggregate_id in aggregate_ids:
                events = await shop.event_store.get_events_by_aggregate("Customer", aggregate_id)
                if not events:
                    console.print(f"[yellow]No stored events for {aggregate_id}[/yellow]")
                for stored in events:
                    if await shop.synchronizer.sync(stored.to_domain_event()):
                        synced += 1
            synced += await shop.synchronizer.retry_failed()
            return synced, len(shop.synchronizer.failed)

    synced, failed = asyncio.run(_retry())
    console.print(f"[green]Synced {synced} events[/green]")
    if failed:
        console.print(f"[red]{failed} events could not be synced[/red]")
        raise typer.Exit(1)


@app.command("rebuild-projections")
def rebuild_projections(
    source: RebuildSource = typer.Option(
        RebuildSource.EVENT_LOG, "--source", "-s", help="Rebuild from the event log or the write store"
    ),
):
    """Rebuild read models."""

    async def _rebuild() -> int:
        async with bootstrap(_config()) as shop:
            if source is RebuildSource.EVENT_LOG:
                return await shop.synchronizer.rebuild_from_event_log(shop.event_store)
            async with shop.write_db.session() as session:
                customers = await CustomerWriteOnlyRepository(session).list_all()
            return await shop.synchronizer.rebuild_from_aggregates(customers)

    count = asyncio.run(_rebuild())
    console.print(f"[green]Rebuilt {count} projections from {source.value}[/green]")


def main():
    """Main entry point."""
    try:
        app()
    finally:
        shutdown_observability()


if __name__ == "__main__":
    main()
