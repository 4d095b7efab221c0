"""CLI interface for cartwise."""

import asyncio
import logging
from pathlib import Path

import click
import uvicorn
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import API_PORT, DB_PATH
from .db import Database
from .errors import CartwiseError, TaxAnalysisError
from .ledger import UsageLedger
from .models import UsageCategory
from .pricing import format_currency
from .service import open_service

console = Console()


@click.group()
@click.version_option(__version__)
@click.option("--log-level", default="warning", type=click.Choice(["debug", "info", "warning", "error"]))
def cli(log_level):
    """cartwise - AI lookups for the shopping cart, with a spend ledger."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


async def _with_service(action):
    service = await open_service()
    try:
        return await action(service)
    finally:
        await service.close()


async def _with_ledger(action):
    ledger = UsageLedger(Database())
    await ledger.open()
    try:
        return await action(ledger)
    finally:
        await ledger.close()


def _run(coro):
    try:
        return asyncio.run(coro)
    except CartwiseError as exc:
        console.print(f"[red]{type(exc).__name__}:[/] {exc}")
        explanation = getattr(exc, "explanation", None)
        if explanation:
            console.print(f"[dim]{explanation}[/]")
        raise SystemExit(1)


# --- lookups ---


@cli.command()
@click.argument("item")
@click.option("--location", "-l", default=None, help="City or region for the tax rate")
def tax(item, location):
    """Look up the sales tax rate for ITEM."""

    async def action(service):
        try:
            rate = await service.infer_tax_rate(item, location)
        except TaxAnalysisError as exc:
            console.print(f"[yellow]Unknown tax rate:[/] {exc}")
            return
        console.print(f"[bold]{item}[/]: [green]{rate:g}%[/]")

    _run(_with_service(action))


@cli.command()
@click.argument("item")
@click.option("--location", "-l", default=None)
@click.option("--store", "-s", default=None)
@click.option("--brand", "-b", default=None)
@click.option("--details", "-d", default=None)
def guess(item, location, store, brand, details):
    """Estimate the price of ITEM."""

    async def action(service):
        result = await service.guess_price(item, location, store, brand, details)
        price = f"${result.price:.2f}" if result.price is not None else "[yellow]not found[/]"
        console.print(f"[bold]{item}[/]: {price}")
        if result.source_url:
            console.print(f"  Source: {result.source_url}")
        if result.explanation:
            console.print(f"  [dim]{result.explanation}[/]")

    _run(_with_service(action))


@cli.command()
@click.argument("item")
@click.argument("site")
@click.option("--spec", default=None, help="Size, color or other variant")
@click.option("--location", "-l", default=None)
def search(item, site, spec, location):
    """Search SITE for the listed price of ITEM."""

    async def action(service):
        result = await service.search_price(item, site, spec, location)
        if not result.found:
            console.print(f"[yellow]{result.item_name} not found on {site}[/]")
        else:
            price = f"${result.price:.2f}" if result.price is not None else "-"
            console.print(f"[bold]{result.item_name}[/]: {price}")
            if result.source_url:
                console.print(f"  Source: {result.source_url}")
        if result.description:
            console.print(f"  [dim]{result.description}[/]")

    _run(_with_service(action))


@cli.command()
@click.argument("product")
def additives(product):
    """Classify the additives in PRODUCT."""

    async def action(service):
        report = await service.analyze_additives(product)
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Additive", style="white")
        table.add_column("Risk")
        table.add_column("Description", style="dim")
        for a in report.additives:
            table.add_row(a.name, f"[red]{a.risk_level}[/]" if a.is_risky else f"[green]{a.risk_level}[/]", a.description)
        console.print(f"\n[bold]{product}[/]: {report.risky_count} risky, {report.safe_count} safe\n")
        console.print(table)

    _run(_with_service(action))


@cli.command()
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--location", "-l", default=None)
def scan(image, location):
    """Read a price tag photo."""
    media_type = "image/png" if image.suffix.lower() == ".png" else "image/jpeg"

    async def action(service):
        tag = await service.analyze_price_tag(image.read_bytes(), location, media_type)
        console.print(f"[bold]{tag.name}[/]: ${tag.price:.2f}")
        console.print(f"  Tax: {tag.tax_description}")
        if tag.ingredients:
            console.print(f"  Ingredients: {tag.ingredients}")
        for issue in tag.analysis_issues:
            console.print(f"  [yellow]! {issue}[/]")

    _run(_with_service(action))


# --- ledger ---


@cli.command()
def stats():
    """Show spend per category."""
    _run(_with_ledger(_show_stats))


async def _show_stats(ledger):
    s = ledger.snapshot()
    console.print("\n[bold]cartwise spend[/]\n")

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Category", style="white")
    table.add_column("Calls", justify="right")
    table.add_column("Cost", justify="right", style="yellow")
    table.add_column("Avg", justify="right")
    table.add_column("Calls left", justify="right")

    for category in UsageCategory:
        totals = s.category(category)
        average = s.average_cost(category)
        remaining = s.estimated_calls_remaining(category)
        table.add_row(
            category.value,
            str(totals.count),
            f"${format_currency(totals.cost)}",
            f"${format_currency(average)}" if average is not None else "-",
            f"{remaining:,}" if remaining is not None else "-",
        )

    table.add_section()
    table.add_row("[bold]TOTAL[/]", f"[bold]{s.total_calls}[/]", f"[bold yellow]${format_currency(s.total_cost)}[/]", "", "")
    console.print(table)

    console.print(f"  Total spent:     ${format_currency(s.total_spent)}")
    if s.baseline_set_at:
        console.print(f"  Since baseline:  ${format_currency(s.spent_since_baseline)} (set {s.baseline_set_at:%Y-%m-%d %H:%M})")
    if s.initial_credits > 0:
        console.print(
            f"  Credits left:    ${format_currency(s.remaining_credits, 2)} "
            f"({s.credits_used_fraction:.0%} used of ${format_currency(s.initial_credits, 2)})"
        )
    for name, balance in sorted(s.provider_credits.items()):
        calls = s.provider_calls_remaining(name)
        estimate = f" (~{calls:,} calls)" if calls is not None else ""
        console.print(f"  {name + ' credits:':<17}${format_currency(balance, 2)}{estimate}")
    console.print(f"  [dim]Database: {DB_PATH}[/]")
    console.print()


@cli.command()
@click.option("--clear", is_flag=True, help="Empty the display log; totals are kept")
def history(clear):
    """Show the most recent calls."""

    async def action(ledger):
        if clear:
            await ledger.clear_history()
            console.print("[green]History cleared.[/]")
            return
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Time", style="dim")
        table.add_column("Category")
        table.add_column("Item")
        table.add_column("Model")
        table.add_column("In", justify="right")
        table.add_column("Out", justify="right")
        table.add_column("Cost", justify="right", style="yellow")
        for r in ledger.snapshot().history:
            table.add_row(
                r.timestamp.strftime("%H:%M:%S"),
                r.category.value,
                r.item_name or "-",
                r.model,
                f"{r.input_tokens:,}",
                f"{r.output_tokens:,}",
                f"${format_currency(r.estimated_cost)}",
            )
        console.print(table)

    _run(_with_ledger(action))


@cli.command()
@click.argument("amount", type=float)
def baseline(amount):
    """Record AMOUNT as the spend reference point."""

    async def action(ledger):
        await ledger.set_baseline(amount)
        console.print(f"[green]Baseline set to ${amount:.2f}.[/]")

    _run(_with_ledger(action))


@cli.command()
@click.argument("amount", type=float)
@click.option("--provider", "-p", default=None, help="Set the balance of one provider, e.g. OpenAI")
def credits(amount, provider):
    """Set the prepaid credit balance to AMOUNT."""

    async def action(ledger):
        if provider:
            await ledger.set_provider_credits(provider, amount)
            console.print(f"[green]{provider} credits set to ${amount:.2f}.[/]")
            return
        await ledger.set_initial_credits(amount)
        console.print(f"[green]Initial credits set to ${amount:.2f}.[/]")

    _run(_with_ledger(action))


@cli.command(name="set-spent")
@click.argument("amount", type=float)
def set_spent(amount):
    """Correct the displayed total spend to AMOUNT."""

    async def action(ledger):
        await ledger.set_total_spent(amount)
        console.print(f"[green]Total spent now reads ${amount:.2f}.[/]")

    _run(_with_ledger(action))


@cli.command()
@click.confirmation_option(prompt="Are you sure you want to reset all spend counters?")
def reset():
    """Zero the spend counters. Credit balances are kept."""

    async def action(ledger):
        await ledger.reset()
        console.print("[green]Ledger reset.[/]")

    _run(_with_ledger(action))


@cli.command()
@click.option("--port", "-p", default=API_PORT, help="API port")
@click.option("--host", default="127.0.0.1")
def serve(port, host):
    """Run the HTTP API."""
    from .api import create_app

    console.print(f"[bold green]cartwise v{__version__}[/]")
    console.print(f"  API:      http://{host}:{port}")
    console.print(f"  Database: {DB_PATH}")
    uvicorn.run(create_app(), host=host, port=port)
