"""
Batch CLI Commands
==================

CLI commands for running and inspecting recipe processing batches.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from recipe_engine.core.errors import ConfigurationError, NotFoundError, RecipeEngineError
from recipe_engine.core.schema import BatchStatusSnapshot
from recipe_engine.db.engine import get_session, init_db
from recipe_engine.ingestion.batches import build_saga, process_all_providers
from recipe_engine.ingestion.rate_limiter import RateLimiter
from recipe_engine.ingestion.registry import get_default_registry

console = Console()
batches_app = typer.Typer(help="Batch processing commands")
providers_app = typer.Typer(help="Provider configuration commands")
ratelimit_app = typer.Typer(help="Rate limit inspection commands")


def _display_snapshot(snapshot: BatchStatusSnapshot) -> None:
    """Display a batch status snapshot."""
    status_colors = {
        "completed": "green",
        "failed": "red",
    }
    color = status_colors.get(snapshot.status.value, "yellow")

    rprint(f"\n[bold]Batch {snapshot.batch_id}[/bold]")
    rprint(f"  Provider: {snapshot.provider_id}")
    rprint(f"  Status: [{color}]{snapshot.status.value}[/{color}]")
    if snapshot.partial:
        rprint("  [yellow]Partial completion[/yellow]")
    rprint(f"  Reason: {snapshot.completion_reason.value}")

    rprint("\n[bold]Counts:[/bold]")
    rprint(f"  Processed: {snapshot.processed}")
    rprint(f"  Skipped (duplicates): {snapshot.skipped}")
    rprint(f"  Failed: {snapshot.failed}")
    rprint(f"  Pending: {snapshot.pending_count}")

    rprint("\n[bold]Timing:[/bold]")
    rprint(f"  Started: {snapshot.started_at.isoformat()}")
    rprint(f"  Deadline: {snapshot.deadline.isoformat()}")
    if snapshot.completed_at:
        rprint(f"  Completed: {snapshot.completed_at.isoformat()}")

    if snapshot.error_category:
        rprint(f"\n[red]Error ({snapshot.error_category}):[/red] {snapshot.error_message}")

    if snapshot.is_resumable:
        rprint("\nResume with:")
        rprint(f"  recipe-engine batches resume {snapshot.batch_id}")


@batches_app.command("start")
def start_batch(
    provider: str = typer.Option(..., "--provider", "-p", help="Provider id to process"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-n", help="Maximum URLs in the batch"),
    window_minutes: Optional[int] = typer.Option(
        None, "--window-minutes", "-w", help="Time window in minutes"
    ),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for retry jitter"),
) -> None:
    """
    Start a new batch for a provider.

    Examples:
        recipe-engine batches start --provider test
        recipe-engine batches start -p acme -n 50 -w 15
    """
    time_window = timedelta(minutes=window_minutes) if window_minutes else None
    init_db()

    with get_session() as session:
        saga = build_saga(session, seed=seed)
        try:
            with console.status(f"[bold blue]Processing {provider}...[/bold blue]"):
                batch_id = asyncio.run(saga.start_processing(provider, batch_size, time_window))
        except ConfigurationError as e:
            rprint(f"[red]Configuration error:[/red] {e}")
            raise typer.Exit(1)
        except RecipeEngineError as e:
            rprint(f"[red]Batch failed:[/red] {e}")
            raise typer.Exit(1)

        _display_snapshot(saga.get_batch_status(batch_id))


@batches_app.command("resume")
def resume_batch(
    batch_id: str = typer.Argument(..., help="Batch id to resume"),
) -> None:
    """
    Resume an interrupted batch.

    Examples:
        recipe-engine batches resume 1b4e28ba-2fa1-11d2-883f-0016d3cca427
    """
    init_db()

    with get_session() as session:
        saga = build_saga(session)
        try:
            with console.status("[bold blue]Resuming...[/bold blue]"):
                snapshot = asyncio.run(saga.resume_processing(batch_id))
        except NotFoundError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        except RecipeEngineError as e:
            rprint(f"[red]Batch failed:[/red] {e}")
            raise typer.Exit(1)

        _display_snapshot(snapshot)


@batches_app.command("status")
def batch_status(
    batch_id: str = typer.Argument(..., help="Batch id"),
) -> None:
    """
    Show the status of a batch.

    Examples:
        recipe-engine batches status 1b4e28ba-2fa1-11d2-883f-0016d3cca427
    """
    init_db()

    with get_session() as session:
        saga = build_saga(session, log_events=False)
        try:
            snapshot = saga.get_batch_status(batch_id)
        except NotFoundError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

        _display_snapshot(snapshot)


@batches_app.command("run-all")
def run_all(
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for retry jitter"),
) -> None:
    """
    Run one batch for every enabled provider, in priority order.

    Examples:
        recipe-engine batches run-all
    """
    init_db()

    with get_session() as session:
        saga = build_saga(session, seed=seed)
        with console.status("[bold blue]Processing providers...[/bold blue]"):
            results = asyncio.run(process_all_providers(saga))

    if not results:
        rprint("[yellow]No enabled providers[/yellow]")
        return

    table = Table(title="Batch Results")
    table.add_column("Provider", style="bold")
    table.add_column("Batch")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Pending", justify="right")

    for result in results:
        status = result.status.value if result.status else "error"
        color = "green" if result.succeeded else "red"
        table.add_row(
            result.provider_id,
            str(result.batch_id) if result.batch_id else "-",
            f"[{color}]{status}[/{color}]",
            str(result.processed),
            str(result.skipped),
            str(result.failed),
            str(result.pending),
        )

    console.print(table)

    if any(not r.succeeded for r in results):
        raise typer.Exit(1)


# Providers subcommands


@providers_app.command("list")
def list_providers(
    all_providers: bool = typer.Option(False, "--all", "-a", help="Show disabled providers too"),
) -> None:
    """
    List configured providers.

    Examples:
        recipe-engine providers list
        recipe-engine providers list --all
    """
    registry = get_default_registry()
    providers = registry.list_providers() if all_providers else registry.list_enabled_providers()

    if not providers:
        rprint("[yellow]No providers configured[/yellow]")
        rprint("\nAdd providers to config/providers.yaml")
        return

    table = Table(title="Recipe Providers")
    table.add_column("Id", style="bold")
    table.add_column("Name")
    table.add_column("Priority", justify="right")
    table.add_column("Discovery")
    table.add_column("Extractor")
    table.add_column("Status")
    table.add_column("Rate Limit")

    for provider in providers:
        status = "[green]enabled[/green]" if provider.enabled else "[yellow]disabled[/yellow]"
        rate = f"{provider.rate_limit.max_requests_per_minute}/min"
        table.add_row(
            provider.provider_id,
            provider.name,
            str(provider.priority),
            provider.discovery_strategy.value,
            provider.extractor,
            status,
            rate,
        )

    console.print(table)


@providers_app.command("show")
def show_provider(
    provider_id: str = typer.Argument(..., help="Provider id"),
) -> None:
    """
    Show detailed information about a provider.

    Examples:
        recipe-engine providers show test
    """
    registry = get_default_registry()
    provider = registry.get_provider(provider_id)

    if provider is None:
        rprint(f"[red]Error:[/red] Provider '{provider_id}' not found")
        raise typer.Exit(1)

    status = "[green]enabled[/green]" if provider.enabled else "[yellow]disabled[/yellow]"

    rprint(f"\n[bold]Provider: {provider.name} ({provider.provider_id})[/bold]")
    rprint(f"  Status: {status}")
    rprint(f"  Priority: {provider.priority}")
    rprint(f"  Discovery: {provider.discovery_strategy.value}")
    rprint(f"  Extractor: {provider.extractor}")
    if provider.recipe_root_url:
        rprint(f"  Root URL: {provider.recipe_root_url}")
    if provider.sitemap_url:
        rprint(f"  Sitemap: {provider.sitemap_url}")

    rprint("\n[bold]Batch:[/bold]")
    rprint(f"  Size: {provider.batch_size}")
    rprint(f"  Time window: {provider.time_window_minutes} min")

    rprint("\n[bold]Rate Limiting:[/bold]")
    rprint(f"  Requests/minute: {provider.rate_limit.max_requests_per_minute}")
    rprint(f"  Burst limit: {provider.rate_limit.burst_limit}")
    rprint(f"  Retries: {provider.rate_limit.retry_count}")
    rprint(f"  Request timeout: {provider.rate_limit.request_timeout}s")

    if provider.allowlist:
        rprint("\n[bold]URL Allowlist:[/bold]")
        for pattern in provider.allowlist:
            rprint(f"  • {pattern}")

    if provider.denylist:
        rprint("\n[bold]URL Denylist:[/bold]")
        for pattern in provider.denylist:
            rprint(f"  • {pattern}")

    if provider.seed_urls:
        rprint("\n[bold]Seed URLs:[/bold]")
        for url in provider.seed_urls:
            rprint(f"  • {url}")


# Rate limit subcommands


@ratelimit_app.command("status")
def ratelimit_status(
    provider: str = typer.Option(..., "--provider", "-p", help="Provider id"),
) -> None:
    """
    Show a provider's rate limit settings and bucket status.

    Buckets live in process memory, so this reflects a fresh bucket for the
    provider's configured limits.

    Examples:
        recipe-engine ratelimit status --provider test
    """
    registry = get_default_registry()
    provider_config = registry.get_provider(provider)
    if provider_config is None:
        rprint(f"[red]Error:[/red] Provider '{provider}' not found")
        raise typer.Exit(1)

    limits = provider_config.rate_limit
    limiter = RateLimiter(
        max_tokens=limits.burst_limit,
        refill_rate_per_minute=limits.max_requests_per_minute,
    )
    status = limiter.get_status(provider)

    rprint(f"\n[bold]Rate limit for {provider}[/bold]")
    rprint(f"  Capacity: {limits.burst_limit} tokens")
    rprint(f"  Refill: {limits.max_requests_per_minute}/min")
    rprint(f"  Remaining: {status.remaining}")
    rprint(f"  Next token in: {status.reset_after.total_seconds():.1f}s")
    limited = "[red]yes[/red]" if status.is_limited else "[green]no[/green]"
    rprint(f"  Limited: {limited}")
