"""Main CLI entry point for RevOps AI."""

import asyncio
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

import click
import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from revops_ai import __version__
from revops_ai.config import ConfigurationError, load_config, setup_logging
from revops_ai.config.loader import validate_production_config
from revops_ai.core.fallback_plan import DealRecord, build_fallback_plan, format_plan_as_text
from revops_ai.core.rate_limiter import RATE_LIMIT_GROUPS
from revops_ai.core.readiness_driver import ReadinessDriver
from revops_ai.core.runtime import ManagedServices
from revops_ai.llm.manager import ProviderManager
from revops_ai.llm.models import ProviderKind, ProviderRecord
from revops_ai.llm.selection import build_fallback_chain, resolve_task_category
from revops_ai.llm.soft_failure import DEFAULT_SCAN_LIMIT, SoftFailureClassifier

# Load environment variables from .env file
load_dotenv()

console = Console()

PROVIDER_CHOICES = [k.value for k in ProviderKind]


@click.group()
@click.version_option(version=__version__, prog_name="RevOps AI")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output"
)
@click.option(
    "--config",
    "-c",
    default="config.yaml",
    help="Configuration file path",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str) -> None:
    """RevOps AI: provider orchestration and readiness for revenue pipelines."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config

    if verbose:
        console.print(f"[green]RevOps AI v{__version__}[/green]")
        console.print(f"[dim]Config: {config}[/dim]")


def _load(ctx: click.Context):
    try:
        return load_config(Path(ctx.obj["config"]).expanduser())
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to api.host)")
@click.option("--port", type=int, default=None, help="Port (defaults to api.port)")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Run the HTTP API."""
    import uvicorn

    config = _load(ctx)
    setup_logging(config)
    os.environ.setdefault("REVOPS_AI_CONFIG", str(Path(ctx.obj["config"]).expanduser()))
    console.print(f"[green]Serving RevOps AI on {host or config.api.host}:{port or config.api.port}[/green]")
    uvicorn.run(
        "revops_ai.api.main:app",
        host=host or config.api.host,
        port=port or config.api.port,
        log_level=config.logging.level.lower(),
    )


@cli.command()
@click.argument("task")
@click.option(
    "--provider",
    "-p",
    "providers",
    multiple=True,
    type=click.Choice(PROVIDER_CHOICES),
    help="Connected provider (repeatable; defaults to all)",
)
@click.option("--preferred", type=click.Choice(PROVIDER_CHOICES), default=None, help="Provider to try first")
def chain(task: str, providers: Tuple[str, ...], preferred: Optional[str]) -> None:
    """Show the provider order for TASK."""
    kinds = providers or tuple(PROVIDER_CHOICES)
    records = [ProviderRecord(id=k, kind=ProviderKind(k)) for k in kinds]
    order = build_fallback_chain(task, records, preferred=preferred)

    category = resolve_task_category(task)
    if not order:
        console.print("[yellow]No providers connected[/yellow]")
        return

    table = Table(title=f"Fallback chain: {task} ({category.value})")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Provider", style="white")
    for index, kind in enumerate(order, start=1):
        table.add_row(str(index), kind.value)
    console.print(table)


@cli.command()
@click.argument("text")
@click.option(
    "--scan-limit",
    type=int,
    default=DEFAULT_SCAN_LIMIT,
    show_default=True,
    help="Characters inspected (0 scans everything)",
)
def classify(text: str, scan_limit: int) -> None:
    """Check TEXT for soft-failure phrases."""
    classifier = SoftFailureClassifier(scan_limit=scan_limit or None)
    result = classifier.detect(text)
    if result.is_failure:
        console.print(f"[red]Soft failure[/red]: matched '{result.pattern}'")
    else:
        console.print("[green]OK[/green]: no failure phrase found")
    console.print(f"[dim]Phrase list version {classifier.version}[/dim]")


@cli.command()
@click.argument("deals_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--now", "now_value", default=None, help="Reference time (ISO 8601, defaults to now)")
@click.option(
    "--format", "output_format", type=click.Choice(["text", "json"]), default="text", help="Output format"
)
def plan(deals_file: str, now_value: Optional[str], output_format: str) -> None:
    """Build the rule-based fallback plan from a YAML or JSON deals file."""
    with open(deals_file, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("deals", [])

    try:
        deals = [DealRecord.from_dict(item) for item in data]
        now = datetime.fromisoformat(now_value.replace("Z", "+00:00")) if now_value else datetime.now(timezone.utc)
    except (KeyError, ValueError, TypeError) as e:
        raise click.ClickException(f"Invalid deals file: {e}") from e

    result = build_fallback_plan(deals, now)
    if output_format == "json":
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        console.print(format_plan_as_text(result))


@cli.command()
def limits() -> None:
    """List rate-limit groups and their windows."""
    table = Table(title="Rate limits")
    table.add_column("Group", style="cyan")
    table.add_column("Bucket", style="white")
    table.add_column("Window", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Scope", style="dim")
    for group, buckets in RATE_LIMIT_GROUPS.items():
        for bucket in buckets:
            table.add_row(
                group,
                bucket.bucket,
                f"{bucket.window_seconds}s",
                str(bucket.limit),
                "organization" if bucket.per_scope else "user",
            )
    console.print(table)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show configured providers and AI readiness."""
    config = _load(ctx)
    manager = ProviderManager(config.llm)
    driver = ReadinessDriver(ManagedServices(manager), tenant=config.orchestration.default_tenant)
    report = asyncio.run(driver.run())

    table = Table(title="Provider Status")
    table.add_column("Provider", style="cyan")
    table.add_column("Model", style="white")
    table.add_column("Status", style="green")
    records = {r.kind: r for r in manager.records()}
    for kind in ProviderKind:
        record = records.get(kind)
        if record is None:
            table.add_row(kind.value, "-", "[dim]not configured[/dim]")
        else:
            table.add_row(kind.value, record.model or "-", "active" if record.active else "[red]inactive[/red]")
    console.print(table)

    colour = "green" if report.usable else "yellow"
    console.print(f"Readiness: [{colour}]{report.state.value}[/{colour}] (variant: {report.variant.value})")

    for issue in validate_production_config(config):
        console.print(f"[yellow]Warning:[/yellow] {issue}")


def main() -> int:
    """Main entry point for the CLI."""
    try:
        cli()
        return 0
    except KeyboardInterrupt:
        console.print("\n[red]Operation cancelled by user[/red]")
        return 1
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
