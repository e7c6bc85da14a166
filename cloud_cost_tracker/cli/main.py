"""
CLI interface for Cloud Cost Tracker.

Provides command-line access to the schema, the rate table, reports and
per-entity tracking policies.
"""

import logging
import sqlite3
import sys
from datetime import date
from typing import List, Optional, Tuple

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cloud_cost_tracker.config.loader import TrackerConfig, load_tracker_config
from cloud_cost_tracker.core.billable import EntityRef
from cloud_cost_tracker.core.calculator import CostCalculator
from cloud_cost_tracker.core.errors import ConfigurationError
from cloud_cost_tracker.core.query import SOURCES, CostQuery
from cloud_cost_tracker.storage.models import TrackingMode, TrackingPolicy
from cloud_cost_tracker.storage.repository import UsageRepository

app = typer.Typer()
policy_app = typer.Typer(help="Manage per-entity tracking policies.")
app.add_typer(policy_app, name="policy")

console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to tracker YAML config (built-in defaults when omitted)"
    ),
    database: Optional[str] = typer.Option(
        None,
        "--database",
        "-d",
        help="SQLite database path, overrides the config"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging"
    )
):
    """Cloud Cost Tracker CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )

    ctx.obj = {"config": config, "database": database}

    if ctx.invoked_subcommand is None:
        console.print("Cloud Cost Tracker - Use --help to see available commands")


def _load_config(ctx: typer.Context) -> TrackerConfig:
    """Load config from the global options, exiting on invalid files."""
    options = ctx.obj or {}
    try:
        config = load_tracker_config(options.get("config"))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Config error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if options.get("database"):
        config = config.with_overrides(database=options["database"])
    return config


def _repository(ctx: typer.Context) -> UsageRepository:
    return UsageRepository(_load_config(ctx).database)


def _format_currency(amount: float) -> str:
    """Format a cost estimate; small amounts keep their significant digits."""
    if amount and abs(amount) < 0.01:
        return f"${amount:.8f}"
    return f"${amount:,.2f}"


def _parse_month(month: str) -> date:
    """Parse YYYY-MM into the first day of that month."""
    try:
        year, number = month.split("-")
        return date(int(year), int(number), 1)
    except ValueError:
        raise ValueError(f"Invalid month '{month}' (expected YYYY-MM)")


def _parse_dimension(spec: str) -> Tuple[str, float]:
    """Parse ``name`` or ``name=quantity``."""
    name, _, quantity = spec.partition("=")
    if not name:
        raise ValueError(f"Invalid dimension '{spec}' (expected name or name=quantity)")
    try:
        return name, float(quantity) if quantity else 0.0
    except ValueError:
        raise ValueError(f"Invalid quantity in dimension '{spec}'")


def _print_no_data_hint() -> None:
    console.print("\n[bold yellow]No usage data found[/]")
    console.print("\nTo get started with Cloud Cost Tracker:")
    console.print("1. Run `cloud-cost-tracker init` to initialize the database")
    console.print("2. Wrap work with tracker.for_entity(...).feature(...).track(...)")
    console.print("3. Run this command again to see the report\n")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Cloud Cost Tracker database."""
    try:
        config = _load_config(ctx)
        UsageRepository(config.database).initialize_schema()
        console.print(f"[green]✓[/] Database initialized successfully ({config.database})")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show the effective tracker configuration."""
    config = _load_config(ctx)

    state = "[green]enabled[/]" if config.enabled else "[red]disabled[/]"
    console.print(f"Tracking: {state}")
    gate = "allowed" if config.environment_allowed else "[yellow]not tracked[/]"
    console.print(f"Environment: {config.environment} ({gate})")
    console.print(f"Tracked environments: {', '.join(sorted(config.environments))}")
    console.print(f"Event log: {'on' if config.log_events else 'off'}")
    console.print(f"Database: {config.database}")
    console.print(f"Plan: {config.plan}")

    model = config.cost_model()
    table = Table(title="Cost dimensions")
    table.add_column("Dimension")
    table.add_column("Unit")
    table.add_column("Rate")
    for name in model.names():
        try:
            rate = model.resolve(name)
            table.add_row(name, model.unit_kind(name).value, repr(rate))
        except ConfigurationError as e:
            table.add_row(name, "[red]invalid[/]", str(e))
    console.print(table)


@app.command()
def estimate(
    ctx: typer.Context,
    ms: float = typer.Option(
        0.0,
        "--ms",
        help="Execution time in milliseconds"
    ),
    dimension: Optional[List[str]] = typer.Option(
        None,
        "--dimension",
        help="Dimension to price, as name or name=quantity (repeatable)"
    ),
    multiplier: float = typer.Option(
        1.0,
        "--multiplier",
        "-m",
        help="Usage multiplier applied to the total"
    )
):
    """Price one invocation against the configured rate table."""
    config = _load_config(ctx)
    try:
        if dimension:
            dimensions = {
                name: {"quantity": quantity}
                for name, quantity in (_parse_dimension(spec) for spec in dimension)
            }
        else:
            dimensions = {config.default_dimension: {"quantity": 0}}
        result = CostCalculator(config.cost_model()).calculate(ms, dimensions, multiplier)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Cost estimate")
    table.add_column("Dimension")
    table.add_column("ms", justify="right")
    table.add_column("Quantity", justify="right")
    table.add_column("Cost", justify="right")
    for name, breakdown in result.dimensions.items():
        table.add_row(
            name,
            f"{breakdown['ms']:g}" if "ms" in breakdown else "-",
            f"{breakdown['quantity']:g}" if "quantity" in breakdown else "-",
            _format_currency(breakdown["cost"]),
        )
    console.print(table)
    console.print(f"Multiplier: {multiplier:g}")
    console.print(f"[bold]Total:[/] {_format_currency(result.total_cost)}")


@app.command()
def report(
    ctx: typer.Context,
    entity_type: Optional[str] = typer.Option(
        None,
        "--entity-type",
        "-t",
        help="Filter to one entity type"
    ),
    entity_id: Optional[str] = typer.Option(
        None,
        "--entity-id",
        "-i",
        help="Filter to one entity (requires --entity-type)"
    ),
    feature: Optional[str] = typer.Option(
        None,
        "--feature",
        "-f",
        help="Filter to one feature"
    ),
    month: Optional[str] = typer.Option(
        None,
        "--month",
        help="Restrict to one month, YYYY-MM"
    ),
    source: str = typer.Option(
        "rollups",
        "--source",
        help="Read from rollups or events"
    )
):
    """Show cost totals per feature."""
    try:
        if entity_id is not None and entity_type is None:
            raise ValueError("--entity-id requires --entity-type")
        if source not in SOURCES:
            raise ValueError(f"--source must be one of: {list(SOURCES)}")

        query = CostQuery(_repository(ctx), source=source)
        if entity_type is not None and entity_id is not None:
            query = query.for_entity(EntityRef(entity_type, entity_id))
        elif entity_type is not None:
            query = query.for_type(entity_type)
        if feature:
            query = query.feature(feature)
        if month:
            query = query.period("month", _parse_month(month))

        totals = query.sum_by_feature()
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            _print_no_data_hint()
            sys.exit(EXIT_CODE_PASS)
        raise
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not totals:
        _print_no_data_hint()
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Cost by feature")
    table.add_column("Feature")
    table.add_column("Events", justify="right")
    table.add_column("Cost", justify="right")
    for total in totals:
        table.add_row(total.feature, f"{total.event_count:,}", _format_currency(total.total_cost))
    console.print(table)
    console.print(f"[bold]Total:[/] {_format_currency(sum(t.total_cost for t in totals))}")


@app.command()
def top(
    ctx: typer.Context,
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Number of entities to show"
    ),
    month: Optional[str] = typer.Option(
        None,
        "--month",
        help="Restrict to one month, YYYY-MM"
    )
):
    """Show the most expensive entities."""
    try:
        query = CostQuery(_repository(ctx))
        if month:
            query = query.period("month", _parse_month(month))
        leaders = query.sum_by_entity(limit=limit)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            _print_no_data_hint()
            sys.exit(EXIT_CODE_PASS)
        raise
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not leaders:
        _print_no_data_hint()
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Top entities by cost")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("ID")
    table.add_column("Cost", justify="right")
    for rank, leader in enumerate(leaders, start=1):
        table.add_row(str(rank), leader.entity.type, leader.entity.id, _format_currency(leader.total_cost))
    console.print(table)


@policy_app.command("set")
def policy_set(
    ctx: typer.Context,
    entity_type: str = typer.Argument(..., help="Entity type, e.g. Organization"),
    entity_id: str = typer.Argument(..., help="Entity id"),
    mode: str = typer.Option(
        "all",
        "--mode",
        help="all, none, allowlist or denylist"
    ),
    feature: Optional[List[str]] = typer.Option(
        None,
        "--feature",
        "-f",
        help="Feature for the allow/deny list (repeatable)"
    ),
    multiplier: float = typer.Option(
        1.0,
        "--multiplier",
        "-m",
        help="Usage multiplier for this entity"
    )
):
    """Create or replace an entity's tracking policy."""
    try:
        policy = TrackingPolicy(
            entity=EntityRef(entity_type, entity_id),
            tracking_mode=TrackingMode(mode.strip().lower()),
            tracking_features=frozenset(feature or []),
            usage_multiplier=multiplier,
        )
        _repository(ctx).save_tracking_policy(policy)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except sqlite3.Error as e:
        console.print(f"[red]Error saving policy:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Policy saved for {policy.entity.key}")
    _print_policy(policy)


@policy_app.command("show")
def policy_show(
    ctx: typer.Context,
    entity_type: str = typer.Argument(..., help="Entity type"),
    entity_id: str = typer.Argument(..., help="Entity id")
):
    """Show an entity's tracking policy."""
    entity = EntityRef(entity_type, entity_id)
    try:
        policy = _repository(ctx).get_tracking_policy(entity)
    except sqlite3.Error as e:
        console.print(f"[red]Error reading policy:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if policy is None:
        console.print(f"No policy for {entity.key} (tracks all features, multiplier 1)")
        return
    _print_policy(policy)


@policy_app.command("clear")
def policy_clear(
    ctx: typer.Context,
    entity_type: str = typer.Argument(..., help="Entity type"),
    entity_id: str = typer.Argument(..., help="Entity id")
):
    """Remove an entity's tracking policy."""
    entity = EntityRef(entity_type, entity_id)
    try:
        removed = _repository(ctx).delete_tracking_policy(entity)
    except sqlite3.Error as e:
        console.print(f"[red]Error removing policy:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if removed:
        console.print(f"[green]✓[/] Policy removed for {entity.key}")
    else:
        console.print(f"No policy for {entity.key}")


def _print_policy(policy: TrackingPolicy) -> None:
    console.print(f"Mode: {policy.tracking_mode.value} ({policy.tracking_mode.label})")
    features = ", ".join(sorted(policy.tracking_features)) or "-"
    console.print(f"Features: {features}")
    console.print(f"Multiplier: {policy.usage_multiplier:g}")


if __name__ == "__main__":
    app()
