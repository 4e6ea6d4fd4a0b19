"""
RewardFlow CLI

Commands:
- config show: Print the effective configuration
- fees: Show per-chain fees and net payouts for an amount
- tier: Classify a hypothetical user
- simulate: Run an in-process engine through a full aggregation cycle
- run: Start the operator loop and metrics server
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

import click
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

from rewardflow import __version__
from rewardflow.activity.tracker import UserActivity
from rewardflow.config import EngineConfig, load_config
from rewardflow.distribution.distributor import CrossChainDistributor
from rewardflow.engine import RewardFlowEngine
from rewardflow.exceptions import ConfigurationError
from rewardflow.observability.metrics import MetricsCollector, start_metrics_server
from rewardflow.operator import RewardFlowOperator
from rewardflow.reward.calculator import PoolContext
from rewardflow.tiers.classifier import TierClassifier, TierLevel

console = Console()

TIER_STYLES = {
    TierLevel.DIAMOND: "bold cyan",
    TierLevel.PLATINUM: "bold white",
    TierLevel.GOLD: "yellow",
    TierLevel.SILVER: "white",
    TierLevel.BRONZE: "dim",
}


def _output_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _output_yaml(data: Any) -> None:
    click.echo(yaml.dump(data, default_flow_style=False, sort_keys=False))


def _load(config_path: Optional[str]) -> EngineConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


def _format_bps(bps: int) -> str:
    return f"{bps / 10_000:.2f}x"


@click.group()
@click.version_option(__version__, prog_name="rewardflow")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Override the configured log level.",
)
@click.pass_context
def app(ctx: click.Context, log_level: Optional[str]):
    """RewardFlow: multi-chain LP incentive engine."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    if log_level:
        logging.basicConfig(
            level=log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


# -- config ---------------------------------------------------------------

@app.group()
def config():
    """Inspect configuration."""


@config.command("show")
@click.option("--config", "config_path", type=click.Path(), default=None, help="YAML config file.")
@click.option(
    "--format", "fmt",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format.",
)
def show_config(config_path: Optional[str], fmt: str):
    """Print the effective configuration (file + environment)."""
    cfg = _load(config_path)
    data = cfg.model_dump(mode="json")
    if fmt == "json":
        _output_json(data)
    else:
        _output_yaml(data)


# -- fees -----------------------------------------------------------------

@app.command()
@click.option("--amount", type=int, default=1_000, show_default=True, help="Gross amount in base units.")
@click.option("--config", "config_path", type=click.Path(), default=None, help="YAML config file.")
@click.option("--json", "json_flag", is_flag=True, help="Output as JSON.")
def fees(amount: int, config_path: Optional[str], json_flag: bool):
    """Show the flat fee and net payout for every configured chain."""
    if amount < 0:
        raise click.BadParameter("amount must be non-negative", param_hint="--amount")
    cfg = _load(config_path)
    distributor = CrossChainDistributor(cfg.distributor)

    rows = []
    for status in distributor.list_chain_status():
        fee = distributor.calculate_fee(amount, status.chain_id)
        rows.append({
            "chain_id": status.chain_id,
            "name": status.name,
            "supported": status.supported,
            "fee": fee,
            "net": amount - fee,
        })

    if json_flag:
        _output_json({"amount": amount, "chains": rows})
        return

    console.print(f"\n[bold blue]Distribution fees for {amount}[/bold blue]\n")
    table = Table(box=box.ROUNDED)
    table.add_column("Chain", style="cyan")
    table.add_column("Name")
    table.add_column("Supported")
    table.add_column("Fee", justify="right")
    table.add_column("Net", justify="right")
    for row in rows:
        table.add_row(
            str(row["chain_id"]),
            row["name"],
            "[green]yes[/green]" if row["supported"] else "[red]no[/red]",
            str(row["fee"]),
            str(row["net"]),
        )
    console.print(table)
    console.print(f"\n  Unknown chains pay the default fee of {cfg.distributor.default_fee}\n")


# -- tier -----------------------------------------------------------------

@app.command()
@click.option("--liquidity", type=click.IntRange(min=0), default=0, help="Total liquidity in base units.")
@click.option("--loyalty", type=click.IntRange(0, 100), default=0, help="Loyalty score (0-100).")
@click.option("--days", type=click.IntRange(min=0), default=0, help="Consecutive active days.")
@click.option("--config", "config_path", type=click.Path(), default=None, help="YAML config file.")
@click.option("--json", "json_flag", is_flag=True, help="Output as JSON.")
def tier(liquidity: int, loyalty: int, days: int, config_path: Optional[str], json_flag: bool):
    """Classify a hypothetical user into a tier."""
    cfg = _load(config_path)
    classifier = TierClassifier(cfg.tiers, cfg.unit)
    result = classifier.classify(UserActivity(
        user="cli",
        total_liquidity=liquidity,
        loyalty_score=loyalty,
        consecutive_active_days=days,
    ))
    multiplier = classifier.get_multiplier(result.level)

    if json_flag:
        _output_json({
            "level": result.level.label,
            "tier_points": result.tier_points,
            "multiplier_bps": multiplier,
        })
        return

    style = TIER_STYLES[result.level]
    console.print(f"\n  Tier:        [{style}]{result.level.label}[/{style}]")
    console.print(f"  Points:      {result.tier_points}")
    console.print(f"  Multiplier:  {_format_bps(multiplier)}\n")


# -- simulate -------------------------------------------------------------

@app.command()
@click.option("--users", type=click.IntRange(min=1), default=5, show_default=True, help="Number of LPs.")
@click.option(
    "--liquidity", type=click.IntRange(min=1), default=100_000, show_default=True,
    help="Liquidity added by each LP.",
)
@click.option("--config", "config_path", type=click.Path(), default=None, help="YAML config file.")
@click.option("--json", "json_flag", is_flag=True, help="Output as JSON.")
def simulate(users: int, liquidity: int, config_path: Optional[str], json_flag: bool):
    """Add liquidity for N users and run one full aggregation cycle."""
    cfg = _load(config_path)
    engine = RewardFlowEngine(cfg)
    pool = PoolContext(pool_id="sim-pool", token0=cfg.rewards.reference_asset, token1="USDC")
    now = time.time()

    for i in range(users):
        engine.record_liquidity_event(f"lp-{i:03d}", pool, liquidity, now=now)

    first = engine.run_aggregation_pass(now)
    report = engine.run_aggregation_pass(now + cfg.scheduler.aggregation_window_seconds)
    stats = engine.distribution_stats()

    if json_flag:
        _output_json({
            "build_pass": first.model_dump(),
            "dispatch_pass": report.model_dump(),
            "distribution": stats.model_dump(),
            "pending": engine.ledger.total_pending(),
        })
        return

    console.print(f"\n[bold blue]Simulation: {users} LPs x {liquidity}[/bold blue]\n")
    table = Table(box=box.ROUNDED)
    table.add_column("Task", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Priority")
    table.add_column("Entries", justify="right")
    table.add_column("Amount", justify="right")
    for task in engine.scheduler.tasks():
        table.add_row(
            task.task_id,
            task.status.value,
            task.priority.label,
            str(task.user_count),
            str(task.total_amount),
        )
    console.print(table)
    console.print(f"\n  Distributed:  {stats.total_distributed}")
    console.print(f"  Fees:         {stats.total_fees}")
    console.print(f"  Requests:     {stats.total_requests}")
    console.print(f"  Still pending: {engine.ledger.total_pending()}")
    if report.held:
        console.print(f"  Held tasks:   {len(report.held)}")
    console.print()


# -- run ------------------------------------------------------------------

@app.command()
@click.option("--config", "config_path", type=click.Path(), default=None, help="YAML config file.")
@click.option("--metrics/--no-metrics", default=None, help="Serve Prometheus metrics.")
@click.pass_context
def run(ctx: click.Context, config_path: Optional[str], metrics: Optional[bool]):
    """Start the operator loop until interrupted."""
    cfg = _load(config_path)
    if not ctx.obj.get("log_level"):
        logging.basicConfig(
            level=cfg.observability.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    serve_metrics = cfg.observability.metrics_enabled if metrics is None else metrics
    collector = None
    if serve_metrics:
        collector = MetricsCollector()
        if start_metrics_server(cfg.observability.metrics_port):
            console.print(f"  Metrics on :{cfg.observability.metrics_port}/metrics")

    engine = RewardFlowEngine(cfg, metrics=collector)
    operator = RewardFlowOperator(engine)
    console.print("[bold green]RewardFlow operator running[/bold green] (Ctrl+C to stop)")

    async def _main() -> None:
        try:
            await operator.run()
        finally:
            await operator.stop()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        pass
    _output_json(operator.get_status())


def main() -> None:
    app(obj={})


if __name__ == "__main__":
    main()
