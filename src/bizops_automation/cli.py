"""Command-line interface for the automation engine."""

from __future__ import annotations

import argparse
import json
import threading
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .automation import AutomationEngine
from .core import AutomationError, EngineConfig, StoreConfig, get_logger, setup_logging

logger = get_logger("cli")

SWEEPS = ("overdue", "deadlines", "cleanup")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="bizops-automation",
        description="Rule-driven automation for projects, tasks, invoices and clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate a default config
  bizops-automation init-config -o bizops.yaml

  # Run the engine until interrupted
  bizops-automation run -c bizops.yaml --db bizops.db

  # Run the overdue invoice sweep once
  bizops-automation sweep overdue --db bizops.db
        """,
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s v{__version__}",
        help="Show program's version number and exit",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-c", "--config", help="Path to a YAML or JSON configuration file")
    common.add_argument("--db", help="SQLite database path (overrides the config store)")
    common.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", parents=[common], help="Start the engine and its sweeps")

    rules_parser = subparsers.add_parser("rules", parents=[common], help="Rule management")
    rules_parser.add_argument(
        "--all", action="store_true", help="Include deactivated rules in the listing"
    )
    rules_parser.add_argument("--add", metavar="FILE", help="Create rules from a YAML file")
    rules_parser.add_argument("--disable", metavar="RULE_ID", help="Deactivate a rule")

    sweep_parser = subparsers.add_parser("sweep", parents=[common], help="Run sweeps once")
    sweep_parser.add_argument(
        "which",
        nargs="?",
        choices=[*SWEEPS, "all"],
        default="all",
        help="Sweep to run (default: all)",
    )

    analytics_parser = subparsers.add_parser(
        "analytics", parents=[common], help="Show execution analytics"
    )
    analytics_parser.add_argument(
        "--days", type=int, default=30, help="Size of the reporting window in days"
    )
    analytics_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    init_parser = subparsers.add_parser("init-config", help="Generate default configuration")
    init_parser.add_argument(
        "-o",
        "--output",
        default="bizops.yaml",
        help="Output config file path (default: bizops.yaml)",
    )
    init_parser.add_argument("-f", "--force", action="store_true", help="Overwrite existing file")

    return parser


def load_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.load(args.config) if args.config else EngineConfig()
    if args.db:
        config.store = StoreConfig(backend="sqlite", path=args.db)
    if args.debug:
        config.logging.level = "DEBUG"
    return config


def build_engine(args: argparse.Namespace) -> AutomationEngine:
    config = load_config(args)
    setup_logging(config.logging)
    return AutomationEngine(config=config)


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------


def cmd_run(args: argparse.Namespace) -> int:
    engine = build_engine(args)
    console = Console()
    stop = threading.Event()

    engine.start()
    console.print(
        Panel(
            f"[bold]BizOps Automation[/bold] [green]v{__version__}[/]\n"
            f"[bold]Store:[/bold]     [yellow]{engine.config.store.backend}[/] "
            f"{engine.config.store.path or ''}\n"
            f"[bold]Rules:[/bold]     {len(engine.list_rules(active_only=True))} active\n"
            f"[bold]Recovery:[/bold]  {engine.last_recovery}",
            title="[bold white]Startup[/]",
            border_style="blue",
            expand=False,
        )
    )
    try:
        stop.wait()
    except KeyboardInterrupt:
        logger.info("Engine interrupted by user")
    finally:
        engine.shutdown()
    return 0


def cmd_rules(args: argparse.Namespace) -> int:
    engine = build_engine(args)
    console = Console()

    if args.add:
        with open(args.add, encoding="utf-8") as handle:
            definitions = yaml.safe_load(handle) or []
        if isinstance(definitions, dict):
            definitions = [definitions]
        for definition in definitions:
            rule = engine.create_rule(definition)
            console.print(f"[green]✓[/] Created rule {rule.name} ({rule.id})")

    if args.disable:
        if not engine.delete_rule(args.disable):
            console.print(f"[red]Rule not found:[/] {args.disable}")
            return 1
        console.print(f"[yellow]Rule deactivated:[/] {args.disable}")

    rules = engine.list_rules(active_only=not args.all)
    if not rules:
        console.print("[yellow]No automation rules configured.[/]")
        return 0

    table = Table(title="Automation Rules")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Trigger", style="magenta")
    table.add_column("Conditions")
    table.add_column("Actions", style="green")
    table.add_column("Status")
    for rule in rules:
        table.add_row(
            rule.id,
            rule.name,
            rule.trigger_type.value,
            str(len(rule.conditions)),
            ", ".join(action.type for action in rule.actions),
            "[green]Active[/]" if rule.active else "[red]Inactive[/]",
        )
    console.print(table)
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    engine = build_engine(args)
    console = Console()
    runners = {
        "overdue": engine.sweep.check_overdue_invoices,
        "deadlines": engine.sweep.check_approaching_deadlines,
        "cleanup": engine.sweep.cleanup,
    }
    selected = SWEEPS if args.which == "all" else (args.which,)

    table = Table(title="Sweep Results")
    table.add_column("Sweep", style="cyan")
    table.add_column("Summary")
    errors = 0
    for name in selected:
        summary = runners[name]()
        errors += summary.get("errors", 0)
        table.add_row(name, ", ".join(f"{key}={value}" for key, value in summary.items()))
    console.print(table)
    return 1 if errors else 0


def cmd_analytics(args: argparse.Namespace) -> int:
    engine = build_engine(args)
    end = engine.now()
    analytics: dict[str, Any] = engine.get_analytics(end - timedelta(days=args.days), end)

    if args.json:
        print(json.dumps(analytics, indent=2))
        return 0

    console = Console()
    metrics = analytics["performance_metrics"]
    console.print(
        Panel(
            f"[bold]Total:[/] {analytics['total_executions']}\n"
            f"[bold]Successful:[/] [green]{analytics['successful_executions']}[/]\n"
            f"[bold]Failed:[/] [red]{analytics['failed_executions']}[/]\n"
            f"[bold]Success rate:[/] {analytics['execution_rate']}%\n"
            f"[bold]Avg time:[/] {metrics['avg_execution_time']} ms\n"
            f"[bold]Notifications:[/] {metrics['total_notifications_sent']}\n"
            f"[bold]Reminders:[/] {metrics['total_reminders_sent']}",
            title=f"[bold white]Last {args.days} days[/]",
            border_style="blue",
            expand=False,
        )
    )

    if analytics["most_triggered_rules"]:
        table = Table(title="Most Triggered Rules")
        table.add_column("Rule", style="cyan")
        table.add_column("ID", style="dim")
        table.add_column("Executions", justify="right")
        for item in analytics["most_triggered_rules"]:
            table.add_row(item["rule_name"], item["rule_id"], str(item["count"]))
        console.print(table)
    return 0


def cmd_init_config(args: argparse.Namespace) -> int:
    output_path = Path(args.output)
    if output_path.exists() and not args.force:
        print(f"{output_path} already exists. Use --force to overwrite.")
        return 1

    default_config = EngineConfig().model_dump(mode="json")
    default_config["store"] = {"backend": "sqlite", "path": "bizops.db"}
    default_config["seed_defaults"] = True

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as handle:
        yaml.dump(default_config, handle, default_flow_style=False, sort_keys=False)

    print(f"✓ Configuration file created: {output_path}")
    print(f"Start the engine: bizops-automation run --config {output_path}")
    return 0


HANDLERS = {
    "run": cmd_run,
    "rules": cmd_rules,
    "sweep": cmd_sweep,
    "analytics": cmd_analytics,
    "init-config": cmd_init_config,
}


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Optional sequence of CLI arguments (without the program name).

    Returns:
        Process exit code. 0 for success.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        return HANDLERS[args.command](args)
    except (AutomationError, FileNotFoundError, ValueError) as exc:
        logger.error("Command %s failed: %s", args.command, exc, exc_info=True)
        print(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
