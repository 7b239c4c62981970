"""CLI entry points for the AccuBooks automation engine.

Commands:
    accubooks-automation rules list FILE       List the rules defined in a rules file
    accubooks-automation rules validate FILE   Check a rules file without running anything
    accubooks-automation run-rule FILE RULE    Execute one rule now and print the record
    accubooks-automation serve [FILE]          Run the scheduler and HTTP API
    accubooks-automation config show|path|init Inspect or create the configuration
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

import accubooks_automation
from accubooks_automation.automations.models import AutomationRule, TriggerType
from accubooks_automation.automations.schedule import ScheduleParser
from accubooks_automation.config import AutomationConfig, ConfigManager, configure_logging
from accubooks_automation.errors import AutomationError

console = Console()
app = typer.Typer(
    name="accubooks-automation",
    help="Rule-based automation engine for AccuBooks.",
    no_args_is_help=True,
)
rules_app = typer.Typer(help="Inspect and validate rules files.")
app.add_typer(rules_app, name="rules")

config_app = typer.Typer(help="Show the effective configuration.")
app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)

_STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "running": "cyan",
    "pending": "dim",
}


def _load_config(verbose: bool = False) -> AutomationConfig:
    """Load config from disk and configure logging from it."""
    config = ConfigManager().load()
    level = "DEBUG" if verbose else config.logging.level
    configure_logging(level=level, format=config.logging.format)
    return config


def _build_engine(config: AutomationConfig, rules_file: Path | None):
    from accubooks_automation.automations.engine import AutomationEngine

    engine = AutomationEngine(config)
    if rules_file is not None:
        engine.load_rules(rules_file)
    return engine


def _next_run(rule: AutomationRule, now: datetime) -> str:
    if rule.trigger.type != TriggerType.SCHEDULE or not rule.enabled:
        return "[dim]-[/dim]"
    upcoming = ScheduleParser.next_fire(rule.trigger.config["schedule"], now)
    return upcoming.strftime("%Y-%m-%d %H:%M") if upcoming else "[dim]never[/dim]"


@app.command()
def version() -> None:
    """Print the installed version."""
    console.print(accubooks_automation.__version__)


# ------------------------------------------------------------------
# accubooks-automation rules list / validate
# ------------------------------------------------------------------


@rules_app.command("list")
def rules_list(
    rules_file: Path = typer.Argument(help="TOML or JSON rules file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List the rules defined in a rules file."""
    config = _load_config(verbose)
    try:
        engine = _build_engine(config, rules_file)
    except AutomationError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1) from None

    table = Table(title="Automation Rules", border_style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Trigger")
    table.add_column("Conditions", justify="right")
    table.add_column("Actions", justify="right")
    table.add_column("Priority")
    table.add_column("Enabled")
    table.add_column("Next run")

    now = datetime.now(engine.timezone)
    for rule in engine.list_rules():
        table.add_row(
            rule.id[:8],
            rule.name,
            rule.trigger.type.value,
            str(len(rule.conditions)),
            str(len(rule.actions)),
            rule.priority.value,
            "[green]Yes[/green]" if rule.enabled else "[dim]No[/dim]",
            _next_run(rule, now),
        )

    console.print()
    console.print(table)
    if not engine.list_rules():
        console.print("[dim]No automation rules defined.[/dim]")
    console.print()


@rules_app.command("validate")
def rules_validate(
    rules_file: Path = typer.Argument(help="TOML or JSON rules file"),
) -> None:
    """Validate every rule in a rules file. Exits 1 on the first invalid rule."""
    from accubooks_automation.automations.loader import load_rules_file
    from accubooks_automation.automations.store import RuleStore

    store = RuleStore()
    try:
        drafts = load_rules_file(rules_file)
        for draft in drafts:
            store.create(draft)
    except AutomationError as exc:
        console.print(f"[red]Invalid:[/red] {exc.message}")
        raise typer.Exit(1) from None
    console.print(f"[green]OK[/green] {len(drafts)} rules in {rules_file}")


# ------------------------------------------------------------------
# accubooks-automation run-rule
# ------------------------------------------------------------------


@app.command("run-rule")
def run_rule(
    rules_file: Path = typer.Argument(help="TOML or JSON rules file"),
    rule: str = typer.Argument(help="Rule id or name"),
    data: str = typer.Option("", "--data", "-d", help="JSON context passed to the rule"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Execute one rule now and print its execution record."""
    config = _load_config(verbose)
    try:
        context = json.loads(data) if data else None
    except json.JSONDecodeError as exc:
        console.print(f"[red]--data is not valid JSON: {exc}[/red]")
        raise typer.Exit(1) from None

    try:
        engine = _build_engine(config, rules_file)
    except AutomationError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1) from None

    match = next((r for r in engine.list_rules() if rule in (r.id, r.name)), None)
    if match is None:
        console.print(f"[red]No rule with id or name {rule!r}[/red]")
        raise typer.Exit(1)

    execution = asyncio.run(engine.execute_rule(match.id, "manual", context))
    style = _STATUS_STYLES.get(execution.status.value, "white")
    console.print(f"\n[bold]{match.name}[/bold]: [{style}]{execution.status.value}[/{style}]")
    for line in execution.logs:
        console.print(f"  [dim]{line}[/dim]")
    if execution.result is not None:
        console.print_json(json.dumps(execution.result, default=str))
    if execution.error:
        console.print(f"[red]{execution.error}[/red]")
        raise typer.Exit(1)


# ------------------------------------------------------------------
# accubooks-automation serve
# ------------------------------------------------------------------


@app.command()
def serve(
    rules_file: Path | None = typer.Argument(None, help="Optional rules file to load"),
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8400, "--port", "-p", help="Bind port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Run the scheduler and the HTTP API until interrupted."""
    import uvicorn

    from accubooks_automation.api.app import create_app

    config = _load_config(verbose)
    try:
        engine = _build_engine(config, rules_file)
    except AutomationError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1) from None

    console.print(
        f"[bold cyan]Serving {len(engine.store)} rules on http://{host}:{port}[/bold cyan]"
    )
    uvicorn.run(create_app(engine), host=host, port=port, log_config=None)


# ------------------------------------------------------------------
# accubooks-automation config show / path
# ------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration (file + defaults + environment)."""
    config = ConfigManager().load()

    for section, values in config.model_dump().items():
        table = Table(title=section, border_style="cyan", show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in values.items():
            table.add_row(key, str(value))
        console.print(table)


@config_app.command("init")
def config_init(
    rules_path: str = typer.Option(
        "", "--rules", "-r", help="Rules file to load on start (relative to the config dir)"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
) -> None:
    """Write a config file populated with defaults."""
    manager = ConfigManager()
    try:
        path = manager.init(rules_path, overwrite=force)
    except FileExistsError:
        console.print(
            f"[yellow]{manager.get_config_path()} already exists; use --force to replace it[/yellow]"
        )
        raise typer.Exit(1) from None
    console.print(f"[green]Wrote[/green] {path}")
    if rules_path:
        console.print(f"Rules file: {manager.resolve_rules_path(rules_path)}")


@config_app.command("path")
def config_path() -> None:
    """Print the config file location and whether it exists."""
    manager = ConfigManager()
    path = manager.get_config_path()
    state = "[green]exists[/green]" if manager.exists() else "[dim]not created[/dim]"
    console.print(f"{path} ({state})")


if __name__ == "__main__":
    app()
