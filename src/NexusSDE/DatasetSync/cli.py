# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.cli",
#   "purpose": "Typer CLI: check, update, reset, status, and config show",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "check", "name": "check", "anchor": "function-check", "kind": "function"},
#     {"id": "update", "name": "update", "anchor": "function-update", "kind": "function"},
#     {"id": "reset", "name": "reset", "anchor": "function-reset", "kind": "function"},
#     {"id": "status", "name": "status", "anchor": "function-status", "kind": "function"},
#     {"id": "config-show", "name": "config_show", "anchor": "function-config-show", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Operational CLI for dataset synchronisation.

Exit codes:
    0: success, or the dataset is already current
    1: transport, metadata, integrity, or extraction failure (including
       partially applied updates) and configuration errors
    2: another update is already running

Example:
    $ sdesync check
    $ sdesync -v update --force
    $ sdesync status --format json
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import typer
import yaml
from filelock import FileLock, Timeout
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn
from rich.table import Table

from NexusSDE.DatasetSync import __version__
from NexusSDE.DatasetSync.artifacts import ARTIFACTS
from NexusSDE.DatasetSync.checker import UpdateCheckResult, UpdateStatus
from NexusSDE.DatasetSync.context import SyncContext, build_context
from NexusSDE.DatasetSync.errors import ConcurrentRunRejected, ConfigError
from NexusSDE.DatasetSync.events import EventLevel, UpdateEvent
from NexusSDE.DatasetSync.logging_config import LOGGER_NAME, setup_logging
from NexusSDE.DatasetSync.pipeline import PipelineReport, PipelineStatus
from NexusSDE.DatasetSync.resolver import Authority
from NexusSDE.DatasetSync.settings import SyncConfig, load_config

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_BUSY = 2

T = TypeVar("T")

ContextFactory = Callable[[SyncConfig], SyncContext]

# Global console for output
_console = Console()

_context_factory: ContextFactory = build_context

_EVENT_STYLES = {
    EventLevel.INFO: "cyan",
    EventLevel.WARNING: "yellow",
    EventLevel.ERROR: "red",
    EventLevel.SUCCESS: "green",
}


def set_context_factory(factory: Optional[ContextFactory]) -> None:
    """Override how commands build their :class:`SyncContext` (``None`` restores the default)."""

    global _context_factory
    _context_factory = factory or build_context


class CliContext:
    """Per-invocation state shared by commands.

    Holds the global flags, the console, and lazily loaded configuration so
    ``--help`` and ``--version`` work without touching the filesystem.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        verbosity: int = 0,
    ) -> None:
        self.config_path = config_path
        self.verbosity = verbosity
        self.console = _console
        self._config: Optional[SyncConfig] = None

    @property
    def config(self) -> SyncConfig:
        if self._config is None:
            try:
                self._config = load_config(self.config_path)
            except ConfigError as exc:
                self.console.print(f"[red]Error loading configuration: {exc}[/red]")
                raise typer.Exit(EXIT_FAILURE)
            setup_logging(
                self._config.logging,
                self._config.storage.log_dir,
                console=self.verbosity > 0,
            )
            if self.verbosity >= 2:
                logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG)
        return self._config

    def build(self) -> SyncContext:
        return _context_factory(self.config)

    def log_debug(self, message: str) -> None:
        """Log debug message if verbosity >= 2."""
        if self.verbosity >= 2:
            self.console.print(f"[dim]DEBUG: {message}[/dim]")


app = typer.Typer(
    name="sdesync",
    help="SDE dataset synchronisation - check, download, and manage dataset releases",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration inspection", no_args_is_help=True)
app.add_typer(config_app, name="config")

# Global context variable (per-invocation)
_context: Optional[CliContext] = None


def get_context() -> CliContext:
    """Get the current CLI context.

    Raises:
        RuntimeError: If context hasn't been initialized
    """
    if _context is None:
        raise RuntimeError("CLI context not initialized")
    return _context


def _run(ctx: CliContext, work: Callable[[SyncContext], Awaitable[T]]) -> T:
    """Build a sync context, run ``work`` on a fresh event loop, and close the context."""

    sync = ctx.build()

    async def _driver() -> T:
        try:
            return await work(sync)
        finally:
            await sync.aclose()

    return asyncio.run(_driver())


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"sdesync {__version__}")
        raise typer.Exit(EXIT_OK)


@app.callback(invoke_without_command=False)
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SDESYNC_CONFIG",
        help="Path to a YAML configuration file",
    ),
    verbosity: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Keep the local SDE dataset in step with published releases."""
    global _context

    _context = CliContext(config_path=config, verbosity=verbosity)
    _context.log_debug(f"Config file: {config}")


def _version_table(result: UpdateCheckResult) -> Table:
    table = Table(title="Update check")
    table.add_column("Artifact", style="cyan")
    table.add_column("Current", style="green")
    table.add_column("Latest", style="yellow")
    table.add_column("Update", style="magenta")
    for spec in ARTIFACTS:
        current = result.current.get(spec.kind, "-")
        latest = spec.version_of(result.remote_descriptor) if result.remote_descriptor else "-"
        table.add_row(
            spec.kind.value,
            str(current),
            str(latest),
            "yes" if spec.kind in result.updates else "no",
        )
    return table


def _print_check(ctx: CliContext, result: UpdateCheckResult) -> None:
    if result.status is UpdateStatus.CHECK_FAILED:
        ctx.console.print(f"[red]✗ Update check failed: {result.error}[/red]")
        return
    if result.from_cooldown:
        ctx.console.print("[cyan]Checked recently, no update available (use --force to re-check)[/cyan]")
        return
    if result.current:
        ctx.console.print(_version_table(result))
    if result.status is UpdateStatus.HAS_UPDATE and result.remote_descriptor is not None:
        ctx.console.print(
            f"[yellow]Update available: {result.remote_descriptor.version.release_tag}[/yellow]"
        )
    else:
        ctx.console.print("[green]✓ Dataset is current[/green]")


@app.command()
def check(
    force: bool = typer.Option(False, "--force", "-f", help="Ignore the check cooldown"),
) -> None:
    """Ask the record store whether a newer release is available.

    Example:
        $ sdesync check
        $ sdesync check --force
    """
    ctx = get_context()
    result = _run(ctx, lambda sync: sync.checker.check(force=force))
    _print_check(ctx, result)
    if result.status is UpdateStatus.CHECK_FAILED:
        raise typer.Exit(EXIT_FAILURE)


def _exit_code_for(report: PipelineReport) -> int:
    if report.status in (PipelineStatus.SUCCESS, PipelineStatus.UP_TO_DATE):
        return EXIT_OK
    return EXIT_FAILURE


class _EventPrinter:
    """Render pipeline events: progress as bars, everything else as lines."""

    def __init__(self, progress: Progress) -> None:
        self._progress = progress
        self._tasks: Dict[str, TaskID] = {}

    def __call__(self, event: UpdateEvent) -> None:
        if event.progress is not None:
            key = f"{event.artifact or ''} {event.message}".strip()
            if key not in self._tasks:
                self._tasks[key] = self._progress.add_task(key, total=1.0)
            self._progress.update(self._tasks[key], completed=event.progress)
            return
        style = _EVENT_STYLES[event.level]
        self._progress.console.print(f"[{style}]{event.render()}[/{style}]", highlight=False)


@app.command()
def update(
    force: bool = typer.Option(False, "--force", "-f", help="Ignore the check cooldown"),
) -> None:
    """Download, verify, and install newer artifacts of the latest release.

    Example:
        $ sdesync update
    """
    ctx = get_context()

    async def _update(sync: SyncContext) -> Any:
        result = await sync.checker.check(force=force)
        if result.status is not UpdateStatus.HAS_UPDATE:
            return result
        with Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>5.1f}%"),
            console=ctx.console,
            transient=True,
        ) as progress:
            unsubscribe = sync.events.subscribe(_EventPrinter(progress))
            try:
                return await sync.pipeline.run(result)
            finally:
                unsubscribe()

    try:
        outcome = _run(ctx, _update)
    except ConcurrentRunRejected as exc:
        ctx.console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(EXIT_BUSY)

    if isinstance(outcome, UpdateCheckResult):
        _print_check(ctx, outcome)
        raise typer.Exit(EXIT_FAILURE if outcome.status is UpdateStatus.CHECK_FAILED else EXIT_OK)

    code = _exit_code_for(outcome)
    if code == EXIT_OK:
        ctx.console.print(f"[green]✓ Update finished: {outcome.status.value}[/green]")
    else:
        ctx.console.print(f"[red]✗ Update finished: {outcome.status.value}[/red]")
    raise typer.Exit(code)


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete the local dataset and fall back to the shipped baseline.

    Example:
        $ sdesync reset --yes
    """
    ctx = get_context()
    if not yes and not typer.confirm("Delete the downloaded dataset?"):
        raise typer.Exit(EXIT_OK)

    sync = ctx.build()
    lock_path = sync.update_lock_path
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with FileLock(str(lock_path), timeout=0):
            reclaimed = sync.resolver.reset()
            sync.checker.clear_cooldown()
    except Timeout:
        ctx.console.print("[red]✗ An update is running; try again later[/red]")
        raise typer.Exit(EXIT_BUSY)
    finally:
        asyncio.run(sync.aclose())
    ctx.console.print(f"[green]✓ Local dataset removed ({reclaimed} bytes reclaimed)[/green]")


def _status_rows(sync: SyncContext) -> List[Dict[str, Any]]:
    rows = []
    for spec in ARTIFACTS:
        decision = sync.resolver.authority(spec.kind)
        descriptor = decision.descriptor
        rows.append(
            {
                "artifact": spec.kind.value,
                "authority": decision.authority.value,
                "version": str(spec.version_of(descriptor)) if descriptor else None,
                "release_date": descriptor.release_date if descriptor else None,
                "path": str(
                    sync.resolver.local.artifact_dir(spec.kind)
                    if decision.authority is Authority.LOCAL
                    else sync.resolver.baseline.artifact_dir(spec.kind)
                ),
            }
        )
    return rows


@app.command()
def status(
    format_output: str = typer.Option("table", "--format", help="Output format: table or json"),
) -> None:
    """Print the authoritative dataset and version per artifact.

    Example:
        $ sdesync status --format json
    """
    ctx = get_context()
    sync = ctx.build()
    try:
        rows = _status_rows(sync)
    finally:
        asyncio.run(sync.aclose())

    if format_output == "json":
        typer.echo(json.dumps(rows, indent=2))
        return
    table = Table(title="Dataset status")
    for column, style in (
        ("artifact", "cyan"),
        ("authority", "magenta"),
        ("version", "green"),
        ("release_date", "yellow"),
        ("path", "dim"),
    ):
        table.add_column(column.replace("_", " ").title(), style=style)
    for row in rows:
        table.add_row(*(str(row[key]) if row[key] is not None else "-" for key in row))
    ctx.console.print(table)


@config_app.command("show")
def config_show(
    format_output: str = typer.Option("table", "--format", help="Output format: table, json, or yaml"),
    no_redact: bool = typer.Option(
        False, "--no-redact-secrets", help="Include secret values"
    ),
) -> None:
    """Display the effective configuration.

    Example:
        $ sdesync config show --format yaml
    """
    ctx = get_context()
    config = ctx.config
    payload = config.model_dump(mode="json")
    if not no_redact and payload["remote"].get("api_token"):
        payload["remote"]["api_token"] = "***REDACTED***"

    if format_output == "json":
        typer.echo(json.dumps(payload, indent=2))
        return
    if format_output == "yaml":
        typer.echo(yaml.safe_dump(payload, default_flow_style=False, sort_keys=True))
        return

    table = Table(title=f"Effective configuration ({config.config_hash()})")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for section, values in payload.items():
        for field_name, value in values.items():
            table.add_row(f"{section}.{field_name}", str(value))
    ctx.console.print(table)


__all__ = ["app", "CliContext", "get_context", "set_context_factory"]
