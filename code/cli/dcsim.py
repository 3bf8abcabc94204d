#!/usr/bin/env python3
"""
dcsim - Data Center Cluster Command Simulator CLI (Typer)

Single entry point for running simulated administration commands against a
deterministic GPU cluster. No args → show help; `shell` opens an interactive
prompt; `run` executes one or more command lines and exits with the last
failing exit code.
"""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace
from typing import List, Optional

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import typer
from rich.console import Console

from clustersim.config import load_config
from clustersim.engine import SimulationEngine
from clustersim.utils.logger import setup_logging

from cli.commands import run as run_commands
from cli.commands import scenario as scenario_commands
from cli.commands import shell as shell_commands
from cli.commands import snapshot as snapshot_commands

DEFAULT_SNAPSHOT_FILE = Path.home() / ".dcsim" / "snapshots.json"
VERSION = "0.1.0"


# =============================================================================
# Helpers
# =============================================================================

def _engine(ctx: typer.Context) -> SimulationEngine:
    """Build the engine once per invocation from the root options."""
    obj = ctx.find_root().obj
    if obj.get("engine") is None:
        config = load_config(
            nodes=obj.get("nodes"),
            system_type=obj.get("system_type"),
            log_level="DEBUG" if obj.get("verbose") else None,
            snapshot_path=obj.get("snapshot_file"),
        )
        if config.snapshot_path is None:
            config = replace(config, snapshot_path=DEFAULT_SNAPSHOT_FILE)
        obj["engine"] = SimulationEngine.create(config)
    return obj["engine"]


def _build_args(ctx: typer.Context, **kwargs) -> SimpleNamespace:
    return SimpleNamespace(engine=_engine(ctx), **kwargs)


def _run(func, ctx: typer.Context, **kwargs) -> None:
    """Execute command functions and honor their integer exit codes."""
    args = _build_args(ctx, **kwargs)
    try:
        result = func(args)
    except KeyboardInterrupt:
        raise typer.Exit(code=130)
    code = 0 if result is None else int(result)
    raise typer.Exit(code=code)


# =============================================================================
# Typer app + subcommands
# =============================================================================

app = typer.Typer(
    name="dcsim",
    help="Data Center Cluster Command Simulator",
    add_completion=False,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)

snapshot_app = typer.Typer(help="Capture, list, restore and delete cluster snapshots")
scenario_app = typer.Typer(help="Load training scenarios")


# =============================================================================
# Root callback
# =============================================================================

@app.callback()
def _root(
    ctx: typer.Context,
    nodes: Optional[int] = typer.Option(None, "--nodes", "-N", min=1, help="Number of simulated nodes"),
    system_type: Optional[str] = typer.Option(
        None, "--system-type", "-s", help="System type (DGX-A100 or DGX-H100)"
    ),
    snapshot_file: Optional[Path] = typer.Option(
        None, "--snapshot-file", help=f"Snapshot store (default: {DEFAULT_SNAPSHOT_FILE})"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this file"),
    log_format: str = typer.Option("text", "--log-format", help="Log file format: text or json"),
) -> None:
    ctx.obj = {
        "nodes": nodes,
        "system_type": system_type,
        "snapshot_file": snapshot_file,
        "verbose": verbose,
        "engine": None,
    }
    level = "DEBUG" if verbose else load_config().log_level
    setup_logging(level=level, log_file=log_file, log_format=log_format)


# =============================================================================
# Commands
# =============================================================================

@app.command("run", help="Execute command lines against the simulated cluster")
def run_command(
    ctx: typer.Context,
    lines: List[str] = typer.Argument(..., help="Command lines, e.g. 'nvidia-smi -L'"),
    node: Optional[str] = typer.Option(None, "--node", "-n", help="Node to run on"),
) -> None:
    _run(run_commands.run, ctx, lines=lines, node=node)


@app.command("shell", help="Open an interactive simulator shell")
def shell_command(ctx: typer.Context) -> None:
    _run(shell_commands.shell, ctx)


@app.command("commands", help="List the simulated commands")
def commands_command() -> None:
    run_commands.render_command_table(Console())


@app.command("version", help="Show version information")
def version_command() -> None:
    typer.echo(f"dcsim {VERSION}")


# -----------------------------------------------------------------------------
# snapshot
# -----------------------------------------------------------------------------

@snapshot_app.command("list", help="List snapshots, newest first")
def snapshot_list(ctx: typer.Context) -> None:
    _run(snapshot_commands.list_snapshots, ctx)


@snapshot_app.command("create", help="Capture the cluster (optionally after a scenario and commands)")
def snapshot_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Snapshot name"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Free-form description"),
    scenario: Optional[Path] = typer.Option(None, "--scenario", help="Scenario JSON to load first"),
    commands: Optional[List[str]] = typer.Option(None, "--command", "-c", help="Command to run before capture"),
    baseline: bool = typer.Option(False, "--baseline", help="Store as the baseline snapshot"),
) -> None:
    _run(
        snapshot_commands.create_snapshot,
        ctx,
        name=name,
        description=description,
        scenario=scenario,
        commands=commands,
        baseline=baseline,
    )


@snapshot_app.command("restore", help="Restore a snapshot and run follow-up commands on it")
def snapshot_restore(
    ctx: typer.Context,
    snapshot_id: str = typer.Argument(..., help="Snapshot id"),
    commands: Optional[List[str]] = typer.Option(None, "--command", "-c", help="Command to run after restore"),
) -> None:
    _run(snapshot_commands.restore_snapshot, ctx, snapshot_id=snapshot_id, commands=commands)


@snapshot_app.command("delete", help="Delete a snapshot")
def snapshot_delete(ctx: typer.Context, snapshot_id: str = typer.Argument(..., help="Snapshot id")) -> None:
    _run(snapshot_commands.delete_snapshot, ctx, snapshot_id=snapshot_id)


@snapshot_app.command("export", help="Print a snapshot as JSON")
def snapshot_export(ctx: typer.Context, snapshot_id: str = typer.Argument(..., help="Snapshot id")) -> None:
    _run(snapshot_commands.export_snapshot, ctx, snapshot_id=snapshot_id)


# -----------------------------------------------------------------------------
# scenario
# -----------------------------------------------------------------------------

@scenario_app.command("load", help="Load a scenario JSON file and run follow-up commands")
def scenario_load(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Scenario JSON file"),
    commands: Optional[List[str]] = typer.Option(None, "--command", "-c", help="Command to run after loading"),
) -> None:
    _run(scenario_commands.load, ctx, file=file, commands=commands)


# =============================================================================
# Attach sub-apps
# =============================================================================

app.add_typer(snapshot_app, name="snapshot")
app.add_typer(scenario_app, name="scenario")


# =============================================================================
# Main entry point
# =============================================================================

def main() -> int:
    try:
        app()
    except SystemExit as exc:  # Typer raises SystemExit
        return int(exc.code or 0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
