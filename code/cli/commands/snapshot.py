"""CLI commands for listing, capturing, restoring and deleting snapshots."""

from __future__ import annotations

from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clustersim.engine import SimulationEngine
from clustersim.exceptions import ScenarioLoadError
from clustersim.scenarios import load_scenario_file
from clustersim.state.snapshots import StateSnapshot

from cli.commands.run import run_lines


def render_snapshot_table(snapshots: List[StateSnapshot], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not snapshots:
        console.print("[yellow]No snapshots found.[/yellow]")
        console.print("Capture one with:")
        console.print("  [cyan]dcsim snapshot create <name>[/cyan]")
        return

    table = Table(title="Cluster Snapshots")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Created", style="dim")
    table.add_column("Scenario", style="magenta")
    table.add_column("Nodes", justify="right")
    table.add_column("GPUs", justify="right")
    table.add_column("Baseline", justify="center")

    for snapshot in snapshots:
        table.add_row(
            snapshot.id,
            snapshot.name,
            snapshot.timestamp,
            snapshot.scenario_id or "-",
            str(snapshot.metadata.node_count),
            str(snapshot.metadata.gpu_count),
            "✓" if snapshot.is_baseline else "",
        )
    console.print(table)


def list_snapshots(args) -> int:
    engine: SimulationEngine = args.engine
    render_snapshot_table(engine.snapshots.get_snapshots(), Console())
    return 0


def create_snapshot(args) -> int:
    """Capture the cluster after optional scenario and setup commands."""
    engine: SimulationEngine = args.engine
    console = Console()
    scenario = getattr(args, "scenario", None)
    if scenario is not None:
        try:
            engine.load_scenario(load_scenario_file(scenario))
        except ScenarioLoadError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            return 1
    run_lines(engine, getattr(args, "commands", None) or [])

    if getattr(args, "baseline", False):
        snapshot_id = engine.snapshots.create_baseline_snapshot()
    else:
        snapshot_id = engine.snapshots.create_snapshot(args.name, getattr(args, "description", None))
    console.print(f"Created snapshot [green]{snapshot_id}[/green]")
    return 0


def restore_snapshot(args) -> int:
    """Restore a snapshot, then run any follow-up commands against it."""
    engine: SimulationEngine = args.engine
    console = Console()
    if not engine.snapshots.restore_snapshot(args.snapshot_id):
        console.print(f"[red]Snapshot not found: {escape(args.snapshot_id)}[/red]")
        return 1
    console.print(f"Restored snapshot [green]{args.snapshot_id}[/green]")
    return run_lines(engine, getattr(args, "commands", None) or [])


def delete_snapshot(args) -> int:
    engine: SimulationEngine = args.engine
    console = Console()
    if not engine.snapshots.delete_snapshot(args.snapshot_id):
        console.print(f"[red]Snapshot not found: {escape(args.snapshot_id)}[/red]")
        return 1
    console.print(f"Deleted snapshot [green]{args.snapshot_id}[/green]")
    return 0


def export_snapshot(args) -> int:
    engine: SimulationEngine = args.engine
    payload = engine.snapshots.export_snapshot(args.snapshot_id)
    if payload is None:
        Console(stderr=True).print(f"[red]Snapshot not found: {escape(args.snapshot_id)}[/red]")
        return 1
    Console().print(payload, markup=False, highlight=False)
    return 0
