"""CLI commands for loading training scenarios."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clustersim.engine import SimulationEngine
from clustersim.exceptions import ScenarioLoadError
from clustersim.scenarios import ScenarioLoadResult, load_scenario_file

from cli.commands.run import run_lines


def render_scenario_summary(result: ScenarioLoadResult, console: Console) -> None:
    scenario = result.scenario
    title = f"{scenario.id}: {scenario.title}" if scenario.title else scenario.id
    console.print(f"Loaded scenario [bold cyan]{title}[/bold cyan]")
    if scenario.description:
        console.print(scenario.description)

    if scenario.faults:
        table = Table(title="Injected Faults")
        table.add_column("Node", style="cyan")
        table.add_column("GPU", justify="right")
        table.add_column("Type", style="yellow")
        table.add_column("Severity", style="red")
        for fault in scenario.faults:
            table.add_row(
                fault.node_id,
                "-" if fault.gpu_id is None else str(fault.gpu_id),
                fault.fault_type,
                fault.severity,
            )
        console.print(table)
    console.print(
        f"{result.faults_applied}/{len(scenario.faults)} fault(s) applied. "
        f"Previous state saved as [green]{result.snapshot_id}[/green]"
    )


def load(args) -> int:
    engine: SimulationEngine = args.engine
    console = Console()
    try:
        scenario = load_scenario_file(args.file)
    except ScenarioLoadError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return 1
    result = engine.load_scenario(scenario)
    render_scenario_summary(result, console)
    return run_lines(engine, getattr(args, "commands", None) or [])
