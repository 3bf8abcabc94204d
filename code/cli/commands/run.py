"""CLI command for executing simulated command lines."""

from __future__ import annotations

from typing import Iterable

import typer
from rich.console import Console
from rich.table import Table

from clustersim.engine import SimulationEngine
from clustersim.exceptions import NodeNotFoundError
from clustersim.simulators.registry import get_routes


def run_lines(engine: SimulationEngine, lines: Iterable[str]) -> int:
    """Execute each line and echo its output; returns the last non-zero exit code."""
    code = 0
    for line in lines:
        result = engine.execute(line)
        if result.output:
            # typer.echo keeps the simulators' ANSI colors intact
            typer.echo(result.output)
        if result.exit_code:
            code = result.exit_code
    return code


def run(args) -> int:
    engine: SimulationEngine = args.engine
    if getattr(args, "node", None):
        try:
            engine.set_current_node(args.node)
        except NodeNotFoundError as e:
            typer.echo(str(e), err=True)
            return 1
    return run_lines(engine, args.lines)


def render_command_table(console: Console) -> None:
    table = Table(title="Simulated Commands")
    table.add_column("Command", style="cyan")
    table.add_column("Category", style="magenta")
    table.add_column("Description")
    for route in get_routes():
        table.add_row(route.command, route.category, route.description or "")
    console.print(table)
