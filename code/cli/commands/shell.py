"""Interactive shell: a prompt that feeds lines to the simulation engine.

Besides the simulated tools, the shell understands a few built-ins:

    help                       list built-ins and simulated commands
    exit | quit                leave the shell
    node [<id>]                show or switch the current node
    history                    list previously executed lines
    snapshot list              show captured snapshots
    snapshot create <name>     capture the cluster state
    snapshot restore <id>      restore a snapshot
    snapshot delete <id>       delete a snapshot
    snapshot baseline          capture (or with --restore, restore) the baseline
    scenario load <file>       load a scenario JSON file
    fault clear                remove every injected fault
"""

from __future__ import annotations

import shlex
from typing import List, Tuple

from rich.console import Console
from rich.markup import escape

from clustersim.engine import SimulationEngine
from clustersim.exceptions import NodeNotFoundError, ScenarioLoadError
from clustersim.scenarios import load_scenario_file

from cli.commands.run import render_command_table, run_lines
from cli.commands.scenario import render_scenario_summary
from cli.commands.snapshot import render_snapshot_table

EXIT_WORDS = ("exit", "quit", "logout")


class InteractiveShell:
    def __init__(self, engine: SimulationEngine, console: Console) -> None:
        self.engine = engine
        self.console = console

    @property
    def prompt(self) -> str:
        return f"[bold green]root@{self.engine.current_node}[/bold green]:[bold blue]~[/bold blue]# "

    def loop(self) -> int:
        self.console.print(
            f"[bold]dcsim[/bold] interactive shell on {self.engine.store.state.name}. "
            "Type [cyan]help[/cyan] for commands, [cyan]exit[/cyan] to leave."
        )
        last_code = 0
        while True:
            try:
                line = self.console.input(self.prompt)
            except (EOFError, KeyboardInterrupt):
                self.console.print()
                return last_code
            keep_going, last_code = self.handle(line)
            if not keep_going:
                return last_code

    def handle(self, line: str) -> Tuple[bool, int]:
        """Process one line; returns ``(keep_going, exit_code)``."""
        stripped = line.strip()
        if not stripped:
            return True, 0
        try:
            words = shlex.split(stripped)
        except ValueError:
            words = stripped.split()
        head = words[0]

        if head in EXIT_WORDS:
            return False, 0
        if head == "help" and len(words) == 1:
            self.show_help()
            return True, 0
        if head == "node":
            return True, self.switch_node(words[1:])
        if head == "history":
            for index, entry in enumerate(self.engine.context.history, 1):
                self.console.print(f"{index:5}  {entry}", markup=False, highlight=False)
            return True, 0
        if head == "snapshot":
            return True, self.snapshot(words[1:])
        if head == "scenario":
            return True, self.scenario(words[1:])
        if head == "fault" and words[1:] == ["clear"]:
            self.engine.clear_all_faults()
            self.console.print("All faults cleared.")
            return True, 0
        return True, run_lines(self.engine, [line])

    # -------------------------------------------------------------------------
    # Built-ins
    # -------------------------------------------------------------------------

    def show_help(self) -> None:
        render_command_table(self.console)
        self.console.print(__doc__.split("\n\n", 1)[1].rstrip(), markup=False, highlight=False)

    def switch_node(self, args: List[str]) -> int:
        if not args:
            self.console.print(self.engine.current_node)
            return 0
        try:
            self.engine.set_current_node(args[0])
        except NodeNotFoundError as e:
            self.console.print(f"[red]{escape(str(e))}[/red]")
            return 1
        return 0

    def snapshot(self, args: List[str]) -> int:
        snapshots = self.engine.snapshots
        action = args[0] if args else "list"
        if action == "list":
            render_snapshot_table(snapshots.get_snapshots(), self.console)
            return 0
        if action == "create":
            name = " ".join(args[1:]) or f"Snapshot {len(snapshots.get_snapshots()) + 1}"
            self.console.print(f"Created snapshot [green]{snapshots.create_snapshot(name)}[/green]")
            return 0
        if action == "baseline":
            if "--restore" in args[1:]:
                restored = snapshots.restore_baseline()
                self.console.print("Baseline restored." if restored else "[yellow]No baseline snapshot.[/yellow]")
                return 0 if restored else 1
            self.console.print(f"Created baseline [green]{snapshots.create_baseline_snapshot()}[/green]")
            return 0
        if action in ("restore", "delete") and len(args) == 2:
            operation = snapshots.restore_snapshot if action == "restore" else snapshots.delete_snapshot
            if not operation(args[1]):
                self.console.print(f"[red]Snapshot not found: {escape(args[1])}[/red]")
                return 1
            self.console.print(f"{action.capitalize()}d snapshot [green]{args[1]}[/green]")
            return 0
        self.console.print(
            "Usage: snapshot [list | create <name> | restore <id> | delete <id> | baseline [--restore]]",
            markup=False,
        )
        return 1

    def scenario(self, args: List[str]) -> int:
        if len(args) != 2 or args[0] != "load":
            self.console.print("Usage: scenario load <file>")
            return 1
        try:
            scenario = load_scenario_file(args[1])
        except ScenarioLoadError as e:
            self.console.print(f"[red]{escape(str(e))}[/red]")
            return 1
        render_scenario_summary(self.engine.load_scenario(scenario), self.console)
        return 0


def shell(args) -> int:
    return InteractiveShell(args.engine, Console()).loop()
