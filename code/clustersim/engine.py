"""Command execution engine.

Owns one cluster, its snapshot manager and one instance of every simulator,
and turns a raw command line into a :class:`CommandResult`.

Usage:
    from clustersim.engine import SimulationEngine

    engine = SimulationEngine.create(nodes=2)
    result = engine.execute("nvidia-smi -L | head -n 2")
    print(result.output, result.exit_code)

Each ``execute`` call:

1. advances the simulated clock by one tick, applying deferred events
   (so a job queued by ``sbatch`` is running by the next command)
2. parses the first pipe segment and routes it by base command
3. applies the remaining pipe segments as text filters

No exception escapes ``execute``; unexpected failures are logged and
reported as ``Internal simulator error: ...`` with exit code 1.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Union

from clustersim.config import SimulatorConfig, load_config
from clustersim.parsing.command_parser import parse
from clustersim.parsing.fuzzy import CommandInterceptor, find_similar_strings
from clustersim.parsing.pipes import apply_pipe_filters, has_pipes, primary_command
from clustersim.scenarios import Scenario, ScenarioLoadResult, load_scenario
from clustersim.simulators.base import EXIT_ERROR, BaseSimulator, CommandContext, CommandResult
from clustersim.simulators.registry import build_simulators, get_commands
from clustersim.state.factory import create_cluster
from clustersim.state.faults import FaultInjectionConfig, apply_faults, clear_all_faults
from clustersim.state.models import ClusterState
from clustersim.state.snapshots import SnapshotManager
from clustersim.state.store import ClusterStore
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)


class SimulationEngine:
    def __init__(
        self,
        state: ClusterState,
        config: Optional[SimulatorConfig] = None,
        current_node: Optional[str] = None,
    ) -> None:
        self.config = config or SimulatorConfig()
        self.store = ClusterStore(state)
        self.snapshots = SnapshotManager(
            self.store,
            storage_path=self.config.snapshot_path,
            max_snapshots=self.config.max_snapshots,
        )
        self.interceptor = CommandInterceptor()
        self._simulators = build_simulators(self.interceptor)
        for simulator in set(self._simulators.values()):
            for kind, handler in simulator.event_handlers().items():
                self.store.events.register_handler(kind, handler)

        default_node = state.nodes[0].id if state.nodes else ""
        self.context = CommandContext(
            store=self.store,
            current_node=current_node or default_node,
            job_start_delay_ms=self.config.job_start_delay_ms,
        )

    @classmethod
    def create(cls, config: Optional[SimulatorConfig] = None, **overrides) -> "SimulationEngine":
        """Build an engine around a fresh cluster described by ``config``."""
        config = config or load_config(**overrides)
        state = create_cluster(config.nodes, config.system_type)
        logger.debug(f"Created {state.name} with {len(state.nodes)} node(s)")
        return cls(state, config)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    @property
    def commands(self) -> List[str]:
        return get_commands()

    @property
    def current_node(self) -> str:
        return self.context.current_node

    def set_current_node(self, node_id: str) -> None:
        node = self.store.get_node(node_id)
        self.context.current_node = node.id

    def simulator_for(self, command: str) -> Optional[BaseSimulator]:
        return self._simulators.get(command)

    def execute(self, line: str) -> CommandResult:
        if not line or not line.strip():
            return CommandResult("")
        self.context.history.append(line)
        try:
            self.store.events.advance(self.config.tick_ms)
            result = self._dispatch(line)
            if result.ok and has_pipes(line):
                result = CommandResult(apply_pipe_filters(result.output, line), result.exit_code)
            return result
        except Exception as e:
            logger.exception(f"Command failed: {line!r}")
            return CommandResult(f"Internal simulator error: {e}", EXIT_ERROR)

    def _dispatch(self, line: str) -> CommandResult:
        parsed = parse(primary_command(line))
        if not parsed.base_command:
            return CommandResult("")
        simulator = self._simulators.get(parsed.base_command)
        if simulator is None:
            return self._command_not_found(parsed.base_command)
        logger.debug(f"Dispatching {parsed.base_command} to {type(simulator).__name__}")
        return simulator.execute(parsed, self.context)

    def _command_not_found(self, command: str) -> CommandResult:
        message = f"{command}: command not found"
        suggestions = find_similar_strings(command, self.commands)
        if suggestions:
            message += f"\nDid you mean '{suggestions[0]}'?"
        return CommandResult(message, EXIT_ERROR)

    # -------------------------------------------------------------------------
    # Faults and time
    # -------------------------------------------------------------------------

    def apply_faults(self, faults: Iterable[Union[FaultInjectionConfig, Dict[str, Any]]]) -> int:
        return apply_faults(self.store, faults)

    def clear_all_faults(self) -> None:
        clear_all_faults(self.store)

    def advance(self, delta_ms: int) -> int:
        return self.store.events.advance(delta_ms)

    def run_pending(self) -> int:
        return self.store.events.run_pending()

    # -------------------------------------------------------------------------
    # Scenarios
    # -------------------------------------------------------------------------

    def load_scenario(self, scenario: Union[Scenario, Dict[str, Any]]) -> ScenarioLoadResult:
        return load_scenario(self.store, self.snapshots, scenario)
