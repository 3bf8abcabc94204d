"""Common contract for per-tool command simulators.

A simulator answers one or more base commands (``nvidia-smi``; or ``sinfo``,
``squeue`` ... for Slurm). Each one builds its subcommand registry once, at
construction, as a list of :class:`CommandSpec` entries, and registers its
vocabulary with the shared :class:`CommandInterceptor` for typo suggestions.

``execute`` never lets a :class:`SimulatorError` escape; lookups that fail
become exit-code-1 results. Anything else is caught by the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from clustersim.exceptions import NodeNotFoundError, SimulatorError
from clustersim.parsing.command_parser import ParsedCommand, get_flag_string, has_flag
from clustersim.parsing.fuzzy import CommandInterceptor, FlagDefinition
from clustersim.state.events import EventHandler
from clustersim.state.models import Node
from clustersim.state.store import ClusterStore

EXIT_OK = 0
EXIT_ERROR = 1


@dataclass(frozen=True)
class CommandResult:
    output: str
    exit_code: int = EXIT_OK

    @property
    def ok(self) -> bool:
        return self.exit_code == EXIT_OK


@dataclass
class CommandContext:
    store: ClusterStore
    current_node: str = ""
    job_start_delay_ms: int = 100
    environment: Dict[str, str] = field(default_factory=dict)
    history: List[str] = field(default_factory=list)

    def node(self) -> Node:
        """The node commands run on; falls back to the first node."""
        node = self.store.find_node(self.current_node) if self.current_node else None
        if node is None:
            if not self.store.nodes:
                raise NodeNotFoundError(self.current_node or "<none>")
            node = self.store.nodes[0]
        return node


@dataclass(frozen=True)
class FlagSpec:
    long: str
    description: str
    short: Optional[str] = None
    takes_value: bool = False


@dataclass(frozen=True)
class CommandMetadata:
    name: str
    description: str
    usage: str
    flags: Tuple[FlagSpec, ...] = ()
    examples: Tuple[str, ...] = ()


Handler = Callable[[ParsedCommand, CommandContext], CommandResult]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: Handler
    metadata: CommandMetadata


@dataclass(frozen=True)
class SimulatorMetadata:
    name: str
    version: str
    description: str
    commands: Tuple[CommandMetadata, ...] = ()


class BaseSimulator(ABC):
    """Base class for simulators.

    Subclasses set ``name`` (and ``tools`` when they answer several base
    commands), return their registry from :meth:`command_specs` and
    implement :meth:`run_default` for invocations without a subcommand.
    """

    name: str = ""
    version: str = ""
    description: str = ""
    tools: Tuple[str, ...] = ()
    version_flags: Tuple[str, ...] = ("version", "v")
    help_flags: Tuple[str, ...] = ("help", "h")

    def __init__(self, interceptor: Optional[CommandInterceptor] = None) -> None:
        self.interceptor = interceptor or CommandInterceptor()
        self._commands: Dict[str, CommandSpec] = {spec.name: spec for spec in self.command_specs()}
        for tool in self.handled_tools():
            self.interceptor.register_flags(tool, self.valid_flags())
            self.interceptor.register_subcommands(tool, list(self._commands) + list(self.extra_subcommands()))

    # -------------------------------------------------------------------------
    # Registration hooks
    # -------------------------------------------------------------------------

    def handled_tools(self) -> Tuple[str, ...]:
        return self.tools or (self.name,)

    def command_specs(self) -> List[CommandSpec]:
        return []

    def valid_flags(self) -> Sequence[FlagDefinition]:
        return ()

    def extra_subcommands(self) -> Sequence[str]:
        return ()

    def event_handlers(self) -> Dict[str, EventHandler]:
        """Deferred-effect handlers this simulator schedules, keyed by event kind."""
        return {}

    def get_metadata(self) -> SimulatorMetadata:
        return SimulatorMetadata(
            name=self.name,
            version=self.version,
            description=self.description,
            commands=tuple(spec.metadata for spec in self._commands.values()),
        )

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def execute(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        try:
            return self.dispatch(parsed, context)
        except SimulatorError as e:
            return self.error(f"Error: {e}")

    def dispatch(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if self.version_flags and has_flag(parsed, *self.version_flags):
            return self.handle_version(context)
        if has_flag(parsed, *self.help_flags):
            return self.handle_help(parsed.subcommands[0] if parsed.subcommands else None, context)

        if parsed.subcommands:
            spec = self._commands.get(parsed.subcommands[0])
            if spec is not None:
                return spec.handler(parsed, context)
            if self._commands:
                return self.unknown_subcommand(parsed.base_command, parsed.subcommands[0])
        return self.run_default(parsed, context)

    @abstractmethod
    def run_default(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        """Handle an invocation without a registered subcommand."""

    # -------------------------------------------------------------------------
    # Built-in responses
    # -------------------------------------------------------------------------

    def handle_version(self, context: CommandContext) -> CommandResult:
        return self.success(f"{self.name} version {self.version}")

    def handle_help(self, command_name: Optional[str], context: CommandContext) -> CommandResult:
        if command_name and command_name in self._commands:
            return self.success(self.format_command_help(self._commands[command_name].metadata))
        lines = [f"{self.name} - {self.description}", "", f"Usage: {self.name} <command> [options]", ""]
        if self._commands:
            lines.append("Commands:")
            for spec in self._commands.values():
                lines.append(f"  {spec.name:<16}{spec.metadata.description}")
            lines.append("")
            lines.append(f"Run '{self.name} <command> --help' for more information on a command.")
        return self.success("\n".join(lines))

    @staticmethod
    def format_command_help(meta: CommandMetadata) -> str:
        lines = [f"{meta.name} - {meta.description}", "", f"Usage: {meta.usage}"]
        if meta.flags:
            lines += ["", "Options:"]
            for flag in meta.flags:
                names = f"-{flag.short}, --{flag.long}" if flag.short else f"    --{flag.long}"
                if flag.takes_value:
                    names += " <value>"
                lines.append(f"  {names:<28}{flag.description}")
        if meta.examples:
            lines += ["", "Examples:"] + [f"  {example}" for example in meta.examples]
        return "\n".join(lines)

    def unknown_subcommand(self, tool: str, subcommand: str) -> CommandResult:
        lines = [f"Unknown command: {subcommand}"]
        suggestion = self.interceptor.format_suggestion(
            self.interceptor.validate_subcommand(tool, subcommand), is_flag=False
        )
        if suggestion:
            lines.append(suggestion)
        lines += ["", "Available commands:"]
        lines += [f"  {spec.name:<16}{spec.metadata.description}" for spec in self._commands.values()]
        return self.error("\n".join(lines))

    def validate_flags(self, parsed: ParsedCommand) -> Optional[CommandResult]:
        """Reject unknown flags with a did-you-mean hint; ``None`` when all are valid."""
        for flag in parsed.flags:
            result = self.interceptor.validate_flag(parsed.base_command, flag)
            if result.exact_match:
                continue
            dashes = "--" if len(flag) > 1 else "-"
            message = f"Invalid combination of input arguments. Unknown option: {dashes}{flag}"
            suggestion = self.interceptor.format_suggestion(result)
            if suggestion:
                message += f"\n{suggestion}"
            message += f"\nPlease run '{parsed.base_command} -h' for help."
            return self.error(message)
        return None

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def success(output: str) -> CommandResult:
        return CommandResult(output=output, exit_code=EXIT_OK)

    @staticmethod
    def error(output: str) -> CommandResult:
        return CommandResult(output=output, exit_code=EXIT_ERROR)

    @staticmethod
    def flag_int(parsed: ParsedCommand, names: List[str], default: Optional[int] = None) -> Optional[int]:
        raw = get_flag_string(parsed, names)
        try:
            return int(raw) if raw else default
        except ValueError:
            return default
