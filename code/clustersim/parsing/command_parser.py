"""Shell-like command line parser.

Turns a raw command line such as ``nvidia-smi mig -cgi 19,19 -C -i 0`` into a
structured :class:`ParsedCommand`:

- base command (``nvidia-smi``)
- ordered subcommands (``mig``)
- flags with values (``{"cgi": "19,19", "C": True, "i": "0"}``)
- positional arguments

Supported syntax:

- long flags: ``--version``, ``--flag=value``, ``--flag value``
- short and multi-character flags: ``-i 0``, ``-mig 1``, ``-lgip`` (never bundled)
- quoting: ``"with spaces"``, ``'single quotes'``
- escapes: ``\\"``, ``\\'``, ``\\\\``
- ``--`` stops flag interpretation for the rest of the line

Usage:
    from clustersim.parsing.command_parser import parse, has_flag

    parsed = parse("nvidia-smi -q -i 0")
    if has_flag(parsed, "q", "query"):
        ...

``parse`` never raises; blank input yields an empty ``base_command``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

FlagValue = Union[str, bool]

_NUMERIC_RE = re.compile(r"^-?\d+$")


@dataclass(frozen=True)
class ParsedCommand:
    base_command: str
    subcommands: Tuple[str, ...] = ()
    flags: Dict[str, FlagValue] = field(default_factory=dict)
    positional_args: Tuple[str, ...] = ()
    raw_args: Tuple[str, ...] = ()
    raw: str = ""


class _State(Enum):
    NORMAL = "normal"
    SINGLE_QUOTE = "single_quote"
    DOUBLE_QUOTE = "double_quote"
    ESCAPE = "escape"


# =============================================================================
# Tokenizer
# =============================================================================

def tokenize(line: str) -> List[str]:
    """Split a command line into tokens honoring quotes and escapes."""
    tokens: List[str] = []
    current = ""
    state = _State.NORMAL

    for index, char in enumerate(line):
        next_char = line[index + 1] if index + 1 < len(line) else ""

        if state is _State.NORMAL:
            if char == "\\" and next_char in ('"', "'", "\\"):
                state = _State.ESCAPE
            elif char == '"':
                state = _State.DOUBLE_QUOTE
            elif char == "'":
                state = _State.SINGLE_QUOTE
            elif char in (" ", "\t"):
                if current:
                    tokens.append(current)
                    current = ""
            else:
                current += char
        elif state is _State.ESCAPE:
            current += char
            state = _State.NORMAL
        elif state is _State.SINGLE_QUOTE:
            if char == "'":
                state = _State.NORMAL
            else:
                current += char
        else:
            if char == "\\" and next_char == '"':
                state = _State.ESCAPE
            elif char == '"':
                state = _State.NORMAL
            else:
                current += char

    if current:
        tokens.append(current)
    return tokens


def is_flag(token: Optional[str]) -> bool:
    return bool(token) and token.startswith("-") and len(token) > 1 and token != "--"


# =============================================================================
# Parser
# =============================================================================

def _take_value(next_token: Optional[str], stop_flag_parsing: bool) -> Tuple[FlagValue, bool]:
    if not stop_flag_parsing and next_token is not None and not is_flag(next_token):
        return next_token, True
    return True, False


def parse(line: str) -> ParsedCommand:
    """Parse ``line`` into a :class:`ParsedCommand`."""
    if not line or not line.strip():
        return ParsedCommand(base_command="", raw=line or "")

    tokens = tokenize(line.strip())
    if not tokens:
        return ParsedCommand(base_command="", raw=line)

    base_command, raw_args = tokens[0], tokens[1:]
    flags: Dict[str, FlagValue] = {}
    subcommands: List[str] = []
    positional: List[str] = []

    stop_flag_parsing = False
    parsing_subcommands = True
    index = 0
    while index < len(raw_args):
        token = raw_args[index]
        next_token = raw_args[index + 1] if index + 1 < len(raw_args) else None
        index += 1

        if token == "--":
            stop_flag_parsing = True
            continue

        if stop_flag_parsing or not is_flag(token):
            if parsing_subcommands and "=" not in token and not _NUMERIC_RE.match(token):
                subcommands.append(token)
            else:
                parsing_subcommands = False
                positional.append(token)
            continue

        parsing_subcommands = False

        if token.startswith("--"):
            name = token[2:]
            if "=" in name:
                name, _, value = name.partition("=")
                flags[name] = value
                continue
        else:
            name = token[1:]

        value, consumed = _take_value(next_token, stop_flag_parsing)
        flags[name] = value
        if consumed:
            index += 1

    return ParsedCommand(
        base_command=base_command,
        subcommands=tuple(subcommands),
        flags=flags,
        positional_args=tuple(positional),
        raw_args=tuple(raw_args),
        raw=line,
    )


# =============================================================================
# Helpers
# =============================================================================

def has_flag(parsed: ParsedCommand, *names: str) -> bool:
    return any(name in parsed.flags for name in names)


def get_flag_value(parsed: ParsedCommand, *names: str) -> Optional[FlagValue]:
    for name in names:
        if name in parsed.flags:
            return parsed.flags[name]
    return None


def get_flag_string(parsed: ParsedCommand, names: List[str], default: str = "") -> str:
    """Return the first string value among ``names``; boolean flags yield ``default``."""
    value = get_flag_value(parsed, *names)
    return value if isinstance(value, str) else default


def describe_parsed_command(parsed: ParsedCommand) -> str:
    parts = [f"Base command: {parsed.base_command}"]
    if parsed.subcommands:
        parts.append(f"Subcommands: {' -> '.join(parsed.subcommands)}")
    if parsed.flags:
        rendered = [
            f"--{name}" if isinstance(value, bool) else f"--{name}={value}"
            for name, value in parsed.flags.items()
        ]
        parts.append(f"Flags: {', '.join(rendered)}")
    if parsed.positional_args:
        parts.append(f"Positional args: {', '.join(parsed.positional_args)}")
    return "\n".join(parts)
