"""Unix-style pipe filters applied to simulated command output.

The primary command runs first; every ``| filter`` segment after it is then
applied in order to the produced text. Supported filters: grep, head, tail,
wc, sort, uniq, cut, awk and cat. Unknown filters pass the text through.
"""

from __future__ import annotations

import itertools
import re
from typing import Callable, Dict, List

from clustersim.parsing.command_parser import tokenize
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)

_LEADING_NUMBER_RE = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)")


def split_pipe_chain(line: str) -> List[str]:
    """Split ``line`` on ``|`` characters that are not inside quotes."""
    parts: List[str] = []
    current = ""
    in_single = in_double = False
    for char in line:
        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif char == "|" and not in_single and not in_double:
            parts.append(current.strip())
            current = ""
            continue
        current += char
    if current.strip():
        parts.append(current.strip())
    return parts


def has_pipes(line: str) -> bool:
    return len(split_pipe_chain(line)) > 1


def primary_command(line: str) -> str:
    """Return the segment before the first unquoted pipe."""
    chain = split_pipe_chain(line)
    return chain[0] if chain else ""


# =============================================================================
# Filters
# =============================================================================

def _line_count_arg(args: List[str], default: int = 10) -> int:
    count = default
    index = 0
    while index < len(args):
        arg = args[index]
        if arg == "-n" and index + 1 < len(args):
            try:
                count = int(args[index + 1])
            except ValueError:
                count = default
            index += 1
        elif arg.startswith("-") and arg[1:].isdigit():
            count = int(arg[1:])
        index += 1
    return count


def grep(output: str, args: List[str]) -> str:
    if not output:
        return ""
    ignore_case = invert = extended = False
    pattern = ""
    for arg in args:
        if arg.startswith("-") and len(arg) > 1:
            ignore_case = ignore_case or "i" in arg
            invert = invert or "v" in arg
            extended = extended or "E" in arg
        else:
            pattern = arg.strip("\"'")
    if not pattern:
        return output

    regex = None
    if extended:
        try:
            regex = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
        except re.error:
            logger.debug(f"grep: invalid regex {pattern!r}, using literal match")
    needle = pattern.lower() if ignore_case else pattern

    kept = []
    for line in output.split("\n"):
        if regex is not None:
            matched = regex.search(line) is not None
        else:
            haystack = line.lower() if ignore_case else line
            matched = needle in haystack
        if matched != invert:
            kept.append(line)
    return "\n".join(kept)


def head(output: str, args: List[str]) -> str:
    if not output:
        return ""
    return "\n".join(output.split("\n")[: _line_count_arg(args)])


def tail(output: str, args: List[str]) -> str:
    if not output:
        return ""
    count = _line_count_arg(args)
    lines = output.split("\n")
    return "\n".join(lines[-count:]) if count > 0 else ""


def wc(output: str, args: List[str]) -> str:
    if not output:
        return "0"
    show_lines, show_words, show_bytes = "-l" in args, "-w" in args, "-c" in args
    show_all = not (show_lines or show_words or show_bytes)

    parts = []
    if show_all or show_lines:
        parts.append(f"{len(output.split(chr(10))):>7}")
    if show_all or show_words:
        parts.append(f"{len(output.split()):>7}")
    if show_all or show_bytes:
        parts.append(f"{len(output):>7}")
    return " ".join(parts)


def _leading_number(text: str) -> float:
    match = _LEADING_NUMBER_RE.match(text)
    return float(match.group(0)) if match else 0.0


def sort(output: str, args: List[str]) -> str:
    if not output:
        return ""
    lines = output.split("\n")
    if "-u" in args:
        lines = list(dict.fromkeys(lines))
    if "-n" in args:
        lines.sort(key=_leading_number)
    else:
        lines.sort()
    if "-r" in args:
        lines.reverse()
    return "\n".join(lines)


def uniq(output: str, args: List[str]) -> str:
    """Collapse adjacent duplicate lines; ``-c`` prefixes each with its count."""
    if not output:
        return ""
    show_count = "-c" in args
    result = []
    for line, group in itertools.groupby(output.split("\n")):
        if show_count:
            result.append(f"{sum(1 for _ in group):>7} {line}")
        else:
            result.append(line)
    return "\n".join(result)


def _parse_field_spec(spec: str) -> List[int]:
    fields: List[int] = []
    for part in spec.split(","):
        if "-" in part:
            start, _, end = part.partition("-")
            if start.isdigit() and end.isdigit():
                fields.extend(range(int(start), int(end) + 1))
        elif part.isdigit():
            fields.append(int(part))
    return fields


def cut(output: str, args: List[str]) -> str:
    if not output:
        return ""
    delimiter = "\t"
    fields: List[int] = []
    index = 0
    while index < len(args):
        arg = args[index]
        if arg in ("-d", "-f") and index + 1 < len(args):
            value = args[index + 1]
            index += 1
        else:
            value = arg[2:]
        if arg.startswith("-d"):
            delimiter = value or delimiter
        elif arg.startswith("-f"):
            fields = _parse_field_spec(value)
        index += 1
    if not fields:
        return output

    def _select(line: str) -> str:
        parts = line.split(delimiter)
        return delimiter.join(parts[f - 1] if 0 < f <= len(parts) else "" for f in fields)

    return "\n".join(_select(line) for line in output.split("\n"))


def awk(output: str, args: List[str]) -> str:
    """Minimal awk: only ``{print $N, $M}`` field projection."""
    if not output:
        return ""
    script = next((arg for arg in args if "print" in arg), args[-1] if args else "")
    match = re.search(r"print\s+(.*)", script)
    if not match:
        return output
    field_numbers = [int(n) for n in re.findall(r"\$(\d+)", match.group(1))]
    if not field_numbers:
        return output

    def _project(line: str) -> str:
        parts = line.split()
        return " ".join(parts[n - 1] if 0 < n <= len(parts) else "" for n in field_numbers)

    return "\n".join(_project(line) for line in output.split("\n"))


def cat(output: str, args: List[str]) -> str:
    return output


FILTERS: Dict[str, Callable[[str, List[str]], str]] = {
    "grep": grep,
    "head": head,
    "tail": tail,
    "wc": wc,
    "sort": sort,
    "uniq": uniq,
    "cut": cut,
    "awk": awk,
    "cat": cat,
}


def apply_pipe_filters(output: str, line: str) -> str:
    """Run every filter segment of ``line`` (after the first) over ``output``."""
    for segment in split_pipe_chain(line)[1:]:
        tokens = tokenize(segment)
        if not tokens:
            continue
        name, args = tokens[0], tokens[1:]
        handler = FILTERS.get(name)
        if handler is None:
            logger.debug(f"Unknown pipe filter '{name}', passing output through")
            continue
        output = handler(output, args)
    return output
