"""Typo detection for flags and subcommands ("Did you mean ...?")."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

DEFAULT_MAX_DISTANCE = 3
MAX_SUGGESTIONS = 3


@dataclass(frozen=True)
class FuzzyMatchResult:
    input: str
    suggestions: List[str] = field(default_factory=list)
    confidence: float = 0.0
    exact_match: bool = False


@dataclass(frozen=True)
class FlagDefinition:
    long: str
    short: Optional[str] = None
    aliases: tuple = ()


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with unit insert/delete/substitute costs."""
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            )
        previous = current
    return previous[len(b)]


def find_similar_strings(
    text: str,
    candidates: Iterable[str],
    max_distance: int = DEFAULT_MAX_DISTANCE,
) -> List[str]:
    """Return up to three candidates ordered by distance to ``text``.

    The tolerated distance shrinks for short inputs:
    ``min(max_distance, max(2, len(text) // 2))``. Candidates equal to the
    input (distance 0) are never suggested. Ties keep registration order.
    """
    limit = min(max_distance, max(2, len(text) // 2))
    lowered = text.lower()
    scored = [
        (levenshtein_distance(lowered, candidate.lower()), candidate)
        for candidate in candidates
    ]
    matches = [(distance, candidate) for distance, candidate in scored if 0 < distance <= limit]
    matches.sort(key=lambda item: item[0])
    return [candidate for _, candidate in matches[:MAX_SUGGESTIONS]]


class CommandInterceptor:
    """Per-tool registries of valid flags and subcommands.

    Simulators register their vocabulary at construction; validation then
    answers whether a token is known and, if not, what was probably meant.
    """

    def __init__(self) -> None:
        self._flags: Dict[str, Dict[str, None]] = {}
        self._subcommands: Dict[str, Dict[str, None]] = {}

    def register_flags(self, command: str, flags: Iterable[FlagDefinition]) -> None:
        registry = self._flags.setdefault(command, {})
        for flag in flags:
            if flag.short:
                registry[flag.short] = None
            registry[flag.long] = None
            for alias in flag.aliases:
                registry[alias] = None

    def register_subcommands(self, command: str, subcommands: Iterable[str]) -> None:
        registry = self._subcommands.setdefault(command, {})
        for name in subcommands:
            registry[name] = None

    def validate_flag(self, command: str, flag: str) -> FuzzyMatchResult:
        return self._validate(self._flags.get(command), flag)

    def validate_subcommand(self, command: str, subcommand: str) -> FuzzyMatchResult:
        return self._validate(self._subcommands.get(command), subcommand)

    @staticmethod
    def _validate(registry: Optional[Dict[str, None]], token: str) -> FuzzyMatchResult:
        if registry is None:
            return FuzzyMatchResult(input=token)
        if token.lower() in {name.lower() for name in registry}:
            return FuzzyMatchResult(input=token, confidence=1.0, exact_match=True)

        suggestions = find_similar_strings(token, registry)
        confidence = 0.0
        if suggestions:
            best = suggestions[0]
            distance = levenshtein_distance(token.lower(), best.lower())
            confidence = 1 - distance / max(len(token), len(best))
        return FuzzyMatchResult(input=token, suggestions=suggestions, confidence=confidence)

    @staticmethod
    def format_suggestion(result: FuzzyMatchResult, is_flag: bool = True) -> str:
        if result.exact_match or not result.suggestions:
            return ""
        prefix = "--" if is_flag else ""
        if len(result.suggestions) == 1:
            return f"Did you mean '{prefix}{result.suggestions[0]}'?"
        formatted = ", ".join(f"'{prefix}{s}'" for s in result.suggestions)
        return f"Did you mean one of: {formatted}?"

    def registered_flags(self, command: str) -> List[str]:
        return list(self._flags.get(command, {}))

    def registered_subcommands(self, command: str) -> List[str]:
        return list(self._subcommands.get(command, {}))
