"""Collapse parsed iptables rules into labeled counters."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, Mapping, Optional, Tuple

from ruleset_parser import NO_POLICY, Ruleset

logger = logging.getLogger(__name__)

MATCH_EVERYTHING = ".*"


class InvalidPatternError(ValueError):
    """Raised when a capture expression does not compile."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        super().__init__(f"invalid capture expression {expression!r}: {reason}")


class RuleCapture:
    """Derives a rule identifier from a rule body with a regular expression.

    Without groups the identifier is the matched text; with groups it is the
    captured text joined by ``separator``. Instances are read-only and may be
    shared between concurrent scrapes.
    """

    __slots__ = ("_pattern", "_separator")

    def __init__(self, expression: str = MATCH_EVERYTHING, separator: str = "") -> None:
        try:
            pattern = re.compile(expression)
        except re.error as exc:
            raise InvalidPatternError(expression, str(exc)) from exc
        object.__setattr__(self, "_pattern", pattern)
        object.__setattr__(self, "_separator", separator)

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @property
    def expression(self) -> str:
        return self._pattern.pattern

    @property
    def separator(self) -> str:
        return self._separator

    def identify(self, body: str) -> Optional[str]:
        match = self._pattern.search(body)
        if match is None:
            return None
        if not self._pattern.groups:
            return match.group(0)
        return self._separator.join(group or "" for group in match.groups())

    def __repr__(self) -> str:
        return f"RuleCapture({self.expression!r}, separator={self._separator!r})"


@dataclass(frozen=True)
class RuleCounters:
    packets: int = 0
    bytes: int = 0


@dataclass(frozen=True)
class ChainCounters:
    table: str
    chain: str
    policy: str
    packets: int
    bytes: int
    rules: Mapping[str, RuleCounters] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregatedMetrics:
    chains: Tuple[ChainCounters, ...] = ()

    def __iter__(self) -> Iterator[ChainCounters]:
        return iter(self.chains)

    def default_series(self) -> Iterator[Tuple[str, str, str, int, int]]:
        """Yield ``(table, chain, policy, packets, bytes)`` per chain."""
        for chain in self.chains:
            yield chain.table, chain.chain, chain.policy, chain.packets, chain.bytes

    def rule_series(self) -> Iterator[Tuple[str, str, str, int, int]]:
        """Yield ``(table, chain, identifier, packets, bytes)`` per identifier."""
        for chain in self.chains:
            for identifier, counters in chain.rules.items():
                yield chain.table, chain.chain, identifier, counters.packets, counters.bytes


def aggregate(ruleset: Ruleset, capture: RuleCapture) -> AggregatedMetrics:
    """Sum rule counters per ``(table, chain, identifier)``.

    Rules whose body does not match ``capture`` are left out of the
    per-identifier counters. The ruleset is not modified.
    """
    chains = []
    for table in ruleset:
        for chain in table.chains.values():
            merged: Dict[str, RuleCounters] = {}
            for rule in chain.rules:
                identifier = capture.identify(rule.body)
                if identifier is None:
                    logger.debug(
                        "Rule %r in chain %s[%s] does not match capture expression",
                        rule.body, chain.name, table.name,
                    )
                    continue
                previous = merged.get(identifier)
                if previous is None:
                    merged[identifier] = RuleCounters(rule.packets, rule.bytes)
                    continue
                logger.debug(
                    "Merging counters for %s in chain %s[%s]",
                    identifier, chain.name, table.name,
                )
                merged[identifier] = RuleCounters(
                    previous.packets + rule.packets,
                    previous.bytes + rule.bytes,
                )
            chains.append(
                ChainCounters(
                    table=table.name,
                    chain=chain.name,
                    policy=chain.policy or NO_POLICY,
                    packets=chain.packets,
                    bytes=chain.bytes,
                    rules=merged,
                )
            )
    return AggregatedMetrics(tuple(chains))


__all__ = [
    "AggregatedMetrics",
    "ChainCounters",
    "InvalidPatternError",
    "MATCH_EVERYTHING",
    "RuleCapture",
    "RuleCounters",
    "aggregate",
]
