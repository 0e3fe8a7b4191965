"""Utilities for parsing ``iptables-save -c`` output into structured data."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import re

NO_POLICY = "-"


@dataclass
class Rule:
    body: str
    packets: int = 0
    bytes: int = 0


@dataclass
class Chain:
    name: str
    policy: Optional[str] = None
    packets: int = 0
    bytes: int = 0
    rules: List[Rule] = field(default_factory=list)


@dataclass
class Table:
    name: str
    chains: Dict[str, Chain] = field(default_factory=dict)


@dataclass
class Ruleset:
    tables: Dict[str, Table] = field(default_factory=dict)

    def __iter__(self):
        return iter(self.tables.values())


class ParseErrorKind(Enum):
    MALFORMED_CHAIN_LINE = "malformed chain line"
    MALFORMED_RULE_LINE = "malformed rule line"
    UNKNOWN_CHAIN = "unknown chain"
    UNRECOGNIZED_LINE = "unrecognized line"
    NO_TABLE = "no open table"
    DUPLICATE_TABLE = "duplicate table"
    DUPLICATE_CHAIN = "duplicate chain"


class RulesetError(Exception):
    """Base class for errors raised while reading a ruleset dump."""


class ParseError(RulesetError):
    """Raised on the first line of a dump that cannot be parsed."""

    def __init__(self, kind: ParseErrorKind, line_number: int, line: str) -> None:
        self.kind = kind
        self.line_number = line_number
        self.line = line
        super().__init__(f"{kind.value} at line {line_number}: {line!r}")


class EmptyInputError(RulesetError):
    """Raised when a dump holds no tables at all."""

    def __init__(self) -> None:
        super().__init__(
            "no tables in iptables-save output; "
            "this is probably due to insufficient permissions"
        )


CHAIN_RE = re.compile(
    r"^:(?P<name>\S+)\s+(?P<policy>\S+)\s+\[(?P<packets>\d+):(?P<bytes>\d+)\]$"
)
RULE_RE = re.compile(
    r"^\[(?P<packets>\d+):(?P<bytes>\d+)\]\s+(?P<body>-A\s+(?P<chain>\S+).*)$"
)


def _parse_chain(table: Table, stripped: str, number: int) -> None:
    match = CHAIN_RE.match(stripped)
    if not match:
        raise ParseError(ParseErrorKind.MALFORMED_CHAIN_LINE, number, stripped)
    name = match.group("name")
    if name in table.chains:
        raise ParseError(ParseErrorKind.DUPLICATE_CHAIN, number, stripped)
    policy = match.group("policy")
    table.chains[name] = Chain(
        name=name,
        policy=None if policy == NO_POLICY else policy,
        packets=int(match.group("packets")),
        bytes=int(match.group("bytes")),
    )


def _parse_rule(table: Table, stripped: str, number: int) -> None:
    match = RULE_RE.match(stripped)
    if not match:
        # The exporter always asks for counters, so a bare "-A" line is malformed.
        raise ParseError(ParseErrorKind.MALFORMED_RULE_LINE, number, stripped)
    chain = table.chains.get(match.group("chain"))
    if chain is None:
        raise ParseError(ParseErrorKind.UNKNOWN_CHAIN, number, stripped)
    chain.rules.append(
        Rule(
            body=match.group("body"),
            packets=int(match.group("packets")),
            bytes=int(match.group("bytes")),
        )
    )


def parse_iptables_save(output: str) -> Ruleset:
    """Parse the raw output of ``iptables-save -c``.

    Args:
        output: Raw command output.

    Returns:
        Tables in dump order, each holding its chains and their rules.

    Raises:
        ParseError: on the first line that does not fit the save format.
        EmptyInputError: if the output declares no table.
    """
    ruleset = Ruleset()
    current_table: Optional[Table] = None

    for number, line in enumerate(output.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        if stripped.startswith("*"):
            name = stripped[1:].strip()
            if not name:
                raise ParseError(ParseErrorKind.UNRECOGNIZED_LINE, number, stripped)
            if name in ruleset.tables:
                raise ParseError(ParseErrorKind.DUPLICATE_TABLE, number, stripped)
            current_table = Table(name=name)
            ruleset.tables[name] = current_table
            continue

        if stripped.startswith(":"):
            kind = "chain"
        elif stripped.startswith("-A") or stripped.startswith("["):
            kind = "rule"
        elif stripped == "COMMIT":
            kind = "commit"
        else:
            raise ParseError(ParseErrorKind.UNRECOGNIZED_LINE, number, stripped)

        if current_table is None:
            raise ParseError(ParseErrorKind.NO_TABLE, number, stripped)

        if kind == "chain":
            _parse_chain(current_table, stripped, number)
        elif kind == "rule":
            _parse_rule(current_table, stripped, number)
        else:
            current_table = None

    if not ruleset.tables:
        raise EmptyInputError()
    return ruleset


__all__ = [
    "Chain",
    "EmptyInputError",
    "NO_POLICY",
    "ParseError",
    "ParseErrorKind",
    "Rule",
    "Ruleset",
    "RulesetError",
    "Table",
    "parse_iptables_save",
]
