"""
Filter vocabulary passed from the facade to a repository.

The repository translates these into its own query language; the facade never
builds backend specific expressions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Tuple

OPERATORS = ("eq", "ilike", "gte", "lte")


@dataclass(frozen=True)
class Predicate:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported predicate operator: {self.op}")


def eq(name: str, value: Any) -> Predicate:
    return Predicate(name, "eq", value)


def ilike(name: str, value: str) -> Predicate:
    """Case-insensitive substring match."""
    return Predicate(name, "ilike", value)


def gte(name: str, value: Any) -> Predicate:
    return Predicate(name, "gte", value)


def lte(name: str, value: Any) -> Predicate:
    return Predicate(name, "lte", value)


@dataclass(frozen=True)
class QueryFilter:
    """
    ``where`` predicates are AND-ed together. When ``any_of`` is non-empty, at
    least one of its predicates must also hold.
    """

    where: Sequence[Predicate] = field(default_factory=tuple)
    any_of: Sequence[Predicate] = field(default_factory=tuple)

    def describe(self) -> str:
        clauses = [f"{p.field}.{p.op}.{p.value}" for p in self.where]
        if self.any_of:
            clauses.append("or(" + ",".join(f"{p.field}.{p.op}.{p.value}" for p in self.any_of) + ")")
        return ",".join(clauses) or "*"


@dataclass(frozen=True)
class Ordering:
    field: str
    descending: bool = False


# Related entity name -> columns to include from it.
Expansion = Mapping[str, Tuple[str, ...]]

NEWEST_FIRST = Ordering("created_at", descending=True)
