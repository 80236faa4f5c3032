"""Typed predicate nodes produced by the filter compiler.

A compiled search is a tree of these immutable nodes. Nodes name listing
columns by string and carry plain Python values; nothing here touches SQL.
query.py renders a tree into a SQLAlchemy expression with bound parameters.

Node equality is structural, so compiling the same input twice yields equal
trees.
"""

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Equals:
    """column = value"""

    column: str
    value: Any


@dataclass(frozen=True)
class InList:
    """column IN (values...)"""

    column: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class Range:
    """Inclusive bounds; either side may be omitted."""

    column: str
    minimum: int | float | None = None
    maximum: int | float | None = None


@dataclass(frozen=True)
class GreaterThan:
    """column > value"""

    column: str
    value: int | float


@dataclass(frozen=True)
class ColumnGreaterThan:
    """left > right, both listing columns."""

    left: str
    right: str


@dataclass(frozen=True)
class Like:
    """Case-insensitive substring match. `term` is the raw user text; escaping happens at render time."""

    column: str
    term: str


@dataclass(frozen=True)
class NotNull:
    column: str


@dataclass(frozen=True)
class ListedWithin:
    """column >= today - days. Resolved against the clock when rendered."""

    column: str
    days: int


@dataclass(frozen=True)
class UpcomingOpenHouse:
    """The listing has an open house scheduled today or later."""


@dataclass(frozen=True)
class ExclusiveListing:
    """The listing id is purely numeric and below the exclusive watermark."""

    column: str = "listing_id"


@dataclass(frozen=True)
class Raw:
    """Opaque SQL condition handed back by the geocoding collaborator.

    The compiler never looks inside. `params` is a tuple of (name, value)
    pairs bound into `sql` when rendered.
    """

    sql: str
    params: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class AllOf:
    """Conjunction of child predicates."""

    children: tuple["Predicate", ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AnyOf:
    """Disjunction of child predicates."""

    children: tuple["Predicate", ...] = field(default_factory=tuple)


Predicate = Union[
    Equals,
    InList,
    Range,
    GreaterThan,
    ColumnGreaterThan,
    Like,
    NotNull,
    ListedWithin,
    UpcomingOpenHouse,
    ExclusiveListing,
    Raw,
    AllOf,
    AnyOf,
]


def conjuncts(predicate: Predicate) -> tuple[Predicate, ...]:
    """Top-level terms of a conjunction (a lone predicate is its own term)."""
    if isinstance(predicate, AllOf):
        return predicate.children
    return (predicate,)


def columns_referenced(predicate: Predicate) -> set[str]:
    """Every listing column a predicate tree names."""
    if isinstance(predicate, (AllOf, AnyOf)):
        names: set[str] = set()
        for child in predicate.children:
            names |= columns_referenced(child)
        return names
    if isinstance(predicate, ColumnGreaterThan):
        return {predicate.left, predicate.right}
    if isinstance(predicate, UpcomingOpenHouse):
        return {"listing_key"}
    if isinstance(predicate, Raw):
        return set()
    return {predicate.column}
