"""Structured query plan produced by the parser."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Union


class FilterKind(str, Enum):
    EXT = "ext"
    FILE = "file"
    DIR = "dir"
    TYPE = "type"
    LANG = "lang"


@dataclass(frozen=True, slots=True)
class Term:
    text: str
    is_phrase: bool = False

    def describe(self) -> str:
        return f'"{self.text}"' if self.is_phrase else self.text


@dataclass(frozen=True, slots=True)
class And:
    left: "Expression"
    right: "Expression"

    def describe(self) -> str:
        return f"({self.left.describe()} AND {self.right.describe()})"


@dataclass(frozen=True, slots=True)
class Or:
    left: "Expression"
    right: "Expression"

    def describe(self) -> str:
        return f"({self.left.describe()} OR {self.right.describe()})"


@dataclass(frozen=True, slots=True)
class Filter:
    kind: FilterKind
    pattern: str

    def describe(self) -> str:
        return f"{self.kind.value}:{self.pattern}"


Expression = Union[Term, And, Or]
Clause = Union[Term, And, Or, Filter]


def iter_terms(expression: Expression | None) -> Iterator[Term]:
    """Yield term leaves left to right."""
    if expression is None:
        return
    if isinstance(expression, Term):
        yield expression
        return
    yield from iter_terms(expression.left)
    yield from iter_terms(expression.right)


@dataclass(frozen=True, slots=True)
class QueryPlan:
    """Parsed query: one folded boolean expression plus field filters."""

    source: str
    expression: Expression | None
    filters: tuple[Filter, ...] = ()

    @property
    def clauses(self) -> tuple[Clause, ...]:
        head: tuple[Clause, ...] = (self.expression,) if self.expression is not None else ()
        return head + self.filters

    @property
    def terms(self) -> tuple[Term, ...]:
        # Duplicate terms collapse to one statistic.
        return tuple(dict.fromkeys(iter_terms(self.expression)))

    @property
    def term_texts(self) -> tuple[str, ...]:
        return tuple(term.text for term in self.terms)

    def filters_of(self, kind: FilterKind) -> tuple[Filter, ...]:
        return tuple(item for item in self.filters if item.kind == kind)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "expression": self.expression.describe() if self.expression is not None else None,
            "terms": [
                {"text": term.text, "is_phrase": term.is_phrase} for term in self.terms
            ],
            "filters": [
                {"kind": item.kind.value, "pattern": item.pattern} for item in self.filters
            ],
        }
