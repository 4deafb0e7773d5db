"""Query string parser: phrases, AND/OR operators and field filters."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from blocksearch.errors import QuerySyntaxError, UnsupportedOperatorError
from blocksearch.query.plan import And, Expression, Filter, FilterKind, Or, QueryPlan, Term

logger = logging.getLogger(__name__)

_BINARY_OPERATORS = {"AND", "OR"}
_UNSUPPORTED_OPERATORS = {"NOT"}
_FILTER_SHAPE = re.compile(r"^([A-Za-z_]+):(?!:)(.*)$", flags=re.DOTALL)
_FILTER_KINDS = {kind.value: kind for kind in FilterKind}


@dataclass(slots=True)
class _Token:
    text: str
    phrase: bool


def parse_query(query: str, *, strict: bool = False) -> QueryPlan:
    """Parse a raw query into an immutable `QueryPlan`.

    Bare terms next to each other are joined with AND. Explicit `AND`/`OR`
    fold strictly left to right, so `a OR b c` means `((a OR b) AND c)`.
    Filter hints (`ext:rs`, `dir:src`, ...) are pulled out of the term stream;
    an operator that only joins a filter is absorbed with it.
    """

    tokens = _scan(query)
    expression: Expression | None = None
    filters: list[Filter] = []
    pending_op: str | None = None
    last_kind: str | None = None
    trailing_op = False

    for token in tokens:
        if not token.phrase and token.text in _UNSUPPORTED_OPERATORS:
            raise UnsupportedOperatorError(
                f"Operator {token.text} is not supported", query=query
            )

        trailing_op = not token.phrase and token.text in _BINARY_OPERATORS
        if trailing_op:
            if last_kind == "filter":
                if expression is not None:
                    pending_op = token.text
                last_kind = "filter"
                continue
            if last_kind is None:
                raise QuerySyntaxError(
                    f"Operator {token.text} has no left operand", query=query
                )
            if last_kind == "op":
                raise QuerySyntaxError(
                    f"Operator {token.text} follows another operator", query=query
                )
            pending_op = token.text
            last_kind = "op"
            continue

        if not token.phrase:
            parsed_filter = _parse_filter(token.text, strict=strict, query=query)
            if parsed_filter is not None:
                filters.append(parsed_filter)
                last_kind = "filter"
                continue

        # `key:"a b"` with an unknown key still holds whitespace
        term = Term(text=token.text, is_phrase=token.phrase or _has_space(token.text))
        if expression is None:
            expression = term
        elif (pending_op or "AND") == "OR":
            expression = Or(expression, term)
        else:
            expression = And(expression, term)
        pending_op = None
        last_kind = "term"

    if trailing_op:
        raise QuerySyntaxError("Query ends with a dangling operator", query=query)
    if expression is None:
        raise QuerySyntaxError("Query contains no search terms", query=query)

    plan = QueryPlan(source=query, expression=expression, filters=tuple(filters))
    logger.debug(f"Parsed query {query!r} -> {plan.to_dict()}")
    return plan


def _scan(query: str) -> list[_Token]:
    tokens: list[_Token] = []
    buffer: list[str] = []
    in_quote = False
    phrase = False

    def flush() -> None:
        nonlocal phrase
        if buffer or phrase:
            text = "".join(buffer)
            if phrase and not text.strip():
                raise QuerySyntaxError("Empty phrase in query", query=query)
            tokens.append(_Token(text=text.strip() if phrase else text, phrase=phrase))
        buffer.clear()
        phrase = False

    for char in query:
        if char == '"':
            if in_quote:
                in_quote = False
                if phrase:
                    flush()
            elif buffer and buffer[-1] == ":":
                # quoted filter value: `file:"my dir/*.py"`
                in_quote = True
            else:
                flush()
                phrase = True
                in_quote = True
            continue
        if char.isspace() and not in_quote:
            flush()
            continue
        buffer.append(char)

    if in_quote:
        raise QuerySyntaxError("Unbalanced quotes in query", query=query)
    flush()
    return tokens


def _has_space(text: str) -> bool:
    return any(char.isspace() for char in text)


def _parse_filter(text: str, *, strict: bool, query: str) -> Filter | None:
    match = _FILTER_SHAPE.match(text)
    if match is None:
        return None
    key, value = match.group(1), match.group(2)
    kind = _FILTER_KINDS.get(key)
    if kind is None:
        if strict:
            raise QuerySyntaxError(f"Unknown filter key: {key}", query=query)
        return None
    if not value:
        raise QuerySyntaxError(f"Filter {key}: requires a value", query=query)
    return Filter(kind=kind, pattern=value)
