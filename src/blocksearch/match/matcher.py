"""Evaluate a query plan against chunks of text."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import PurePosixPath

from blocksearch.match.tokenizer import (
    TokenStream,
    count_sequence,
    tokenize,
    tokenize_term,
    tokens_match,
    word_count,
)
from blocksearch.query.plan import And, Expression, Or, QueryPlan, Term
from blocksearch.types import Chunk, SourceFile


@dataclass(frozen=True, slots=True)
class _CompiledTerm:
    term: Term
    tokens: tuple[str, ...]
    pattern: re.Pattern[str] | None

    @property
    def key(self) -> str:
        return self.term.text


class Matcher:
    """Counts term occurrences and evaluates the boolean expression.

    Fuzzy mode compares camelCase/snake_case sub-tokens with a close-prefix
    rule; exact mode looks for literal, case-sensitive substrings. With
    `include_filenames`, the file name is counted as part of every chunk.
    """

    def __init__(
        self, plan: QueryPlan, *, exact: bool = False, include_filenames: bool = False
    ) -> None:
        self.plan = plan
        self.exact = exact
        self.include_filenames = include_filenames
        self._terms = [self._compile(term) for term in plan.terms]

    def _compile(self, term: Term) -> _CompiledTerm:
        if self.exact:
            if term.is_phrase:
                source = r"\s+".join(re.escape(word) for word in term.text.split())
            else:
                source = re.escape(term.text)
            return _CompiledTerm(term=term, tokens=(), pattern=re.compile(source))

        tokens = tuple(tokenize_term(term.text))
        if tokens:
            return _CompiledTerm(term=term, tokens=tokens, pattern=None)
        # Punctuation-only terms (`->`, `::`) have no sub-tokens.
        return _CompiledTerm(
            term=term, tokens=(), pattern=re.compile(re.escape(term.text), re.IGNORECASE)
        )

    def count_terms(self, text: str) -> dict[str, int]:
        stream: TokenStream | None = None
        counts: dict[str, int] = {}
        for compiled in self._terms:
            if compiled.pattern is not None:
                counts[compiled.key] = len(compiled.pattern.findall(text))
                continue
            if stream is None:
                stream = tokenize(text)
            counts[compiled.key] = count_sequence(list(compiled.tokens), stream)
        return counts

    def token_count(self, text: str) -> int:
        return word_count(text) if self.exact else len(tokenize(text))

    def annotate(self, chunk: Chunk) -> Chunk:
        """Refresh matched terms, per-term counts and token count in place."""
        text = self._scoring_text(chunk)
        counts = self.count_terms(text)
        chunk.term_counts = {key: value for key, value in counts.items() if value > 0}
        chunk.matched_terms = set(chunk.term_counts)
        chunk.token_count = self.token_count(text)
        return chunk

    def matches(self, chunk: Chunk) -> bool:
        self.annotate(chunk)
        return evaluate(self.plan.expression, lambda term: chunk.term_counts.get(term.text, 0) > 0)

    def name_matches(self, path: str) -> bool:
        """True when the file name alone satisfies the query."""
        if not self.include_filenames:
            return False
        counts = self.count_terms(PurePosixPath(path).name)
        return evaluate(self.plan.expression, lambda term: counts.get(term.text, 0) > 0)

    def _scoring_text(self, chunk: Chunk) -> str:
        if not self.include_filenames:
            return chunk.text
        return f"{PurePosixPath(chunk.file).name}\n{chunk.text}"

    def lines_of_interest(self, source: SourceFile) -> list[int]:
        """1-based lines holding a hit for any term's leading word or token."""

        hits: list[int] = []
        for number, line in enumerate(source.lines, start=1):
            if self._line_hit(line):
                hits.append(number)
        return hits

    def _line_hit(self, line: str) -> bool:
        stream: TokenStream | None = None
        for compiled in self._terms:
            if compiled.pattern is not None:
                if self.exact and compiled.term.is_phrase:
                    words = compiled.term.text.split()
                    if words and words[0] in line:
                        return True
                elif compiled.pattern.search(line):
                    return True
                continue
            if stream is None:
                stream = tokenize(line)
            head = compiled.tokens[0]
            if any(tokens_match(head, token) for token in stream.tokens):
                return True
            if any(tokens_match(head, compound) for compound in stream.compounds):
                return True
        return False


def evaluate(expression: Expression | None, is_hit: Callable[[Term], bool]) -> bool:
    if expression is None:
        return False
    if isinstance(expression, Term):
        return is_hit(expression)
    if isinstance(expression, And):
        return evaluate(expression.left, is_hit) and evaluate(expression.right, is_hit)
    if isinstance(expression, Or):
        return evaluate(expression.left, is_hit) or evaluate(expression.right, is_hit)
    raise TypeError(f"Unknown expression node: {type(expression).__name__}")
