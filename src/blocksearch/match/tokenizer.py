"""Code-aware tokenization: word boundaries plus camelCase/snake_case splits."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field

_IDENTIFIER = re.compile(r"\w+", flags=re.UNICODE)
_SUB_TOKEN = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+|[^\W\d_]+")

MIN_PREFIX_MATCH = 4
MAX_SUFFIX_GAP = 3


@dataclass(slots=True)
class TokenStream:
    """Ordered sub-tokens of a text plus its joined identifier compounds."""

    tokens: list[str] = field(default_factory=list)
    compounds: Counter[str] = field(default_factory=Counter)

    def __len__(self) -> int:
        return len(self.tokens)


def split_identifier(word: str) -> list[str]:
    """`handleRequest` -> ['handle', 'request']; `MAX_SIZE` -> ['max', 'size']."""
    parts: list[str] = []
    for piece in word.split("_"):
        if piece:
            parts.extend(part.lower() for part in _SUB_TOKEN.findall(piece))
    return parts


def tokenize(text: str) -> TokenStream:
    stream = TokenStream()
    for word in _IDENTIFIER.findall(text):
        parts = split_identifier(word)
        stream.tokens.extend(parts)
        if len(parts) > 1:
            stream.compounds["".join(parts)] += 1
    return stream


def tokenize_term(text: str) -> list[str]:
    """Sub-tokens of one query term or phrase, in order."""
    tokens: list[str] = []
    for word in _IDENTIFIER.findall(text):
        tokens.extend(split_identifier(word))
    return tokens


def word_count(text: str) -> int:
    return len(_IDENTIFIER.findall(text))


def tokens_match(query_token: str, token: str) -> bool:
    """Equality, or a close prefix relation (`handler` ~ `handle`)."""
    if query_token == token:
        return True
    shorter, longer = sorted((query_token, token), key=len)
    return (
        len(shorter) >= MIN_PREFIX_MATCH
        and len(longer) - len(shorter) <= MAX_SUFFIX_GAP
        and longer.startswith(shorter)
    )


def count_sequence(query_tokens: list[str], stream: TokenStream) -> int:
    """Occurrences of `query_tokens` as a contiguous run in the stream.

    A single-token query also counts hits on joined compounds, so
    `handlerequest` finds `handle_request`.
    """

    if not query_tokens:
        return 0
    width = len(query_tokens)
    tokens = stream.tokens
    count = 0
    for start in range(len(tokens) - width + 1):
        if all(tokens_match(query_tokens[i], tokens[start + i]) for i in range(width)):
            count += 1
    if width == 1 and count == 0:
        count = sum(
            hits for compound, hits in stream.compounds.items()
            if tokens_match(query_tokens[0], compound)
        )
    return count
