"""Merge nearby chunks of one file into wider blocks."""

from __future__ import annotations

from collections.abc import Iterable

from blocksearch.config import DEFAULT_MERGE_THRESHOLD
from blocksearch.types import Chunk, ChunkKind, SourceFile


def merge_chunks(
    chunks: Iterable[Chunk],
    source: SourceFile,
    *,
    threshold: int = DEFAULT_MERGE_THRESHOLD,
) -> list[Chunk]:
    """Single left-to-right pass over chunks sorted by start line.

    Two chunks merge when they overlap or when the gap
    `next.start_line - current.end_line` is at most `threshold`. The merged
    span is re-sliced from `source` and matched terms are unioned; counts are
    left to the caller to refresh from the new text.
    """

    if threshold < 0:
        raise ValueError("threshold must be >= 0")

    ordered = sorted(chunks, key=lambda chunk: chunk.span)
    merged: list[Chunk] = []
    for chunk in ordered:
        if chunk.file != source.path:
            raise ValueError(f"Chunk from {chunk.file} cannot merge within {source.path}")
        if merged and chunk.start_line - merged[-1].end_line <= threshold:
            merged[-1] = _combine(merged[-1], chunk, source)
        else:
            merged.append(chunk)
    return merged


def _combine(current: Chunk, following: Chunk, source: SourceFile) -> Chunk:
    start_line = current.start_line
    end_line = max(current.end_line, following.end_line)
    if (start_line, end_line) == current.span:
        kind, symbol = current.kind, current.symbol
    elif current.kind == following.kind and current.symbol == following.symbol:
        kind, symbol = current.kind, current.symbol
    else:
        kind, symbol = ChunkKind.MERGED, None

    counts = dict(current.term_counts)
    for term, value in following.term_counts.items():
        counts[term] = counts.get(term, 0) + value
    return Chunk(
        file=current.file,
        start_line=start_line,
        end_line=end_line,
        text=source.slice_lines(start_line, end_line),
        kind=kind,
        symbol=symbol,
        matched_terms=current.matched_terms | following.matched_terms,
        term_counts=counts,
        token_count=current.token_count + following.token_count,
    )
