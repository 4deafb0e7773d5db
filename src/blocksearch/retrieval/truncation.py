"""Output budgets: result count, then bytes, then estimated tokens."""

from __future__ import annotations

import math
from collections.abc import Sequence

from blocksearch.config import SearchLimits
from blocksearch.types import ScoredResult, SkippedResult, TruncationReport


def estimate_tokens(byte_count: int, bytes_per_token: int) -> int:
    return math.ceil(byte_count / bytes_per_token)


def _skip(results: Sequence[ScoredResult], reason: str) -> list[SkippedResult]:
    return [
        SkippedResult(
            file=item.file,
            start_line=item.chunk.start_line,
            end_line=item.chunk.end_line,
            matched_terms=item.matched_terms,
            reason=reason,
            byte_size=item.chunk.byte_size,
        )
        for item in results
    ]


def truncate(
    results: Sequence[ScoredResult], limits: SearchLimits
) -> tuple[list[ScoredResult], TruncationReport]:
    """Return the served prefix of `results` and a report of what was cut.

    Each budget stops at the first result that would exceed it; results
    after that point are dropped even if they would fit.
    """

    report = TruncationReport()
    page = list(results)

    if limits.max_results is not None:
        report.limits_applied["max_results"] = limits.max_results
        if len(page) > limits.max_results:
            report.skipped.extend(_skip(page[limits.max_results :], "max_results"))
            page = page[: limits.max_results]

    if limits.max_bytes is not None:
        report.limits_applied["max_bytes"] = limits.max_bytes
        total = 0
        for index, item in enumerate(page):
            total += item.chunk.byte_size
            if total > limits.max_bytes:
                report.skipped.extend(_skip(page[index:], "max_bytes"))
                page = page[:index]
                break

    if limits.max_tokens is not None:
        report.limits_applied["max_tokens"] = limits.max_tokens
        total = 0
        for index, item in enumerate(page):
            total += item.chunk.byte_size
            if estimate_tokens(total, limits.bytes_per_token) > limits.max_tokens:
                report.skipped.extend(_skip(page[index:], "max_tokens"))
                page = page[:index]
                break

    report.total_bytes = sum(item.chunk.byte_size for item in page)
    report.total_tokens = estimate_tokens(report.total_bytes, limits.bytes_per_token)
    return page, report
