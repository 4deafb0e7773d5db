"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChunkKind(str, Enum):
    """Syntax-kind label attached to every extracted block."""

    FUNCTION = "function"
    STRUCT = "struct"
    IMPL = "impl"
    TRAIT = "trait"
    TYPE = "type"
    ENUM = "enum"
    CLASS = "class"
    FILE = "file"
    MERGED = "merged"


@dataclass(slots=True)
class SourceFile:
    """A candidate file loaded for extraction."""

    path: str
    text: str
    language: str | None = None
    lines: list[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.lines = self.text.splitlines()

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def slice_lines(self, start_line: int, end_line: int) -> str:
        """Return the text of the inclusive 1-based line range."""
        return "\n".join(self.lines[start_line - 1 : end_line])


@dataclass(slots=True)
class Chunk:
    """A contiguous code region within one file."""

    file: str
    start_line: int
    end_line: int
    text: str
    kind: ChunkKind
    symbol: str | None = None
    matched_terms: set[str] = field(default_factory=set)
    term_counts: dict[str, int] = field(default_factory=dict)
    token_count: int = 0

    @property
    def span(self) -> tuple[int, int]:
        return (self.start_line, self.end_line)

    @property
    def byte_size(self) -> int:
        return len(self.text.encode("utf-8"))


@dataclass(slots=True)
class ScoredResult:
    """A ranked chunk; ordered by score desc, then file and start line asc."""

    file: str
    chunk: Chunk
    score: float
    matched_terms: frozenset[str] = frozenset()

    @property
    def sort_key(self) -> tuple[float, str, int]:
        return (-self.score, self.file, self.chunk.start_line)

    def to_payload(self, *, include_text: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "file": self.file,
            "start_line": self.chunk.start_line,
            "end_line": self.chunk.end_line,
            "kind": self.chunk.kind.value,
            "symbol": self.chunk.symbol,
            "score": self.score,
            "matched_terms": sorted(self.matched_terms),
        }
        if include_text:
            payload["text"] = self.chunk.text
        return payload


def rank_results(results: list[ScoredResult]) -> list[ScoredResult]:
    return sorted(results, key=lambda item: item.sort_key)


@dataclass(slots=True)
class SymbolInfo:
    """A declaration listed by outline or offered as a suggestion."""

    name: str
    kind: ChunkKind
    start_line: int
    end_line: int
    signature: str


@dataclass(slots=True)
class SkippedResult:
    file: str
    start_line: int
    end_line: int
    matched_terms: frozenset[str]
    reason: str
    byte_size: int = 0


@dataclass(slots=True)
class TruncationReport:
    """Which budgets cut the page and what they dropped."""

    limits_applied: dict[str, int] = field(default_factory=dict)
    skipped: list[SkippedResult] = field(default_factory=list)
    total_bytes: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class SearchResponse:
    """Format-agnostic result structure handed to renderers."""

    results: list[ScoredResult]
    query_plan: dict[str, Any]
    elapsed_ms: float
    total_ranked: int
    truncation: TruncationReport
    session_id: str | None = None
    cursor: int = 0
    next_cursor: int = 0
    exhausted: bool = True
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def to_payload(self, *, dry_run: bool = False) -> dict[str, Any]:
        return {
            "results": [item.to_payload(include_text=not dry_run) for item in self.results],
            "query_plan": self.query_plan,
            "elapsed_ms": self.elapsed_ms,
            "total_ranked": self.total_ranked,
            "limits_applied": dict(self.truncation.limits_applied),
            "skipped": [
                {
                    "file": item.file,
                    "start_line": item.start_line,
                    "end_line": item.end_line,
                    "matched_terms": sorted(item.matched_terms),
                    "reason": item.reason,
                    "bytes": item.byte_size,
                }
                for item in self.truncation.skipped
            ],
            "session_id": self.session_id,
            "cursor": self.cursor,
            "next_cursor": self.next_cursor,
            "exhausted": self.exhausted,
            "diagnostics": self.diagnostics,
        }


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
