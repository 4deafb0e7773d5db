"""Syntax-aware chunk extraction."""

from __future__ import annotations

import logging
import os
import re
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass

from blocksearch.errors import LineOutOfRangeError, SymbolNotFoundError, UnsupportedLanguageError
from blocksearch.extract.languages import DECLARATION_KINDS, WRAPPER_KINDS
from blocksearch.extract.syntax import SyntaxTreeProvider, TreeNode, walk
from blocksearch.extract.targets import ExtractionTarget
from blocksearch.types import Chunk, ChunkKind, SourceFile, SymbolInfo

logger = logging.getLogger(__name__)

_TEST_NAME = re.compile(r"^(test_|test[A-Z0-9]|Test[A-Z0-9_])|^tests?$")
_MIN_SUGGESTION_PREFIX = 3


@dataclass(frozen=True, slots=True)
class Declaration:
    kind: ChunkKind
    start_line: int
    end_line: int
    name: str | None = None

    @property
    def span(self) -> tuple[int, int]:
        return (self.start_line, self.end_line)

    @property
    def size(self) -> int:
        return self.end_line - self.start_line

    @property
    def is_test(self) -> bool:
        return is_test_name(self.name)

    def encloses(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


def is_test_name(name: str | None) -> bool:
    return name is not None and _TEST_NAME.match(name) is not None


class ChunkExtractor:
    """Cuts files into declaration-sized chunks around lines of interest.

    Design notes:
    1. A line of interest maps to its smallest enclosing declaration
       (function, type, trait/interface, impl/class). Nested methods therefore
       win over their class.
    2. Lines outside every declaration become file-level windows of
       `context_lines` on either side; overlapping windows are coalesced.
    3. Without a syntax tree the whole file is one `file` chunk.
    4. Lines inside a test declaration are dropped unless `allow_tests`.
    """

    def __init__(
        self,
        provider: SyntaxTreeProvider | None = None,
        *,
        context_lines: int = 3,
        allow_tests: bool = False,
    ) -> None:
        if context_lines < 0:
            raise ValueError("context_lines must be >= 0")
        self.provider = provider
        self.context_lines = context_lines
        self.allow_tests = allow_tests

    def parse(self, source: SourceFile) -> TreeNode | None:
        if self.provider is None or source.language is None:
            return None
        try:
            return self.provider.parse(source.text.encode("utf-8"), source.language)
        except UnsupportedLanguageError as exc:
            logger.info(f"{source.path}: {exc}; using whole-file chunk")
            return None

    def declarations(self, source: SourceFile) -> list[Declaration]:
        tree = self.parse(source)
        return collect_declarations(tree) if tree is not None else []

    def extract(
        self,
        source: SourceFile,
        lines_of_interest: Iterable[int],
        *,
        files_only: bool = False,
    ) -> list[Chunk]:
        """Return chunks covering `lines_of_interest`, ordered by start line."""

        if files_only:
            return [self.whole_file(source)]
        lines = sorted({line for line in lines_of_interest if 1 <= line <= source.line_count})
        if not lines:
            return []

        tree = self.parse(source)
        if tree is None:
            return [self.whole_file(source)]

        declarations = collect_declarations(tree)
        tests = [item for item in declarations if item.is_test]
        spans: dict[tuple[int, int], Declaration] = {}
        loose_lines: list[int] = []

        for line in lines:
            if not self.allow_tests and any(item.encloses(line) for item in tests):
                continue
            owner = smallest_enclosing(declarations, line)
            if owner is None:
                loose_lines.append(line)
            else:
                spans.setdefault((owner.start_line, owner.end_line), owner)

        chunks = [self._declaration_chunk(source, item) for item in spans.values()]
        chunks.extend(self._windows(source, loose_lines))
        chunks.sort(key=lambda chunk: chunk.span)
        return chunks

    def whole_file(self, source: SourceFile) -> Chunk:
        return Chunk(
            file=source.path,
            start_line=1,
            end_line=max(source.line_count, 1),
            text=source.text,
            kind=ChunkKind.FILE,
        )

    def extract_target(self, source: SourceFile, target: ExtractionTarget) -> Chunk:
        if target.symbol is not None:
            return self.extract_symbol(source, target.symbol)
        if target.start_line is None:
            return self.whole_file(source)
        if target.end_line is None:
            return self.extract_line(source, target.start_line)
        return self.extract_range(source, target.start_line, target.end_line)

    def extract_symbol(self, source: SourceFile, symbol: str) -> Chunk:
        declarations = self.declarations(source)
        for item in declarations:
            if item.name == symbol:
                return self._declaration_chunk(source, item)

        names = sorted({item.name for item in declarations if item.name})
        raise SymbolNotFoundError(
            f"Symbol {symbol!r} not found in {source.path}",
            suggestions=suggest_symbols(symbol, names),
        )

    def extract_line(self, source: SourceFile, line: int) -> Chunk:
        self._check_line(source, line)
        owner = smallest_enclosing(self.declarations(source), line)
        if owner is not None:
            return self._declaration_chunk(source, owner)
        return self._window(source, line, line)

    def extract_range(self, source: SourceFile, start_line: int, end_line: int) -> Chunk:
        self._check_line(source, start_line)
        if end_line < start_line:
            raise LineOutOfRangeError(
                f"Range {start_line}-{end_line} ends before it starts",
                suggestions=[f"{start_line}-{source.line_count}"],
            )
        end_line = min(end_line, source.line_count)

        declarations = self.declarations(source)
        owners = {
            owner
            for owner in (
                smallest_enclosing(declarations, line) for line in range(start_line, end_line + 1)
            )
            if owner is not None
        }
        if not owners:
            return self._slice(source, start_line, end_line, ChunkKind.FILE)

        start = min(start_line, *(item.start_line for item in owners))
        end = max(end_line, *(item.end_line for item in owners))
        if len(owners) == 1:
            (owner,) = owners
            if owner.span == (start, end):
                return self._declaration_chunk(source, owner)
            return self._slice(source, start, end, owner.kind, owner.name)
        return self._slice(source, start, end, ChunkKind.MERGED)

    def outline(self, source: SourceFile) -> list[SymbolInfo]:
        symbols: list[SymbolInfo] = []
        for item in self.declarations(source):
            if item.is_test and not self.allow_tests:
                continue
            signature = source.lines[item.start_line - 1].strip() if source.lines else ""
            symbols.append(
                SymbolInfo(
                    name=item.name or "<anonymous>",
                    kind=item.kind,
                    start_line=item.start_line,
                    end_line=item.end_line,
                    signature=signature.rstrip("{:").rstrip(),
                )
            )
        return symbols

    def _check_line(self, source: SourceFile, line: int) -> None:
        if not 1 <= line <= source.line_count:
            raise LineOutOfRangeError(
                f"Line {line} is outside {source.path} (valid range 1-{source.line_count})",
                suggestions=[f"1-{source.line_count}"] if source.line_count else [],
            )

    def _declaration_chunk(self, source: SourceFile, item: Declaration) -> Chunk:
        return self._slice(source, item.start_line, item.end_line, item.kind, item.name)

    def _windows(self, source: SourceFile, lines: list[int]) -> list[Chunk]:
        windows: list[list[int]] = []
        for line in lines:
            start = max(1, line - self.context_lines)
            end = min(source.line_count, line + self.context_lines)
            if windows and start <= windows[-1][1] + 1:
                windows[-1][1] = max(windows[-1][1], end)
            else:
                windows.append([start, end])
        return [self._slice(source, start, end, ChunkKind.FILE) for start, end in windows]

    def _window(self, source: SourceFile, first: int, last: int) -> Chunk:
        start = max(1, first - self.context_lines)
        end = min(source.line_count, last + self.context_lines)
        return self._slice(source, start, end, ChunkKind.FILE)

    @staticmethod
    def _slice(
        source: SourceFile,
        start_line: int,
        end_line: int,
        kind: ChunkKind,
        symbol: str | None = None,
    ) -> Chunk:
        return Chunk(
            file=source.path,
            start_line=start_line,
            end_line=end_line,
            text=source.slice_lines(start_line, end_line),
            kind=kind,
            symbol=symbol,
        )


def collect_declarations(tree: TreeNode) -> list[Declaration]:
    """Flatten the tree into declarations; wrappers take the wrapped kind and name."""

    declarations: list[Declaration] = []
    wrapped: set[int] = set()
    for node in walk(tree):
        if id(node) in wrapped:
            continue
        if node.kind in WRAPPER_KINDS:
            inner = next(
                (child for child in node.children if child.kind in DECLARATION_KINDS), None
            )
            if inner is None:
                continue
            wrapped.add(id(inner))
            declarations.append(
                Declaration(
                    kind=DECLARATION_KINDS[inner.kind],
                    start_line=node.start_line,
                    end_line=node.end_line,
                    name=inner.name or node.name,
                )
            )
            continue
        kind = DECLARATION_KINDS.get(node.kind)
        if kind is not None:
            declarations.append(
                Declaration(
                    kind=kind,
                    start_line=node.start_line,
                    end_line=node.end_line,
                    name=node.name,
                )
            )
    declarations.sort(key=lambda item: (item.start_line, -item.end_line))
    return declarations


def smallest_enclosing(declarations: Iterable[Declaration], line: int) -> Declaration | None:
    best: Declaration | None = None
    for item in declarations:
        if item.encloses(line) and (best is None or item.size < best.size):
            best = item
    return best


def suggest_symbols(symbol: str, names: Iterable[str]) -> list[str]:
    wanted = symbol.lower()
    suggestions = []
    for name in names:
        shared = len(os.path.commonprefix([wanted, name.lower()]))
        if shared >= min(_MIN_SUGGESTION_PREFIX, len(wanted)):
            suggestions.append(name)
    return suggestions


def group_symbols_by_kind(symbols: Iterable[SymbolInfo]) -> dict[str, list[SymbolInfo]]:
    grouped: dict[str, list[SymbolInfo]] = defaultdict(list)
    for symbol in symbols:
        grouped[symbol.kind.value].append(symbol)
    return dict(grouped)
