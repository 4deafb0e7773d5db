"""Syntax-tree capability consumed by the chunk extractor.

The extractor depends only on the narrow `TreeNode` shape (kind, line/byte
span, optional identifier, children). Parser backends plug in behind
`SyntaxTreeProvider`; the bundled backend wraps `tree_sitter_language_pack`
and snapshots its named nodes into immutable `SyntaxNode`s.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from blocksearch.errors import UnsupportedLanguageError
from blocksearch.extract.languages import DECLARATION_KINDS, GRAMMAR_NAMES, WRAPPER_KINDS

logger = logging.getLogger(__name__)


class TreeNode(Protocol):
    """Read-only node contract: 1-based inclusive lines, byte offsets, children."""

    @property
    def kind(self) -> str: ...

    @property
    def start_line(self) -> int: ...

    @property
    def end_line(self) -> int: ...

    @property
    def start_byte(self) -> int: ...

    @property
    def end_byte(self) -> int: ...

    @property
    def name(self) -> str | None: ...

    @property
    def children(self) -> Iterable["TreeNode"]: ...


class SyntaxTreeProvider(Protocol):
    """Builds a tree for one file or raises `UnsupportedLanguageError`."""

    def parse(self, source: bytes, language: str) -> TreeNode:
        """Parse `source` written in `language`."""


@dataclass(frozen=True, slots=True)
class SyntaxNode:
    kind: str
    start_line: int
    end_line: int
    start_byte: int = 0
    end_byte: int = 0
    name: str | None = None
    children: tuple["SyntaxNode", ...] = ()


def walk(node: TreeNode) -> Iterable[TreeNode]:
    """Pre-order traversal without recursion."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(list(current.children)))


class TreeSitterProvider:
    """tree-sitter backend via `tree_sitter_language_pack`.

    Parsers are not shared across threads; each worker thread lazily builds
    its own parser per language.
    """

    def __init__(self) -> None:
        try:
            from tree_sitter_language_pack import get_parser
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "tree-sitter grammars are not available. Install tree-sitter-language-pack."
            ) from exc

        self._get_parser = get_parser
        self._local = threading.local()

    def parse(self, source: bytes, language: str) -> SyntaxNode:
        parser = self._parser_for(language)
        tree = parser.parse(source)
        return _snapshot(tree.root_node, source)

    def _parser_for(self, language: str) -> Any:
        cache: dict[str, Any] = getattr(self._local, "parsers", None) or {}
        self._local.parsers = cache
        parser = cache.get(language)
        if parser is None:
            grammar = GRAMMAR_NAMES.get(language, language)
            try:
                parser = self._get_parser(grammar)
            except Exception as exc:  # grammar lookup errors differ across releases
                raise UnsupportedLanguageError(language) from exc
            cache[language] = parser
        return parser


def _snapshot(root: Any, source: bytes) -> SyntaxNode:
    def build(node: Any) -> SyntaxNode:
        is_declaration = node.type in DECLARATION_KINDS or node.type in WRAPPER_KINDS
        return SyntaxNode(
            kind=node.type,
            start_line=node.start_point[0] + 1,
            end_line=node.end_point[0] + 1,
            start_byte=node.start_byte,
            end_byte=node.end_byte,
            name=_node_name(node, source) if is_declaration else None,
            children=tuple(build(child) for child in node.named_children),
        )

    return build(root)


def _node_name(node: Any, source: bytes) -> str | None:
    candidates = [node]
    # Go `type_declaration` keeps its identifier on the nested `type_spec`.
    candidates.extend(node.named_children[:2])
    for candidate in candidates:
        for field_name in ("name", "type"):
            child = candidate.child_by_field_name(field_name)
            if child is None or child.start_point[0] != child.end_point[0]:
                continue
            text = source[child.start_byte : child.end_byte].decode("utf-8", errors="replace")
            return text.split("<", 1)[0].strip() or None
    return None
