import re
from pathlib import Path

import pytest

from blocksearch.errors import UnsupportedLanguageError
from blocksearch.extract.syntax import SyntaxNode
from blocksearch.retrieval.engine import SearchEngine

_RUST_DECL = re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(fn|struct|impl|trait|enum|mod)\s+(\w+)")
_PY_DECL = re.compile(r"^(\s*)(?:async\s+)?(def|class)\s+(\w+)")
_RUST_KINDS = {
    "fn": "function_item",
    "struct": "struct_item",
    "impl": "impl_item",
    "trait": "trait_item",
    "enum": "enum_item",
    "mod": "mod_item",
}
_PY_KINDS = {"def": "function_definition", "class": "class_definition"}


class OutlineProvider:
    """Deterministic stand-in for tree-sitter covering Rust and Python.

    Rust blocks end at the matching closing brace; Python blocks end before
    the next line indented at or left of the declaration.
    """

    def __init__(self) -> None:
        self.calls = 0

    def parse(self, source: bytes, language: str) -> SyntaxNode:
        self.calls += 1
        lines = source.decode("utf-8").splitlines()
        if language == "rust":
            spans = _rust_spans(lines)
        elif language == "python":
            spans = _python_spans(lines)
        else:
            raise UnsupportedLanguageError(language)
        return SyntaxNode(
            kind="source_file",
            start_line=1,
            end_line=max(len(lines), 1),
            children=_nest(spans),
        )


def _rust_spans(lines: list[str]) -> list[tuple[str, int, int, str]]:
    spans = []
    for index, line in enumerate(lines):
        match = _RUST_DECL.match(line)
        if match is None:
            continue
        depth = 0
        opened = False
        end = index
        for offset, text in enumerate(lines[index:]):
            depth += text.count("{") - text.count("}")
            opened = opened or "{" in text
            if opened and depth <= 0:
                end = index + offset
                break
            if not opened and text.rstrip().endswith(";"):
                end = index + offset
                break
        spans.append((_RUST_KINDS[match.group(1)], index + 1, end + 1, match.group(2)))
    return spans


def _python_spans(lines: list[str]) -> list[tuple[str, int, int, str]]:
    spans = []
    for index, line in enumerate(lines):
        match = _PY_DECL.match(line)
        if match is None:
            continue
        indent = len(match.group(1))
        end = index
        for offset in range(index + 1, len(lines)):
            text = lines[offset]
            if not text.strip():
                continue
            if len(text) - len(text.lstrip()) <= indent:
                break
            end = offset
        spans.append((_PY_KINDS[match.group(2)], index + 1, end + 1, match.group(3)))
    return spans


def _nest(spans: list[tuple[str, int, int, str]]) -> tuple[SyntaxNode, ...]:
    ordered = sorted(spans, key=lambda item: (item[1], -item[2]))
    roots: list[dict] = []
    stack: list[dict] = []
    for kind, start, end, name in ordered:
        while stack and stack[-1]["end"] < start:
            stack.pop()
        entry = {"kind": kind, "start": start, "end": end, "name": name, "children": []}
        (stack[-1]["children"] if stack else roots).append(entry)
        stack.append(entry)

    def freeze(entry: dict) -> SyntaxNode:
        return SyntaxNode(
            kind=entry["kind"],
            start_line=entry["start"],
            end_line=entry["end"],
            name=entry["name"],
            children=tuple(freeze(child) for child in entry["children"]),
        )

    return tuple(freeze(entry) for entry in roots)


RUST_SERVER = """use std::io;

pub struct Server {
    port: u16,
}

impl Server {
    pub fn handle_request(&self, req: &str) -> String {
        format!("served {}", req)
    }

    pub fn shutdown(&self) {
        println!("bye");
    }
}
"""

PYTHON_HANDLERS = """import json


def handler(event):
    return json.dumps(event)


class Session:
    def login(self, user):
        return auth(user)

    def logout(self):
        return None


def auth(user):
    return user is not None
"""


@pytest.fixture
def provider() -> OutlineProvider:
    return OutlineProvider()


@pytest.fixture
def engine(provider: OutlineProvider) -> SearchEngine:
    return SearchEngine(provider=provider)


@pytest.fixture
def code_tree(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "app").mkdir()
    (tmp_path / "src" / "server.rs").write_text(RUST_SERVER, encoding="utf-8")
    (tmp_path / "app" / "handler.py").write_text(PYTHON_HANDLERS, encoding="utf-8")
    return tmp_path
