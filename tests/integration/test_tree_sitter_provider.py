import pytest

from blocksearch.errors import UnsupportedLanguageError
from blocksearch.extract.extractor import ChunkExtractor
from blocksearch.types import ChunkKind, SourceFile
from conftest import PYTHON_HANDLERS, RUST_SERVER

pytest.importorskip("tree_sitter_language_pack")

from blocksearch.extract.syntax import TreeSitterProvider  # noqa: E402


@pytest.fixture(scope="module")
def tree_sitter() -> TreeSitterProvider:
    return TreeSitterProvider()


def test_rust_declarations(tree_sitter: TreeSitterProvider) -> None:
    extractor = ChunkExtractor(tree_sitter)
    source = SourceFile(path="src/server.rs", text=RUST_SERVER, language="rust")

    chunk = extractor.extract_line(source, 9)
    assert chunk.symbol == "handle_request"
    assert chunk.kind == ChunkKind.FUNCTION
    assert chunk.span == (8, 10)

    names = {symbol.name: symbol.kind for symbol in extractor.outline(source)}
    assert names["Server"] in {ChunkKind.STRUCT, ChunkKind.IMPL}
    assert names["shutdown"] == ChunkKind.FUNCTION


def test_python_declarations(tree_sitter: TreeSitterProvider) -> None:
    extractor = ChunkExtractor(tree_sitter)
    source = SourceFile(path="app/handler.py", text=PYTHON_HANDLERS, language="python")

    assert extractor.extract_symbol(source, "Session").span == (8, 13)
    assert extractor.extract_symbol(source, "login").span == (9, 10)


def test_unknown_grammar(tree_sitter: TreeSitterProvider) -> None:
    with pytest.raises(UnsupportedLanguageError):
        tree_sitter.parse(b"x", "no-such-language")
