import time
from pathlib import Path

import pytest

from blocksearch.config import RerankAlgorithm, RerankConfig, SearchLimits, SearchOptions
from blocksearch.errors import QuerySyntaxError, SearchTimeoutError, SymbolNotFoundError, TargetNotFoundError
from blocksearch.obs.tracing import TraceStore
from blocksearch.retrieval.engine import SearchEngine
from blocksearch.types import ChunkKind, SourceFile
from conftest import OutlineProvider


def test_search_returns_declaration_blocks(engine: SearchEngine, code_tree: Path) -> None:
    response = engine.search("handler", [code_tree])

    by_symbol = {item.chunk.symbol: item for item in response.results}
    assert set(by_symbol) == {"handle_request", "handler"}
    assert by_symbol["handle_request"].chunk.kind == ChunkKind.FUNCTION
    assert by_symbol["handle_request"].file.endswith("src/server.rs")
    assert response.total_ranked == 2
    assert response.exhausted
    assert response.query_plan["terms"] == [{"text": "handler", "is_phrase": False}]


def test_filters_restrict_files(engine: SearchEngine, code_tree: Path) -> None:
    response = engine.search("handler AND ext:rs", [code_tree])

    assert [item.chunk.symbol for item in response.results] == ["handle_request"]
    assert response.diagnostics["files_considered"] == 2
    assert response.diagnostics["files_matched"] == 1


def test_nearby_blocks_merge_unless_disabled(engine: SearchEngine, code_tree: Path) -> None:
    merged = engine.search("login OR logout", [code_tree / "app"])
    separate = engine.search("login OR logout", [code_tree / "app"], SearchOptions(no_merge=True))

    assert [item.chunk.span for item in merged.results] == [(9, 13)]
    assert merged.results[0].chunk.kind == ChunkKind.MERGED
    assert merged.results[0].matched_terms == frozenset({"login", "logout"})
    assert sorted(item.chunk.span for item in separate.results) == [(9, 10), (12, 13)]


def test_files_only_mode(engine: SearchEngine, code_tree: Path) -> None:
    response = engine.search("auth", [code_tree], SearchOptions(files_only=True))

    assert len(response.results) == 1
    assert response.results[0].chunk.kind == ChunkKind.FILE
    assert response.results[0].chunk.span == (1, 17)


def test_in_memory_sources(engine: SearchEngine) -> None:
    source = SourceFile(path="lib.rs", text="fn parse_config() {\n    load();\n}\n", language="rust")

    response = engine.search('"parse config"', [source])

    assert [item.chunk.symbol for item in response.results] == ["parse_config"]


def test_whole_file_when_language_unsupported(engine: SearchEngine, tmp_path: Path) -> None:
    (tmp_path / "main.go").write_text("package main\n\nfunc serve() {}\n", encoding="utf-8")

    response = engine.search("serve", [tmp_path])

    assert len(response.results) == 1
    assert response.results[0].chunk.kind == ChunkKind.FILE


def test_test_files_skipped_unless_allowed(engine: SearchEngine, tmp_path: Path) -> None:
    (tmp_path / "tests").mkdir()
    (tmp_path / "tests" / "test_auth.py").write_text("def check():\n    auth()\n", encoding="utf-8")
    (tmp_path / "auth.py").write_text("def auth():\n    return 1\n", encoding="utf-8")

    default = engine.search("auth", [tmp_path])
    allowed = engine.search("auth", [tmp_path], SearchOptions(allow_tests=True))

    assert [Path(item.file).name for item in default.results] == ["auth.py"]
    assert sorted(Path(item.file).name for item in allowed.results) == ["auth.py", "test_auth.py"]


def test_dry_run_payload_omits_text(engine: SearchEngine, code_tree: Path) -> None:
    response = engine.search("handler", [code_tree], SearchOptions(dry_run=True))

    payload = response.to_payload(dry_run=True)
    assert payload["results"]
    assert all("text" not in item for item in payload["results"])
    assert "text" in response.to_payload()["results"][0]


@pytest.mark.parametrize("algorithm", list(RerankAlgorithm))
def test_every_reranker_runs(engine: SearchEngine, code_tree: Path, algorithm: RerankAlgorithm) -> None:
    options = SearchOptions(rerank=RerankConfig(algorithm=algorithm))

    response = engine.search("auth OR handler", [code_tree], options)

    assert response.total_ranked >= 2
    assert response.diagnostics["algorithm"] == algorithm.value


def test_truncation_report(engine: SearchEngine, code_tree: Path) -> None:
    options = SearchOptions(limits=SearchLimits(max_results=1))

    response = engine.search("handler", [code_tree], options)

    assert len(response.results) == 1
    assert not response.exhausted
    assert response.truncation.limits_applied == {"max_results": 1}
    assert len(response.truncation.skipped) == 1


def test_invalid_query_raises(engine: SearchEngine, code_tree: Path) -> None:
    with pytest.raises(QuerySyntaxError):
        engine.search("handler NOT login", [code_tree])


def test_failed_search_is_traced(provider: OutlineProvider, code_tree: Path) -> None:
    store = TraceStore()
    engine = SearchEngine(provider=provider, trace_store=store)

    with pytest.raises(QuerySyntaxError):
        engine.search("ext:rs", [code_tree])

    summary = store.summary()
    assert summary["errors"] == 1
    assert summary["timeouts"] == 0


class _SlowProvider(OutlineProvider):
    def parse(self, source: bytes, language: str):
        time.sleep(0.5)
        return super().parse(source, language)


def test_timeout_returns_nothing_and_commits_no_session(code_tree: Path) -> None:
    store = TraceStore()
    engine = SearchEngine(provider=_SlowProvider(), trace_store=store)
    options = SearchOptions(timeout_seconds=0.05, session="slow")

    with pytest.raises(SearchTimeoutError):
        engine.search("handler", [code_tree], options)

    assert engine.sessions.get("slow") is None
    assert store.summary()["timeouts"] == 1


class _ConstantScorer:
    def score(self, question: str, texts: list[str]) -> list[float]:
        return [1.0 if "json" in text else 0.0 for text in texts]


class _BrokenScorer:
    def score(self, question: str, texts: list[str]) -> list[float]:
        raise RuntimeError("no model")


def test_neural_rerank_and_fallback(provider: OutlineProvider, code_tree: Path) -> None:
    options = SearchOptions(question="which handler serializes json?")

    neural = SearchEngine(provider=provider, neural_scorer=_ConstantScorer())
    response = neural.search("handler", [code_tree], options)
    assert response.results[0].chunk.symbol == "handler"
    assert response.diagnostics["neural"] is True

    broken = SearchEngine(provider=provider, neural_scorer=_BrokenScorer())
    fallback = broken.search("handler", [code_tree], options)
    assert "neural_fallback" in fallback.diagnostics
    assert fallback.total_ranked == 2

    unconfigured = SearchEngine(provider=provider).search("handler", [code_tree], options)
    assert "neural_fallback" in unconfigured.diagnostics


def test_extract_and_outline(engine: SearchEngine, code_tree: Path) -> None:
    chunk = engine.extract("src/server.rs#shutdown", root=code_tree)
    assert chunk.span == (12, 14)
    assert chunk.file == "src/server.rs"

    line = engine.extract("app/handler.py:17", root=code_tree)
    assert line.symbol == "auth"

    symbols = engine.outline("app/handler.py", root=code_tree)
    assert [symbol.name for symbol in symbols] == ["handler", "Session", "login", "logout", "auth"]

    with pytest.raises(SymbolNotFoundError):
        engine.extract("src/server.rs#handle", root=code_tree)
    with pytest.raises(TargetNotFoundError):
        engine.extract("src/missing.rs", root=code_tree)


def test_oversized_result_does_not_stall_paging(engine: SearchEngine, code_tree: Path) -> None:
    query = "handler OR login OR auth"
    options = SearchOptions(session="big", limits=SearchLimits(max_bytes=5))

    first = engine.search(query, [code_tree], options)
    assert first.results == []
    assert first.diagnostics["budget_blocked"]["reason"] == "max_bytes"
    assert first.diagnostics["budget_blocked"]["bytes"] > 5
    assert (first.cursor, first.next_cursor) == (0, 1)

    pages = [first]
    while not pages[-1].exhausted:
        pages.append(engine.search(query, [code_tree], options))
        assert len(pages) <= first.total_ranked

    assert [page.cursor for page in pages] == list(range(first.total_ranked))
    blocked = {
        (page.diagnostics["budget_blocked"]["file"], page.diagnostics["budget_blocked"]["start_line"])
        for page in pages
    }
    assert len(blocked) == first.total_ranked


def test_blocked_page_is_flagged_without_session(engine: SearchEngine, code_tree: Path) -> None:
    response = engine.search(
        "handler", [code_tree], SearchOptions(limits=SearchLimits(max_tokens=1))
    )

    assert response.results == []
    assert response.total_ranked > 0
    assert response.diagnostics["budget_blocked"]["reason"] == "max_tokens"
    assert response.truncation.skipped[0].byte_size > 4


def test_file_name_counts_toward_matching(engine: SearchEngine, tmp_path: Path) -> None:
    (tmp_path / "session_store.py").write_text("def get(key):\n    return key\n", encoding="utf-8")
    (tmp_path / "cache.py").write_text("def get(key):\n    return key\n", encoding="utf-8")

    combined = engine.search("session AND get", [tmp_path])
    assert [Path(item.file).name for item in combined.results] == ["session_store.py"]
    assert combined.results[0].matched_terms == frozenset({"session", "get"})

    name_only = engine.search("session", [tmp_path])
    assert [Path(item.file).name for item in name_only.results] == ["session_store.py"]
    assert name_only.results[0].chunk.kind == ChunkKind.FILE

    excluded = SearchOptions(exclude_filenames=True)
    assert engine.search("session AND get", [tmp_path], excluded).results == []
    assert engine.search("session", [tmp_path], excluded).results == []


def test_file_name_boosts_ranking(engine: SearchEngine, tmp_path: Path) -> None:
    for name in ("a_util.py", "parser.py"):
        (tmp_path / name).write_text("def parse_item(x):\n    return x\n", encoding="utf-8")

    boosted = engine.search("parse", [tmp_path])
    plain = engine.search("parse", [tmp_path], SearchOptions(exclude_filenames=True))

    assert [Path(item.file).name for item in boosted.results] == ["parser.py", "a_util.py"]
    assert boosted.results[0].score > boosted.results[1].score
    assert [Path(item.file).name for item in plain.results] == ["a_util.py", "parser.py"]
    assert plain.results[0].score == plain.results[1].score
