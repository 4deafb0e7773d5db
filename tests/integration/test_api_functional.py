from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from blocksearch.agent.registry import ToolRegistry
from blocksearch.agent.tools import register_builtin_tools
from conftest import OutlineProvider


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, code_tree: Path) -> TestClient:
    from blocksearch.api import main

    monkeypatch.setattr(main._engine, "provider", OutlineProvider())
    monkeypatch.setattr(main, "_root", code_tree)
    registry = ToolRegistry()
    registry.set_observer(main._trace_store.record_tool)
    register_builtin_tools(registry, main._engine, root=code_tree)
    monkeypatch.setattr(main, "_registry", registry)
    return TestClient(main.app)


def test_api_search_extract_outline_metrics(client: TestClient, code_tree: Path) -> None:
    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["syntax_trees"] is True

    search_resp = client.post(
        "/search",
        json={"query": "handler AND ext:rs", "paths": ["."]},
    )
    assert search_resp.status_code == 200
    results = search_resp.json()["results"]
    assert [item["symbol"] for item in results] == ["handle_request"]
    assert results[0]["kind"] == "function"
    assert "text" in results[0]

    extract_resp = client.post("/extract", json={"target": "src/server.rs#shutdown"})
    assert extract_resp.status_code == 200
    assert extract_resp.json()["start_line"] == 12

    outline_resp = client.get("/outline", params={"path": "app/handler.py"})
    assert outline_resp.status_code == 200
    assert [item["name"] for item in outline_resp.json()["symbols"]["class"]] == ["Session"]

    metrics_resp = client.get("/metrics")
    assert metrics_resp.status_code == 200
    assert metrics_resp.json()["total_requests"] >= 1

    traces_resp = client.get("/traces", params={"limit": 1})
    trace_id = traces_resp.json()["items"][0]["trace_id"]
    assert client.get(f"/traces/{trace_id}").status_code == 200


def test_api_error_mapping(client: TestClient, code_tree: Path) -> None:
    bad_query = client.post("/search", json={"query": "auth NOT login", "paths": ["."]})
    assert bad_query.status_code == 400

    missing_symbol = client.post("/extract", json={"target": "app/handler.py#Login"})
    assert missing_symbol.status_code == 404
    assert missing_symbol.json()["detail"]["suggestions"] == ["login", "logout"]

    out_of_range = client.post("/extract", json={"target": "app/handler.py:400"})
    assert out_of_range.status_code == 404

    bad_options = client.post(
        "/search",
        json={"query": "auth", "paths": ["."], "options": {"merge_threshold": -1}},
    )
    assert bad_options.status_code == 422

    assert client.get("/traces/not-a-trace").status_code == 404


def test_api_session_paging_and_drop(client: TestClient, code_tree: Path) -> None:
    body = {
        "query": "auth OR handler OR shutdown",
        "paths": ["."],
        "options": {"session": "new", "limits": {"max_results": 1}, "no_merge": True},
    }
    first = client.post("/search", json=body).json()
    session_id = first["session_id"]
    assert session_id and session_id != "new"
    assert first["cursor"] == 0 and first["next_cursor"] == 1

    body["options"]["session"] = session_id
    second = client.post("/search", json=body).json()
    assert second["cursor"] == 1
    assert second["next_cursor"] == 2
    assert second["results"] != first["results"]

    assert client.delete(f"/sessions/{session_id}").status_code == 200
    assert client.delete(f"/sessions/{session_id}").status_code == 404


def test_api_tools(client: TestClient, code_tree: Path) -> None:
    listed = client.get("/tools").json()["items"]
    assert {item["name"] for item in listed} == {"search_code", "extract_code", "outline_file"}

    outline = client.post("/tools/outline_file", json={"path": "src/server.rs"})
    assert outline.status_code == 200
    assert "handle_request" in outline.json()["output"]

    assert client.post("/tools/unknown", json={}).status_code == 404
    assert client.post("/tools/outline_file", json={}).status_code == 422


@pytest.mark.parametrize("path", ["..", "../elsewhere", "/etc"])
def test_api_rejects_paths_outside_root(client: TestClient, path: str) -> None:
    search = client.post("/search", json={"query": "auth", "paths": [path]})
    assert search.status_code == 400

    assert client.get("/outline", params={"path": f"{path}/passwd"}).status_code == 400
    assert client.post("/extract", json={"target": f"{path}/passwd:1"}).status_code == 400

    tool = client.post("/tools/search_code", json={"query": "auth", "path": path})
    assert tool.json()["output"].startswith("ERROR: PathOutsideRootError")
