"""FastAPI entrypoint for search/extract/outline/trace endpoints."""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from blocksearch.agent.registry import ToolRegistry
from blocksearch.agent.tools import register_builtin_tools
from blocksearch.config import SearchOptions, ServiceSettings
from blocksearch.errors import (
    BlockSearchError,
    SearchTimeoutError,
    TargetNotFoundError,
)
from blocksearch.extract.extractor import group_symbols_by_kind
from blocksearch.extract.syntax import TreeSitterProvider
from blocksearch.extract.walker import PathWalker, confine_path
from blocksearch.obs.tracing import TraceStore
from blocksearch.retrieval.engine import SearchEngine
from blocksearch.retrieval.rerank import CrossEncoderScorer
from blocksearch.retrieval.session import SessionCache

logger = logging.getLogger(__name__)


def _create_provider() -> TreeSitterProvider | None:
    try:
        return TreeSitterProvider()
    except RuntimeError as exc:
        logger.warning(f"{exc} Falling back to whole-file chunks.")
        return None


def _create_scorer(model_name: str | None) -> CrossEncoderScorer | None:
    if not model_name:
        return None
    return CrossEncoderScorer(model_name)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    paths: list[str] = Field(default_factory=lambda: ["."])
    options: SearchOptions = Field(default_factory=SearchOptions)


class ExtractRequest(BaseModel):
    target: str = Field(min_length=1)
    context_lines: int = Field(default=3, ge=0)


app = FastAPI(title="blocksearch", version="0.1.0")

_settings = ServiceSettings()
_root = Path(_settings.root_path)
_trace_store = TraceStore()
_engine = SearchEngine(
    provider=_create_provider(),
    walker=PathWalker(
        ignore_patterns=_settings.ignore_patterns,
        no_gitignore=_settings.no_gitignore,
        allow_tests=True,
        max_file_bytes=_settings.max_file_bytes,
    ),
    sessions=SessionCache(_settings.session_idle_seconds),
    neural_scorer=_create_scorer(_settings.cross_encoder_model),
    trace_store=_trace_store,
)
_registry = ToolRegistry()
_registry.set_observer(_trace_store.record_tool)
register_builtin_tools(_registry, _engine, root=_root)


def _http_error(exc: BlockSearchError) -> HTTPException:
    if isinstance(exc, SearchTimeoutError):
        return HTTPException(status_code=504, detail=str(exc))
    if isinstance(exc, TargetNotFoundError):
        return HTTPException(
            status_code=404,
            detail={"message": str(exc), "suggestions": exc.suggestions},
        )
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "root_path": str(_root),
        "syntax_trees": _engine.provider is not None,
        "neural_configured": _engine.neural_scorer is not None,
        "active_sessions": len(_engine.sessions),
    }


@app.post("/search")
def search(request: SearchRequest) -> dict[str, Any]:
    try:
        response = _engine.search(
            request.query,
            [confine_path(_root, path) for path in request.paths],
            request.options,
        )
    except BlockSearchError as exc:
        raise _http_error(exc) from exc
    return response.to_payload(dry_run=request.options.dry_run)


@app.post("/extract")
def extract(request: ExtractRequest) -> dict[str, Any]:
    try:
        chunk = _engine.extract(request.target, root=_root, context_lines=request.context_lines)
    except BlockSearchError as exc:
        raise _http_error(exc) from exc
    return {
        "file": chunk.file,
        "start_line": chunk.start_line,
        "end_line": chunk.end_line,
        "kind": chunk.kind.value,
        "symbol": chunk.symbol,
        "text": chunk.text,
    }


@app.get("/outline")
def outline(path: str) -> dict[str, Any]:
    try:
        symbols = _engine.outline(path, root=_root)
    except BlockSearchError as exc:
        raise _http_error(exc) from exc
    return {
        "file": path,
        "symbols": {
            kind: [asdict(symbol) for symbol in items]
            for kind, items in group_symbols_by_kind(symbols).items()
        },
    }


@app.delete("/sessions/{session_id}")
def drop_session(session_id: str) -> dict[str, Any]:
    if not _engine.sessions.drop(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {"dropped": session_id}


@app.get("/tools")
def tools() -> dict[str, Any]:
    return {
        "items": [
            {"name": spec.name, "description": spec.description, "tags": spec.tags}
            for spec in _registry.specs()
        ]
    }


@app.post("/tools/{name}")
def run_tool(name: str, payload: dict[str, Any]) -> dict[str, Any]:
    try:
        output = _registry.execute(name, payload)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"name": name, "output": output}


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
