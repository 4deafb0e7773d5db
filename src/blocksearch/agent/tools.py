"""Built-in code search tools for agents."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from blocksearch.agent.registry import ToolRegistry, ToolSpec
from blocksearch.config import RerankAlgorithm, RerankConfig, SearchLimits, SearchOptions
from blocksearch.extract.extractor import group_symbols_by_kind
from blocksearch.extract.walker import confine_path
from blocksearch.retrieval.engine import SearchEngine


class SearchToolInput(BaseModel):
    query: str = Field(min_length=1)
    path: str = "."
    exact: bool = False
    reranker: RerankAlgorithm = RerankAlgorithm.BM25
    max_results: int | None = Field(default=10, ge=1, le=100)
    max_tokens: int | None = Field(default=4000, ge=1)
    session: str | None = None
    question: str | None = None


class ExtractToolInput(BaseModel):
    target: str = Field(min_length=1, description="path, path:LINE, path:START-END or path#symbol")
    context_lines: int = Field(default=3, ge=0, le=50)


class OutlineToolInput(BaseModel):
    path: str = Field(min_length=1)


def register_builtin_tools(
    registry: ToolRegistry,
    engine: SearchEngine,
    *,
    root: Path | str = ".",
) -> None:
    """Register the default tool set.

    Tools:
    - `search_code`: boolean/phrase query returning ranked code blocks.
    - `extract_code`: one symbol, line or line range from a file.
    - `outline_file`: declarations of a file grouped by kind.
    """

    base = Path(root)

    def _search(input_data: SearchToolInput) -> str:
        options = SearchOptions(
            exact=input_data.exact,
            rerank=RerankConfig(algorithm=input_data.reranker),
            limits=SearchLimits(
                max_results=input_data.max_results,
                max_tokens=input_data.max_tokens,
            ),
            session=input_data.session,
            question=input_data.question,
        )
        response = engine.search(input_data.query, [confine_path(base, input_data.path)], options)
        blocked = response.diagnostics.get("budget_blocked")
        if not response.results and blocked is None:
            return "NO_RESULTS"
        lines = []
        if blocked is not None:
            lines.append(
                f"RESULT_TOO_LARGE [{blocked['file']}:{blocked['start_line']}-{blocked['end_line']}] "
                f"bytes={blocked['bytes']} limit={blocked['reason']}"
            )
        for item in response.results:
            chunk = item.chunk
            header = f"[{item.file}:{chunk.start_line}-{chunk.end_line}] {chunk.kind.value}"
            if chunk.symbol:
                header += f" {chunk.symbol}"
            lines.append(f"{header} score={item.score:.4f}\n{chunk.text}")
        if response.session_id and not response.exhausted:
            lines.append(f"MORE_RESULTS session={response.session_id}")
        return "\n\n".join(lines)

    def _extract(input_data: ExtractToolInput) -> str:
        chunk = engine.extract(
            input_data.target, root=base, context_lines=input_data.context_lines
        )
        return f"[{chunk.file}:{chunk.start_line}-{chunk.end_line}] {chunk.kind.value}\n{chunk.text}"

    def _outline(input_data: OutlineToolInput) -> str:
        grouped = group_symbols_by_kind(engine.outline(input_data.path, root=base))
        if not grouped:
            return "NO_SYMBOLS"
        sections = []
        for kind, symbols in sorted(grouped.items()):
            entries = "\n".join(
                f"  {symbol.name} ({symbol.start_line}-{symbol.end_line}): {symbol.signature}"
                for symbol in symbols
            )
            sections.append(f"{kind}:\n{entries}")
        return "\n".join(sections)

    registry.register(
        ToolSpec(
            name="search_code",
            description="Search source code with terms, phrases, AND/OR and ext:/dir:/lang: filters.",
            args_schema=SearchToolInput,
            handler=_search,
            tags=["search"],
        )
    )
    registry.register(
        ToolSpec(
            name="extract_code",
            description="Extract a symbol, line or line range from a file.",
            args_schema=ExtractToolInput,
            handler=_extract,
            tags=["extract"],
        )
    )
    registry.register(
        ToolSpec(
            name="outline_file",
            description="List the declarations in a file grouped by kind.",
            args_schema=OutlineToolInput,
            handler=_outline,
            tags=["extract"],
        )
    )
