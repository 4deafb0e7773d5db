"""Search tools exposed to LLM agents, validated with Pydantic v2."""

from __future__ import annotations

from collections.abc import Callable
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from blocksearch.errors import BlockSearchError
from blocksearch.types import ToolTrace

_PREVIEW_CHARS = 320


class ToolSpec(BaseModel):
    """One callable tool: argument schema plus a handler returning text."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], str]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> str:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class ToolRegistry:
    """Holds tool specs and exports them as LangChain `StructuredTool`s.

    Search errors (bad query, missing symbol, timeout) come back as an
    `ERROR:` line so an agent can correct its next call; validation errors
    and bugs still raise.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        self._observer = observer

    def execute(self, name: str, payload: dict[str, Any]) -> str:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return self._execute_spec(spec, payload)

    def names(self) -> list[str]:
        return list(self._tools)

    def specs(self, *, tag: str | None = None) -> list[ToolSpec]:
        return [spec for spec in self._tools.values() if tag is None or tag in spec.tags]

    def as_langchain_tools(self) -> list[StructuredTool]:
        return [
            StructuredTool.from_function(
                name=spec.name,
                description=spec.description,
                args_schema=spec.args_schema,
                func=self._bind(spec),
            )
            for spec in self._tools.values()
        ]

    def _bind(self, spec: ToolSpec) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return self._execute_spec(spec, kwargs)

        return _callable

    def _execute_spec(self, spec: ToolSpec, payload: dict[str, Any]) -> str:
        start = perf_counter()
        try:
            output = spec.invoke(payload)
        except BlockSearchError as exc:
            output = f"ERROR: {type(exc).__name__}: {exc}"
            suggestions = getattr(exc, "suggestions", None)
            if suggestions:
                output += f"\nDid you mean: {', '.join(suggestions)}"
        latency_ms = (perf_counter() - start) * 1000.0

        if self._observer is not None:
            self._observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=output[:_PREVIEW_CHARS],
                    latency_ms=latency_ms,
                )
            )
        return output
