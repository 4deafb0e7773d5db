"""Direct extraction targets: `path`, `path:LINE`, `path:START-END`, `path#symbol`."""

from __future__ import annotations

import re
from dataclasses import dataclass

_LINE_SUFFIX = re.compile(r"^(?P<path>.+?):(?P<start>\d+)(?:-(?P<end>\d+))?$")


@dataclass(frozen=True, slots=True)
class ExtractionTarget:
    path: str
    start_line: int | None = None
    end_line: int | None = None
    symbol: str | None = None

    @property
    def is_whole_file(self) -> bool:
        return self.start_line is None and self.symbol is None

    def describe(self) -> str:
        if self.symbol is not None:
            return f"{self.path}#{self.symbol}"
        if self.start_line is None:
            return self.path
        if self.end_line is None:
            return f"{self.path}:{self.start_line}"
        return f"{self.path}:{self.start_line}-{self.end_line}"


def parse_target(spec: str) -> ExtractionTarget:
    text = spec.strip()
    if "#" in text:
        path, symbol = text.rsplit("#", 1)
        if path and symbol:
            return ExtractionTarget(path=path, symbol=symbol)

    match = _LINE_SUFFIX.match(text)
    if match is None:
        return ExtractionTarget(path=text)
    end = match.group("end")
    return ExtractionTarget(
        path=match.group("path"),
        start_line=int(match.group("start")),
        end_line=int(end) if end is not None else None,
    )
