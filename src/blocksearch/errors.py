"""Error taxonomy for query parsing, extraction and search execution."""

from __future__ import annotations


class BlockSearchError(Exception):
    """Base class for every error raised by the search engine."""


class QuerySyntaxError(BlockSearchError, ValueError):
    """Raised for malformed queries and unsupported operators."""

    def __init__(self, message: str, *, query: str | None = None) -> None:
        super().__init__(message)
        self.query = query


class UnsupportedOperatorError(QuerySyntaxError):
    """Raised when a query uses an operator the grammar does not support (`NOT`)."""


class TargetNotFoundError(BlockSearchError, LookupError):
    """Base for direct-extraction misses; carries best-effort suggestions."""

    def __init__(self, message: str, *, suggestions: list[str] | None = None) -> None:
        super().__init__(message)
        self.suggestions = list(suggestions or [])


class SymbolNotFoundError(TargetNotFoundError):
    """No declaration in the file carries the requested identifier."""


class LineOutOfRangeError(TargetNotFoundError):
    """A requested line or line range lies outside the file."""


class UnsupportedLanguageError(BlockSearchError):
    """The syntax-tree provider cannot parse the given language."""

    def __init__(self, language: str | None) -> None:
        super().__init__(f"No syntax tree support for language: {language or 'unknown'}")
        self.language = language


class SearchTimeoutError(BlockSearchError, TimeoutError):
    """The search did not complete before its deadline."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Search exceeded timeout of {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class NeuralRerankError(BlockSearchError):
    """The neural scorer failed; callers fall back to lexical scores."""


class PathOutsideRootError(BlockSearchError, ValueError):
    """A requested path resolves outside the configured search root."""
