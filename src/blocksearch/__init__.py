"""Code-aware block search package."""

from .config import RerankAlgorithm, RerankConfig, SearchLimits, SearchOptions
from .query.parser import parse_query
from .retrieval.engine import SearchEngine

__all__ = [
    "RerankAlgorithm",
    "RerankConfig",
    "SearchEngine",
    "SearchLimits",
    "SearchOptions",
    "parse_query",
]
