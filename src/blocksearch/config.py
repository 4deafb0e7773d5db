"""Configuration models for the search engine."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MERGE_THRESHOLD = 5
BYTES_PER_TOKEN = 4


class RerankAlgorithm(str, Enum):
    BM25 = "bm25"
    TFIDF = "tfidf"
    HYBRID = "hybrid"
    HYBRID2 = "hybrid2"


class RerankConfig(BaseModel):
    """Free parameters of the lexical scorers and the neural blend."""

    algorithm: RerankAlgorithm = RerankAlgorithm.BM25
    bm25_k1: float = Field(default=1.2, gt=0.0)
    bm25_b: float = Field(default=0.75, ge=0.0, le=1.0)
    hybrid_bm25_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    hybrid_frequency_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    diversity_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    neural_weight: float = Field(default=1.0, ge=0.0, le=1.0)


class SearchLimits(BaseModel):
    """Output budgets applied, in order, to each served page."""

    max_results: int | None = Field(default=None, ge=0)
    max_bytes: int | None = Field(default=None, ge=0)
    max_tokens: int | None = Field(default=None, ge=0)
    bytes_per_token: int = Field(default=BYTES_PER_TOKEN, ge=1)


class SearchOptions(BaseModel):
    """Per-request search switches."""

    exact: bool = False
    strict: bool = False
    files_only: bool = False
    allow_tests: bool = False
    no_merge: bool = False
    exclude_filenames: bool = False
    merge_threshold: int = Field(default=DEFAULT_MERGE_THRESHOLD, ge=0)
    context_lines: int = Field(default=3, ge=0)
    rerank: RerankConfig = Field(default_factory=RerankConfig)
    limits: SearchLimits = Field(default_factory=SearchLimits)
    question: str | None = None
    session: str | None = None
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0.0)
    max_workers: int = Field(default=8, ge=1)
    dry_run: bool = False

    def fingerprint_fields(self) -> dict[str, object]:
        """Options that change the ranked sequence (budgets and session do not)."""
        return self.model_dump(
            mode="json",
            exclude={"limits", "session", "timeout_seconds", "max_workers", "dry_run"},
        )


class ServiceSettings(BaseSettings):
    """Process-level settings for the HTTP service."""

    model_config = SettingsConfigDict(env_prefix="BLOCKSEARCH_", env_file=".env", extra="ignore")

    root_path: str = "."
    session_idle_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_file_bytes: int = 1_000_000
    no_gitignore: bool = False
    ignore_patterns: list[str] = Field(default_factory=list)
    cross_encoder_model: str | None = None
