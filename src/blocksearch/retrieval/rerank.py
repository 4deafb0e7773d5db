"""Lexical and neural scoring of merged chunks."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Protocol

from blocksearch.config import RerankAlgorithm, RerankConfig
from blocksearch.errors import NeuralRerankError
from blocksearch.types import Chunk, ScoredResult, rank_results

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CorpusStats:
    """Statistics over one search's candidate chunks, computed once."""

    total_chunks: int
    mean_length: float
    document_frequency: dict[str, int] = field(default_factory=dict)
    bm25_range: tuple[float, float] = (0.0, 0.0)
    frequency_range: tuple[int, int] = (0, 0)

    @classmethod
    def build(
        cls, chunks: Sequence[Chunk], terms: Sequence[str], config: RerankConfig
    ) -> "CorpusStats":
        total = len(chunks)
        mean_length = sum(chunk.token_count for chunk in chunks) / total if total else 0.0
        document_frequency = {
            term: sum(1 for chunk in chunks if chunk.term_counts.get(term, 0) > 0)
            for term in terms
        }
        stats = cls(
            total_chunks=total,
            mean_length=mean_length,
            document_frequency=document_frequency,
        )
        if chunks:
            bm25 = [bm25_score(chunk, terms, stats, config) for chunk in chunks]
            frequency = [raw_frequency(chunk, terms) for chunk in chunks]
            stats.bm25_range = (min(bm25), max(bm25))
            stats.frequency_range = (min(frequency), max(frequency))
        return stats


def _min_max(value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    if high == low:
        return 1.0
    return (value - low) / (high - low)


def raw_frequency(chunk: Chunk, terms: Sequence[str]) -> int:
    return sum(chunk.term_counts.get(term, 0) for term in terms)


def tfidf_score(chunk: Chunk, terms: Sequence[str], stats: CorpusStats, config: RerankConfig) -> float:
    length = max(chunk.token_count, 1)
    score = 0.0
    for term in terms:
        count = chunk.term_counts.get(term, 0)
        df = stats.document_frequency.get(term, 0)
        if count == 0 or df == 0:
            continue
        score += (count / length) * math.log(1.0 + stats.total_chunks / df)
    return score


def bm25_score(chunk: Chunk, terms: Sequence[str], stats: CorpusStats, config: RerankConfig) -> float:
    k1, b = config.bm25_k1, config.bm25_b
    mean_length = stats.mean_length or 1.0
    length_norm = k1 * (1.0 - b + b * chunk.token_count / mean_length)
    score = 0.0
    for term in terms:
        count = chunk.term_counts.get(term, 0)
        if count == 0:
            continue
        df = stats.document_frequency.get(term, 0)
        idf = math.log(1.0 + (stats.total_chunks - df + 0.5) / (df + 0.5))
        score += idf * (count * (k1 + 1.0)) / (count + length_norm)
    return score


def hybrid_score(chunk: Chunk, terms: Sequence[str], stats: CorpusStats, config: RerankConfig) -> float:
    bm25 = _min_max(bm25_score(chunk, terms, stats, config), stats.bm25_range)
    frequency = _min_max(raw_frequency(chunk, terms), stats.frequency_range)
    return config.hybrid_bm25_weight * bm25 + config.hybrid_frequency_weight * frequency


def hybrid2_score(chunk: Chunk, terms: Sequence[str], stats: CorpusStats, config: RerankConfig) -> float:
    diversity = len(chunk.matched_terms & set(terms)) / len(terms) if terms else 0.0
    weight = config.diversity_weight
    return (1.0 - weight) * hybrid_score(chunk, terms, stats, config) + weight * diversity


Scorer = Callable[[Chunk, Sequence[str], CorpusStats, RerankConfig], float]

SCORERS: dict[RerankAlgorithm, Scorer] = {
    RerankAlgorithm.TFIDF: tfidf_score,
    RerankAlgorithm.BM25: bm25_score,
    RerankAlgorithm.HYBRID: hybrid_score,
    RerankAlgorithm.HYBRID2: hybrid2_score,
}


def rerank(
    chunks: Sequence[Chunk], terms: Sequence[str], config: RerankConfig | None = None
) -> list[ScoredResult]:
    """Score every chunk (none are dropped) and return them in rank order."""

    config = config or RerankConfig()
    terms = list(dict.fromkeys(terms))
    stats = CorpusStats.build(chunks, terms, config)
    scorer = SCORERS[config.algorithm]
    results = [
        ScoredResult(
            file=chunk.file,
            chunk=chunk,
            score=scorer(chunk, terms, stats, config),
            matched_terms=frozenset(chunk.matched_terms),
        )
        for chunk in chunks
    ]
    return rank_results(results)


class NeuralScorer(Protocol):
    def score(self, question: str, texts: Sequence[str]) -> Sequence[float]:
        """Relevance of each text to the natural-language question."""


class CrossEncoderScorer:
    """Neural scorer backed by a sentence-transformers CrossEncoder."""

    def __init__(self, model_name: str = "cross-encoder/ms-marco-MiniLM-L-6-v2") -> None:
        try:
            from sentence_transformers import CrossEncoder
        except Exception as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError(
                "Neural reranking is not available. Install blocksearch[neural]."
            ) from exc

        logger.info(f"Loading reranker: {model_name}")
        self._model = CrossEncoder(model_name)
        logger.info("Reranker loaded")

    def score(self, question: str, texts: Sequence[str]) -> list[float]:
        if not texts:
            return []
        pairs = [[question, text] for text in texts]
        return [float(value) for value in self._model.predict(pairs)]


def neural_rerank(
    results: Sequence[ScoredResult],
    question: str,
    scorer: NeuralScorer,
    *,
    weight: float = 1.0,
    timeout: float | None = None,
) -> list[ScoredResult]:
    """Blend min-max normalized neural and lexical scores.

    Raises `NeuralRerankError` when the scorer fails, returns a wrong number
    of scores or does not finish within `timeout` seconds.
    """

    if not results:
        return []
    if timeout is not None and timeout <= 0:
        raise NeuralRerankError("No time left for neural reranking")

    texts = [item.chunk.text for item in results]
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="neural-rerank")
    try:
        future = executor.submit(scorer.score, question, texts)
        neural = list(future.result(timeout=timeout))
    except FutureTimeout as exc:
        raise NeuralRerankError(f"Neural scorer exceeded {timeout:.2f}s") from exc
    except NeuralRerankError:
        raise
    except Exception as exc:
        raise NeuralRerankError(f"Neural scorer failed: {exc}") from exc
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if len(neural) != len(results):
        raise NeuralRerankError(
            f"Neural scorer returned {len(neural)} scores for {len(results)} chunks"
        )

    neural_bounds = (min(neural), max(neural))
    lexical = [item.score for item in results]
    lexical_bounds = (min(lexical), max(lexical))
    blended = [
        ScoredResult(
            file=item.file,
            chunk=item.chunk,
            score=weight * _min_max(value, neural_bounds)
            + (1.0 - weight) * _min_max(item.score, lexical_bounds),
            matched_terms=item.matched_terms,
        )
        for item, value in zip(results, neural)
    ]
    if logger.isEnabledFor(logging.DEBUG):
        top_scores = ", ".join(f"{item.score:.2f}" for item in rank_results(blended)[:3])
        logger.debug(f"Neural top-3 scores: [{top_scores}]")
    return rank_results(blended)
