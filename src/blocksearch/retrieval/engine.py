"""Search orchestration: filter, extract, match, merge, rank, page."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

from blocksearch.config import SearchOptions
from blocksearch.errors import (
    BlockSearchError,
    NeuralRerankError,
    SearchTimeoutError,
    TargetNotFoundError,
)
from blocksearch.extract.extractor import ChunkExtractor
from blocksearch.extract.syntax import SyntaxTreeProvider
from blocksearch.extract.targets import ExtractionTarget, parse_target
from blocksearch.extract.walker import (
    FileWalker,
    PathWalker,
    confine_path,
    is_test_path,
    load_source,
)
from blocksearch.match.filters import file_passes
from blocksearch.match.matcher import Matcher
from blocksearch.obs.tracing import Timer, TraceStore
from blocksearch.query.parser import parse_query
from blocksearch.query.plan import QueryPlan
from blocksearch.retrieval.merger import merge_chunks
from blocksearch.retrieval.rerank import NeuralScorer, neural_rerank, rerank
from blocksearch.retrieval.session import (
    NEW_SESSION,
    SessionCache,
    SessionState,
    compute_fingerprint,
    new_session_id,
)
from blocksearch.retrieval.truncation import truncate
from blocksearch.types import (
    Chunk,
    ScoredResult,
    SearchResponse,
    SourceFile,
    SymbolInfo,
    TruncationReport,
)

logger = logging.getLogger(__name__)

Candidate = Union[str, Path, SourceFile]

_SIZE_BUDGETS = frozenset({"max_bytes", "max_tokens"})


@dataclass(slots=True)
class _FileJob:
    display: str
    path: Path | None = None
    source: SourceFile | None = None


@dataclass(slots=True)
class _FileScan:
    source: SourceFile
    chunks: list[Chunk]


@dataclass(slots=True)
class _Ranking:
    results: list[ScoredResult]
    diagnostics: dict[str, Any]


class SearchEngine:
    """Runs queries over candidate files and serves ranked, budgeted pages.

    Per-file work (filters, extraction, matching) fans out over a thread
    pool; merging and ranking run on the calling thread once every file is
    done. The whole request is bounded by `options.timeout_seconds`.
    """

    def __init__(
        self,
        *,
        provider: SyntaxTreeProvider | None = None,
        walker: FileWalker | None = None,
        sessions: SessionCache | None = None,
        neural_scorer: NeuralScorer | None = None,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.provider = provider
        self.walker = walker or PathWalker(allow_tests=True)
        self.sessions = sessions or SessionCache()
        self.neural_scorer = neural_scorer
        self.trace_store = trace_store

    def search(
        self,
        query: str,
        candidates: Iterable[Candidate],
        options: SearchOptions | None = None,
    ) -> SearchResponse:
        options = options or SearchOptions()
        deadline = time.monotonic() + options.timeout_seconds
        timer = Timer()
        session_id: str | None = None
        try:
            with timer:
                plan = parse_query(query, strict=options.strict)
                jobs = self._resolve(candidates, options)
                response = self._serve(plan, jobs, options, deadline)
                session_id = response.session_id
        except SearchTimeoutError as exc:
            logger.warning(f"Search {query!r} timed out after {options.timeout_seconds:g}s")
            self._trace(query, None, timer.elapsed_ms, session_id, timed_out=True, error=str(exc))
            raise
        except BlockSearchError as exc:
            self._trace(query, None, timer.elapsed_ms, session_id, error=str(exc))
            raise
        response.elapsed_ms = timer.elapsed_ms
        self._trace(query, response, timer.elapsed_ms, response.session_id)
        logger.info(
            f"Search {query!r}: {len(response.results)}/{response.total_ranked} results "
            f"in {timer.elapsed_ms:.1f}ms"
        )
        return response

    def extract(
        self,
        target: str | ExtractionTarget,
        *,
        root: Path | None = None,
        context_lines: int = 3,
    ) -> Chunk:
        """Extract one symbol, line, range or whole file without a query."""

        if isinstance(target, str):
            target = parse_target(target)
        source = self._load_target(target.path, root)
        extractor = ChunkExtractor(self.provider, context_lines=context_lines, allow_tests=True)
        return extractor.extract_target(source, target)

    def outline(
        self, path: str, *, root: Path | None = None, allow_tests: bool = True
    ) -> list[SymbolInfo]:
        source = self._load_target(path, root)
        return ChunkExtractor(self.provider, allow_tests=allow_tests).outline(source)

    def _load_target(self, path: str, root: Path | None) -> SourceFile:
        location = confine_path(root, path) if root is not None else Path(path)
        if not location.is_file():
            raise TargetNotFoundError(f"File not found: {path}")
        source = load_source(location, display_path=path)
        if source is None:
            raise TargetNotFoundError(f"File is not readable text: {path}")
        return source

    def _resolve(self, candidates: Iterable[Candidate], options: SearchOptions) -> list[_FileJob]:
        jobs: dict[str, _FileJob] = {}
        for candidate in candidates:
            if isinstance(candidate, SourceFile):
                jobs.setdefault(candidate.path, _FileJob(display=candidate.path, source=candidate))
                continue
            location = Path(candidate)
            if location.is_dir():
                for path in self.walker.walk(location):
                    if not options.allow_tests and is_test_path(path.relative_to(location)):
                        continue
                    display = path.as_posix()
                    jobs.setdefault(display, _FileJob(display=display, path=path))
            elif location.is_file():
                display = location.as_posix()
                jobs.setdefault(display, _FileJob(display=display, path=location))
            else:
                logger.warning(f"Skipping missing path: {candidate}")
        return list(jobs.values())

    def _serve(
        self,
        plan: QueryPlan,
        jobs: list[_FileJob],
        options: SearchOptions,
        deadline: float,
    ) -> SearchResponse:
        if options.session is None:
            ranking = self._rank(plan, jobs, options, deadline)
            page, report = truncate(ranking.results, options.limits)
            _note_blocked(page, report, ranking.diagnostics)
            return SearchResponse(
                results=page,
                query_plan=plan.to_dict(),
                elapsed_ms=0.0,
                total_ranked=len(ranking.results),
                truncation=report,
                next_cursor=len(page),
                exhausted=len(page) == len(ranking.results),
                diagnostics=ranking.diagnostics,
            )

        session_id = new_session_id() if options.session == NEW_SESSION else options.session
        fingerprint = compute_fingerprint(plan.source, options, [job.display for job in jobs])
        with self.sessions.lease(session_id) as lease:
            state = lease.state
            diagnostics: dict[str, Any] = {"session_reused": True}
            if state is None or state.fingerprint != fingerprint:
                if state is not None:
                    logger.info(f"Session {session_id}: query changed, resetting cursor")
                ranking = self._rank(plan, jobs, options, deadline)
                state = SessionState(
                    session_id=session_id,
                    fingerprint=fingerprint,
                    results=tuple(ranking.results),
                    query_plan=plan.to_dict(),
                )
                diagnostics = {**ranking.diagnostics, "session_reused": False}
                lease.commit(state)

            cursor = state.cursor
            page, report = truncate(state.remaining(), options.limits)
            state.cursor = cursor + len(page)
            if _note_blocked(page, report, diagnostics):
                # the head result can never fit these limits; step over it
                state.cursor += 1
            return SearchResponse(
                results=page,
                query_plan=state.query_plan,
                elapsed_ms=0.0,
                total_ranked=len(state.results),
                truncation=report,
                session_id=session_id,
                cursor=cursor,
                next_cursor=state.cursor,
                exhausted=state.exhausted,
                diagnostics=diagnostics,
            )

    def _rank(
        self,
        plan: QueryPlan,
        jobs: list[_FileJob],
        options: SearchOptions,
        deadline: float,
    ) -> _Ranking:
        matcher = Matcher(
            plan, exact=options.exact, include_filenames=not options.exclude_filenames
        )
        extractor = ChunkExtractor(
            self.provider,
            context_lines=options.context_lines,
            allow_tests=options.allow_tests,
        )
        stage_ms: dict[str, float] = {}

        with Timer() as scan_timer:
            scans = self._scan_all(plan, jobs, matcher, extractor, options, deadline)
        stage_ms["scan"] = scan_timer.elapsed_ms

        with Timer() as merge_timer:
            chunks: list[Chunk] = []
            for scan in scans:
                file_chunks = scan.chunks
                if not options.no_merge:
                    file_chunks = merge_chunks(
                        file_chunks, scan.source, threshold=options.merge_threshold
                    )
                chunks.extend(matcher.annotate(chunk) for chunk in file_chunks)
        stage_ms["merge"] = merge_timer.elapsed_ms
        self._check_deadline(deadline, options)

        with Timer() as rank_timer:
            results = rerank(chunks, plan.term_texts, options.rerank)
        stage_ms["rerank"] = rank_timer.elapsed_ms
        self._check_deadline(deadline, options)

        diagnostics: dict[str, Any] = {
            "files_considered": len(jobs),
            "files_matched": len(scans),
            "chunks_ranked": len(chunks),
            "algorithm": options.rerank.algorithm.value,
            "stage_ms": stage_ms,
        }
        if options.question:
            results = self._apply_neural(results, options, deadline, diagnostics)
            self._check_deadline(deadline, options)
        return _Ranking(results=results, diagnostics=diagnostics)

    def _scan_all(
        self,
        plan: QueryPlan,
        jobs: list[_FileJob],
        matcher: Matcher,
        extractor: ChunkExtractor,
        options: SearchOptions,
        deadline: float,
    ) -> list[_FileScan]:
        if not jobs:
            return []
        executor = ThreadPoolExecutor(
            max_workers=min(options.max_workers, len(jobs)),
            thread_name_prefix="blocksearch",
        )
        try:
            futures = [
                executor.submit(_scan_file, job, plan, matcher, extractor, options) for job in jobs
            ]
            _, pending = wait(futures, timeout=_remaining(deadline))
            if pending:
                raise SearchTimeoutError(options.timeout_seconds)
            scans = [future.result() for future in futures]
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return [scan for scan in scans if scan is not None and scan.chunks]

    def _apply_neural(
        self,
        results: list[ScoredResult],
        options: SearchOptions,
        deadline: float,
        diagnostics: dict[str, Any],
    ) -> list[ScoredResult]:
        if self.neural_scorer is None:
            diagnostics["neural_fallback"] = "no neural scorer configured"
            return results
        try:
            reranked = neural_rerank(
                results,
                options.question or "",
                self.neural_scorer,
                weight=options.rerank.neural_weight,
                timeout=_remaining(deadline),
            )
        except NeuralRerankError as exc:
            logger.warning(f"Neural rerank failed, using lexical scores: {exc}")
            diagnostics["neural_fallback"] = str(exc)
            return results
        diagnostics["neural"] = True
        return reranked

    @staticmethod
    def _check_deadline(deadline: float, options: SearchOptions) -> None:
        if time.monotonic() > deadline:
            raise SearchTimeoutError(options.timeout_seconds)

    def _trace(
        self,
        query: str,
        response: SearchResponse | None,
        latency_ms: float,
        session_id: str | None,
        *,
        timed_out: bool = False,
        error: str | None = None,
    ) -> None:
        if self.trace_store is None:
            return
        diagnostics = response.diagnostics if response is not None else {}
        self.trace_store.create_record(
            query=query,
            result_count=len(response.results) if response is not None else 0,
            total_ranked=response.total_ranked if response is not None else 0,
            latency_ms=latency_ms,
            session_id=session_id,
            timed_out=timed_out,
            neural_fallback="neural_fallback" in diagnostics,
            error=error,
            stage_ms=diagnostics.get("stage_ms"),
        )


def _remaining(deadline: float) -> float:
    return max(0.0, deadline - time.monotonic())


def _note_blocked(
    page: list[ScoredResult], report: TruncationReport, diagnostics: dict[str, Any]
) -> bool:
    """Flag a page left empty because its first result alone exceeds a byte/token budget."""
    if page:
        return False
    # max_results entries come first; size budgets then cut from the head
    head = next((item for item in report.skipped if item.reason in _SIZE_BUDGETS), None)
    if head is None:
        return False
    diagnostics["budget_blocked"] = {
        "file": head.file,
        "start_line": head.start_line,
        "end_line": head.end_line,
        "bytes": head.byte_size,
        "reason": head.reason,
    }
    logger.info(f"{head.file}:{head.start_line}-{head.end_line} exceeds {head.reason}")
    return True


def _scan_file(
    job: _FileJob,
    plan: QueryPlan,
    matcher: Matcher,
    extractor: ChunkExtractor,
    options: SearchOptions,
) -> _FileScan | None:
    if not file_passes(plan, job.display):
        return None
    source = job.source
    if source is None and job.path is not None:
        source = load_source(job.path, display_path=job.display)
    if source is None:
        return None

    if options.files_only:
        chunks = extractor.extract(source, (), files_only=True)
    else:
        lines = matcher.lines_of_interest(source)
        if lines:
            chunks = extractor.extract(source, lines)
        elif matcher.name_matches(source.path):
            chunks = [extractor.whole_file(source)]
        else:
            return None
    matched = [chunk for chunk in chunks if matcher.matches(chunk)]
    return _FileScan(source=source, chunks=matched)
