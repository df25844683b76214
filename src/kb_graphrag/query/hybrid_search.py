"""Combined graph traversal + vector/lexical search.

Fires five searches simultaneously (vector, bm25, graph, keyword, title),
merges them per document with configurable source weights, and attaches
graph context to the merged results.

Every branch runs with its own timeout. A branch that raises or times
out contributes nothing; it never aborts the query. When every branch
fails the response says so explicitly instead of looking like an empty
result set.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from kb_graphrag.config import Config
from kb_graphrag.errors import SourceTimeoutError, SourceUnavailableError
from kb_graphrag.graph.models import GraphContext, NodeType
from kb_graphrag.graph.search import GraphSearchClient, TraversalOptions
from kb_graphrag.query.adapter import SearchMode, SourceRecord, SourceSearchAdapter

logger = logging.getLogger(__name__)


class SearchSource(str, Enum):
    VECTOR = "vector"
    BM25 = "bm25"
    GRAPH = "graph"
    KEYWORD = "keyword"
    TITLE = "title"


# Merge order; ties in the final ranking keep this encounter order.
SOURCE_ORDER: tuple[SearchSource, ...] = (
    SearchSource.VECTOR,
    SearchSource.BM25,
    SearchSource.GRAPH,
    SearchSource.KEYWORD,
    SearchSource.TITLE,
)


class GraphContextMode(str, Enum):
    # One query-wide context copied onto every result
    QUERY = "query"
    # Context traversed from each result's own Page node
    DOCUMENT = "document"


class SearchOptions(BaseModel):
    """Per-query fusion options. Assignments are validated too."""

    model_config = ConfigDict(validate_assignment=True)

    max_results: int = Field(default=20, ge=0)
    include_graph_context: bool = True
    graph_search_depth: int = Field(default=3, ge=0)
    vector_weight: float = Field(default=0.4, ge=0)
    bm25_weight: float = Field(default=0.3, ge=0)
    graph_weight: float = Field(default=0.2, ge=0)
    keyword_weight: float = Field(default=0.05, ge=0)
    title_weight: float = Field(default=0.05, ge=0)
    source_timeout: float = Field(default=5.0, gt=0)
    # Per-source overrides of source_timeout, keyed by source name
    source_timeouts: dict[SearchSource, float] = Field(default_factory=dict)
    graph_context_mode: GraphContextMode = GraphContextMode.QUERY

    def timeout_for(self, source: SearchSource) -> float:
        return self.source_timeouts.get(source, self.source_timeout)

    def weights(self) -> dict[SearchSource, float]:
        return {
            SearchSource.VECTOR: self.vector_weight,
            SearchSource.BM25: self.bm25_weight,
            SearchSource.GRAPH: self.graph_weight,
            SearchSource.KEYWORD: self.keyword_weight,
            SearchSource.TITLE: self.title_weight,
        }


@dataclass
class ResultMetadata:
    labels: list[str] = field(default_factory=list)
    last_modified: str = ""
    space_key: str = ""


@dataclass
class SearchResult:
    """One document in a ranked result list.

    `source` holds a single source name for per-source results and a
    comma-joined, deduplicated list (e.g. "vector,bm25") after merging.
    """

    document_id: str
    title: str
    content: str
    url: str
    score: float
    source: str
    metadata: ResultMetadata = field(default_factory=ResultMetadata)
    graph_context: GraphContext | None = None

    @property
    def sources(self) -> list[str]:
        return [s for s in self.source.split(",") if s]

    @staticmethod
    def from_record(record: SourceRecord, source: SearchSource, score: float | None = None) -> "SearchResult":
        return SearchResult(
            document_id=record.id,
            title=record.title,
            content=record.content,
            url=record.url,
            score=record.score if score is None else score,
            source=source.value,
            metadata=ResultMetadata(
                labels=list(record.labels),
                last_modified=record.last_modified,
                space_key=record.space_key,
            ),
        )


class OutcomeStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class SourceOutcome:
    """What one fan-out branch produced: results, or the reason it has none."""

    source: SearchSource
    status: OutcomeStatus
    results: list[SearchResult] = field(default_factory=list)
    error: str | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK


@dataclass
class SearchResponse:
    query: str
    results: list[SearchResult]
    outcomes: dict[SearchSource, SourceOutcome]
    graph_degraded: bool = False

    @property
    def failed_sources(self) -> list[SearchSource]:
        return [source for source, outcome in self.outcomes.items() if not outcome.ok]

    @property
    def partial_failure(self) -> bool:
        return bool(self.failed_sources)

    @property
    def total_outage(self) -> bool:
        """True when no source could contribute (the graph counts as down when degraded)."""
        for source, outcome in self.outcomes.items():
            if source == SearchSource.GRAPH and self.graph_degraded:
                continue
            if outcome.ok:
                return False
        return bool(self.outcomes)


def merge_results(
    results_by_source: dict[SearchSource, list[SearchResult]],
    weights: dict[SearchSource, float],
) -> list[SearchResult]:
    """Fuse per-source result lists into one list keyed by document id.

    The fused score of a document is the sum of score * weight over the
    sources that returned it. Input results are not modified.
    """
    merged: dict[str, SearchResult] = {}

    for source in SOURCE_ORDER:
        weight = weights.get(source, 0.0)
        for result in results_by_source.get(source, []):
            existing = merged.get(result.document_id)
            if existing is None:
                merged[result.document_id] = replace(
                    result,
                    score=result.score * weight,
                    metadata=replace(result.metadata, labels=list(result.metadata.labels)),
                )
                continue
            existing.score += result.score * weight
            for name in result.sources:
                if name not in existing.sources:
                    existing.source = f"{existing.source},{name}"

    return list(merged.values())


class ResultFusionEngine:
    """Runs all sources concurrently and fuses their results.

    Args:
        adapter: Document index adapter for vector/lexical/keyword/title
            search and single-document lookup.
        graph_client: Graph search client over the shared GraphIndex.
        config: Application configuration (top-K sizes, defaults).
    """

    def __init__(
        self,
        adapter: SourceSearchAdapter,
        graph_client: GraphSearchClient,
        config: Config | None = None,
    ):
        self.adapter = adapter
        self.graph_client = graph_client
        self.config = config or Config()

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Execute a hybrid search and return the ranked results."""
        return self.run(query, options).results

    def run(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """Execute a hybrid search combining graph and index results.

        Args:
            query: Search query string.
            options: Fusion options (weights, result count, timeouts).

        Returns:
            SearchResponse with the ranked results and per-source outcomes.
        """
        options = options or self.config.default_search_options()
        graph = self.graph_client.bind()
        graph_degraded = graph.index.degraded

        outcomes = self._fan_out(query, options, graph)
        counts = ", ".join(f"{s.value}={len(o.results)}" for s, o in outcomes.items())
        logger.debug(f"Source results for '{query}': {counts}")

        merged = merge_results(
            {source: outcome.results for source, outcome in outcomes.items()},
            options.weights(),
        )

        final = sorted(merged, key=lambda r: r.score, reverse=True)[: options.max_results]
        if options.include_graph_context and final:
            self._add_graph_context(final, query, options, graph)

        response = SearchResponse(query, final, outcomes, graph_degraded=graph_degraded)

        if response.total_outage:
            logger.error(f"All search sources failed for '{query}'")
        elif response.partial_failure:
            failed = ", ".join(s.value for s in response.failed_sources)
            logger.warning(f"Search '{query}' degraded, no results from: {failed}")
        logger.info(f"Hybrid search '{query}': {len(final)} results")
        return response

    # ------------------------------------------------------------------ #
    #  Fan-out                                                            #
    # ------------------------------------------------------------------ #

    def _fan_out(
        self, query: str, options: SearchOptions, graph: GraphSearchClient
    ) -> dict[SearchSource, SourceOutcome]:
        branches = {
            SearchSource.VECTOR: lambda: self._index_search(
                query, SearchMode.VECTOR, self.config.vector_top_k, SearchSource.VECTOR
            ),
            SearchSource.BM25: lambda: self._index_search(
                query, SearchMode.LEXICAL, self.config.bm25_top_k, SearchSource.BM25
            ),
            SearchSource.GRAPH: lambda: self._graph_search(query, options.graph_search_depth, graph),
            SearchSource.KEYWORD: lambda: self._index_search(
                query, SearchMode.KEYWORD, self.config.keyword_top_k, SearchSource.KEYWORD
            ),
            SearchSource.TITLE: lambda: self._index_search(
                query, SearchMode.TITLE, self.config.title_top_k, SearchSource.TITLE
            ),
        }

        # Not a context manager: leaving the with-block would wait for hung branches.
        executor = ThreadPoolExecutor(max_workers=len(branches), thread_name_prefix="kgr-source")
        started = time.monotonic()
        try:
            futures = {source: executor.submit(branch) for source, branch in branches.items()}
            outcomes = {}
            for source, future in futures.items():
                deadline = started + options.timeout_for(source)
                outcomes[source] = self._collect(source, future, deadline, started)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return outcomes

    @staticmethod
    def _collect(source: SearchSource, future, deadline: float, started: float) -> SourceOutcome:
        try:
            results = future.result(timeout=max(0.0, deadline - time.monotonic()))
        except (FutureTimeoutError, SourceTimeoutError) as e:
            future.cancel()
            logger.error(f"{source.value} search timed out")
            return SourceOutcome(
                source, OutcomeStatus.TIMED_OUT, error=str(e) or "timed out", elapsed=time.monotonic() - started
            )
        except Exception as e:
            logger.error(f"{source.value} search failed: {e}")
            return SourceOutcome(
                source, OutcomeStatus.FAILED, error=str(e), elapsed=time.monotonic() - started
            )
        return SourceOutcome(source, OutcomeStatus.OK, results, elapsed=time.monotonic() - started)

    def _index_search(
        self, query: str, mode: SearchMode, top_k: int, source: SearchSource
    ) -> list[SearchResult]:
        records = self.adapter.search(query, top_k, mode)
        return [SearchResult.from_record(record, source) for record in records]

    def _graph_search(self, query: str, max_depth: int, graph: GraphSearchClient) -> list[SearchResult]:
        graph_result = graph.search_graph(
            query,
            TraversalOptions(
                max_depth=max_depth,
                max_results=self.config.graph_branch_max_results,
                node_types=(NodeType.PAGE, NodeType.FUNCTION),
                min_relevance_score=self.config.graph_branch_min_relevance,
            ),
        )

        results = []
        attempted = failed = 0
        for entity in graph_result.entities:
            if entity.type != NodeType.PAGE:
                continue
            attempted += 1
            try:
                record = self.adapter.get_by_id(entity.page_id)
            except Exception as e:
                failed += 1
                logger.warning(f"Lookup of graph page {entity.page_id} failed: {e}")
                continue
            if record is None:
                logger.debug(f"Graph page {entity.page_id} not found in document index")
                continue
            result = SearchResult.from_record(record, SearchSource.GRAPH, score=graph_result.relevance_score)
            result.title = entity.name
            results.append(result)

        if attempted and failed == attempted:
            raise SourceUnavailableError(f"All {attempted} graph page lookups failed")
        return results

    # ------------------------------------------------------------------ #
    #  Graph context                                                      #
    # ------------------------------------------------------------------ #

    def _add_graph_context(
        self,
        results: list[SearchResult],
        query: str,
        options: SearchOptions,
        graph: GraphSearchClient,
    ) -> None:
        try:
            graph_result = graph.search_graph(
                query,
                TraversalOptions(
                    max_depth=self.config.graph_context_depth,
                    max_results=self.config.graph_context_max_results,
                ),
            )
            query_context = GraphContext.from_graph_result(graph_result)

            for result in results:
                context = None
                if options.graph_context_mode == GraphContextMode.DOCUMENT:
                    context = graph.document_context(
                        result.document_id, max_depth=self.config.graph_context_depth
                    )
                if context is None:
                    context = GraphContext(
                        list(query_context.related_functions),
                        list(query_context.related_keywords),
                        list(query_context.relationships),
                    )
                result.graph_context = context
        except Exception as e:
            logger.error(f"Adding graph context failed: {e}")
