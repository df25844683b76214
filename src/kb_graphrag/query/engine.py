"""Retrieval query engine.

Entry point for the assistant backend: owns the graph index lifecycle
and exposes hybrid search, graph lookups, statistics and quality
evaluation.
"""

import logging

from kb_graphrag.config import Config
from kb_graphrag.graph.index import GraphIndexProvider
from kb_graphrag.graph.models import GraphNode
from kb_graphrag.graph.search import GraphSearchClient
from kb_graphrag.query.adapter import HttpSearchAdapter, SourceSearchAdapter
from kb_graphrag.query.hybrid_search import (
    ResultFusionEngine,
    SearchOptions,
    SearchResponse,
    SearchResult,
)
from kb_graphrag.query.quality import QualityEvaluator, QualityReport

logger = logging.getLogger(__name__)


class QueryEngine:
    """Hybrid retrieval over the knowledge graph and the document index.

    The graph snapshot is loaded lazily on first use and can be reloaded
    without disturbing queries in flight.
    """

    def __init__(
        self,
        config: Config,
        adapter: SourceSearchAdapter | None = None,
        provider: GraphIndexProvider | None = None,
    ):
        self.config = config
        self.provider = provider or GraphIndexProvider(config.graph_snapshot_path)
        self.adapter = adapter or HttpSearchAdapter(config.search_api_url, timeout=config.search_api_timeout)
        self.graph = GraphSearchClient(
            self.provider,
            traversal=config.traversal_strategy,
            expand_filtered=config.graph_expand_filtered,
        )
        self.fusion = ResultFusionEngine(self.adapter, self.graph, config)
        self.evaluator = QualityEvaluator(self.graph)

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Ranked, deduplicated results for a free-text query."""
        return self.fusion.search(query, options)

    def search_detailed(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """Like search(), plus per-source outcomes and failure flags."""
        return self.fusion.run(query, options)

    def find_related_pages(self, function_name: str) -> list[GraphNode]:
        return self.graph.find_related_pages(function_name)

    def find_related_functions(self, page_id: str) -> list[GraphNode]:
        return self.graph.find_related_functions(page_id)

    def get_graph_stats(self) -> dict:
        return self.graph.get_graph_stats()

    def evaluate_search_quality(self, query: str, results: list[SearchResult]) -> QualityReport:
        return self.evaluator.evaluate(query, results)

    def reload_graph(self) -> dict:
        """Reload the graph snapshot and return the new statistics."""
        return self.provider.reload().stats()

    def close(self):
        """Release resources."""
        self.provider.close()
