"""Search quality evaluation.

Scores a produced result set offline, for regression and quality tests:
- Relevance (mean fused score)
- Diversity (how many of the five sources contributed)
- Completeness (coverage of the pages the graph expects for the query)
"""

import logging
from dataclasses import dataclass

from kb_graphrag.graph.models import NodeType
from kb_graphrag.graph.search import GraphSearchClient, TraversalOptions
from kb_graphrag.query.hybrid_search import SOURCE_ORDER, SearchResult

logger = logging.getLogger(__name__)


@dataclass
class QualityReport:
    relevance_score: float
    diversity_score: float
    completeness_score: float
    overall_score: float

    def to_dict(self) -> dict[str, float]:
        return {
            "relevanceScore": self.relevance_score,
            "diversityScore": self.diversity_score,
            "completenessScore": self.completeness_score,
            "overallScore": self.overall_score,
        }


class QualityEvaluator:
    """Evaluates ranked result sets against the knowledge graph."""

    def __init__(
        self,
        graph_client: GraphSearchClient,
        expected_depth: int = 2,
        expected_max_results: int = 20,
        count_combined_sources: bool = False,
    ):
        self.graph_client = graph_client
        self.expected_depth = expected_depth
        self.expected_max_results = expected_max_results
        self.count_combined_sources = count_combined_sources

    def evaluate(self, query: str, results: list[SearchResult]) -> QualityReport:
        """Score a result set produced for `query`.

        Args:
            query: The query the results were produced for.
            results: Fused search results.

        Returns:
            QualityReport with the three component scores and their mean.
        """
        relevance = self.relevance_score(results)
        diversity = self.diversity_score(results)
        completeness = self.completeness_score(query, results)
        overall = (relevance + diversity + completeness) / 3

        logger.info(
            f"Quality '{query}': relevance={relevance:.3f}, diversity={diversity:.3f}, "
            f"completeness={completeness:.3f}, overall={overall:.3f}"
        )
        return QualityReport(relevance, diversity, completeness, overall)

    @staticmethod
    def relevance_score(results: list[SearchResult]) -> float:
        if not results:
            return 0.0
        return sum(result.score for result in results) / len(results)

    def diversity_score(self, results: list[SearchResult]) -> float:
        """Distinct sources in the result set, divided by the five sources.

        By default a merged "vector,bm25" result counts as two sources, so
        the score stays within [0, 1]. With count_combined_sources each
        distinct `source` string counts once instead ("vector,bm25" and
        "vector" are two entries); that count can exceed five.
        """
        if self.count_combined_sources:
            sources = {result.source for result in results}
        else:
            sources = {name for result in results for name in result.sources}
        return len(sources) / len(SOURCE_ORDER)

    def completeness_score(self, query: str, results: list[SearchResult]) -> float:
        """Share of graph-expected pages present in the results."""
        try:
            expected = self.graph_client.search_graph(
                query,
                TraversalOptions(max_depth=self.expected_depth, max_results=self.expected_max_results),
            )
        except Exception as e:
            logger.error(f"Completeness scoring failed for '{query}': {e}")
            return 0.0

        expected_ids = list(
            dict.fromkeys(e.page_id for e in expected.entities if e.type == NodeType.PAGE)
        )
        if not expected_ids:
            return 0.0

        found_ids = {result.document_id for result in results}
        found = sum(1 for page_id in expected_ids if page_id in found_ids)
        return found / len(expected_ids)
