"""Central configuration for the KB GraphRAG retrieval engine."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load .env file from project root
load_dotenv()


class Config(BaseModel):
    """All configuration for the retrieval engine.

    Paths are relative to the project root unless absolute.
    The search API location and timeouts should be overridden via
    environment or .env file.
    """

    # Graph snapshot (regenerated out-of-band by the graph builder job)
    graph_snapshot_path: Path = Field(
        default=Path(os.getenv("KGR_GRAPH_SNAPSHOT", "data/graph-data/knowledge-graph.json"))
    )

    # Document index service
    search_api_url: str = Field(default=os.getenv("KGR_SEARCH_API_URL", "http://localhost:8080"))
    search_api_timeout: float = Field(default=float(os.getenv("KGR_SEARCH_API_TIMEOUT", "10.0")))

    # Per-source budget for one fan-out branch
    source_timeout: float = Field(default=float(os.getenv("KGR_SOURCE_TIMEOUT", "5.0")))

    # Candidate list sizes per search mode
    vector_top_k: int = 100
    bm25_top_k: int = 100
    keyword_top_k: int = 50
    title_top_k: int = 20

    # Graph search used by the graph branch
    graph_branch_max_results: int = 50
    graph_branch_min_relevance: float = 0.3
    graph_context_depth: int = 2
    graph_context_max_results: int = 100

    # Fusion defaults
    max_results: int = 20
    graph_search_depth: int = 3
    vector_weight: float = 0.4
    bm25_weight: float = 0.3
    graph_weight: float = 0.2
    keyword_weight: float = 0.05
    title_weight: float = 0.05

    # "shared_visited" keeps one visited set per traversal call,
    # "best_score" re-enqueues nodes reached by a better path.
    traversal_strategy: str = Field(default=os.getenv("KGR_TRAVERSAL_STRATEGY", "shared_visited"))
    # Keep expanding through nodes excluded by a node-type filter
    # (default: prune them, so only matching nodes lead further).
    graph_expand_filtered: bool = Field(
        default=os.getenv("KGR_GRAPH_EXPAND_FILTERED", "false").lower() in ("1", "true", "yes")
    )
    # "query" attaches one query-wide context to every result,
    # "document" traverses from each result's own page node.
    graph_context_mode: str = Field(default=os.getenv("KGR_GRAPH_CONTEXT_MODE", "query"))

    def default_search_options(self):
        """Build SearchOptions populated from this configuration."""
        from kb_graphrag.query.hybrid_search import SearchOptions

        return SearchOptions(
            max_results=self.max_results,
            graph_search_depth=self.graph_search_depth,
            vector_weight=self.vector_weight,
            bm25_weight=self.bm25_weight,
            graph_weight=self.graph_weight,
            keyword_weight=self.keyword_weight,
            title_weight=self.title_weight,
            source_timeout=self.source_timeout,
            graph_context_mode=self.graph_context_mode,
        )
