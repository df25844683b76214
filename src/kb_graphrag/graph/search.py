"""Graph search over the in-memory knowledge graph.

Maps free text to known graph entities (functions, keywords, system
items), then walks outward from them breadth-first with a depth bound,
scoring every hop by node type, relationship type and name similarity.

Two traversal strategies are available:
  - SHARED_VISITED: one visited set for every start node of a call; a node
    is attributed to whichever start node reaches it first.
  - BEST_SCORE: tracks the best path per node (higher score, then fewer
    hops) and re-enqueues a node when a later path beats it. Every start
    node is expanded from depth 0, even one an earlier start node reached.

A node that fails the node-type filter is pruned (not expanded) unless
expand_filtered is set, in which case the filter only limits what is
reported.
"""

import logging
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum

from kb_graphrag.graph.index import GraphIndex, GraphIndexProvider
from kb_graphrag.graph.models import (
    GraphContext,
    GraphEdge,
    GraphNode,
    GraphPath,
    GraphSearchResult,
    NodeType,
    Relationship,
)

logger = logging.getLogger(__name__)

TYPE_WEIGHTS: dict[NodeType, float] = {
    NodeType.FUNCTION: 1.0,
    NodeType.SYSTEM_ITEM: 0.8,
    NodeType.KEYWORD: 0.6,
    NodeType.PAGE: 0.9,
    NodeType.LABEL: 0.4,
}
DEFAULT_TYPE_WEIGHT = 0.5

RELATIONSHIP_WEIGHTS: dict[Relationship, float] = {
    Relationship.DESCRIBES: 1.0,
    Relationship.CONTAINS: 0.9,
    Relationship.ASSOCIATED_WITH: 0.8,
    Relationship.RELATES_TO: 0.7,
    Relationship.TAGGED_WITH: 0.6,
}
DEFAULT_RELATIONSHIP_WEIGHT = 0.5

NAME_MATCH_FACTOR = 0.3

# BEST_SCORE rank of a start node
START_RANK = (float("inf"), 0)

# Node types that can be recognized as entities in a query, in lookup order.
ENTITY_TYPES: tuple[NodeType, ...] = (NodeType.FUNCTION, NodeType.KEYWORD, NodeType.SYSTEM_ITEM)


class TraversalStrategy(str, Enum):
    SHARED_VISITED = "shared_visited"
    BEST_SCORE = "best_score"


@dataclass
class TraversalOptions:
    """Bounds and filters for one graph traversal."""

    max_depth: int = 3
    max_results: int = 50
    node_types: tuple[NodeType, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    min_relevance_score: float = 0.1
    # None uses the client's default
    expand_filtered: bool | None = None

    def __post_init__(self):
        self.node_types = tuple(NodeType(t) for t in self.node_types)
        self.relationships = tuple(Relationship(r) for r in self.relationships)


# ------------------------------------------------------------------ #
#  Scoring                                                            #
# ------------------------------------------------------------------ #


def name_match(query: str, name: str) -> float:
    """Textual similarity between a query and a node name, in [0, 1].

    1.0 for an exact (case-insensitive) match, 0.8 when the name contains
    the query, 0.6 when the query contains the name, otherwise the share
    of query words that partially match some word of the name.
    """
    query_lower = query.lower()
    name_lower = name.lower()

    if query_lower == name_lower:
        return 1.0
    if query_lower in name_lower:
        return 0.8
    if name_lower in query_lower:
        return 0.6

    query_words = query_lower.split()
    name_words = name_lower.split()
    if not query_words:
        return 0.0

    match_count = sum(
        1
        for query_word in query_words
        if any(name_word in query_word or query_word in name_word for name_word in name_words)
    )
    return match_count / len(query_words)


def type_weight(node_type: NodeType) -> float:
    return TYPE_WEIGHTS.get(node_type, DEFAULT_TYPE_WEIGHT)


def relationship_weight(relationship: Relationship) -> float:
    return RELATIONSHIP_WEIGHTS.get(relationship, DEFAULT_RELATIONSHIP_WEIGHT)


def relevance_score(query: str, node: GraphNode, edge: GraphEdge) -> float:
    """Score for reaching `node` over `edge` while searching for `query`."""
    score = (
        type_weight(node.type)
        + relationship_weight(edge.relationship)
        + NAME_MATCH_FACTOR * name_match(query, node.name)
    )
    return min(score, 1.0)


def node_relevance(query: str, node: GraphNode) -> float:
    return min(name_match(query, node.name) + type_weight(node.type), 1.0)


def overall_relevance(query: str, nodes: list[GraphNode]) -> float:
    if not nodes:
        return 0.0
    return sum(node_relevance(query, node) for node in nodes) / len(nodes)


# ------------------------------------------------------------------ #
#  Client                                                             #
# ------------------------------------------------------------------ #


class GraphSearchClient:
    """Entity extraction and bounded traversal over a GraphIndex.

    Args:
        graph: A GraphIndex, or a GraphIndexProvider whose current index is
            resolved once per call.
        traversal: How visited nodes are tracked across start nodes.
        expand_filtered: Default for TraversalOptions.expand_filtered; when
            False, nodes excluded by node_types are not expanded.
    """

    def __init__(
        self,
        graph: GraphIndex | GraphIndexProvider,
        traversal: TraversalStrategy | str = TraversalStrategy.SHARED_VISITED,
        expand_filtered: bool = False,
    ):
        self.graph = graph
        self.traversal = TraversalStrategy(traversal)
        self.expand_filtered = expand_filtered

    @property
    def index(self) -> GraphIndex:
        if isinstance(self.graph, GraphIndexProvider):
            return self.graph.get()
        return self.graph

    def bind(self) -> "GraphSearchClient":
        """A client pinned to the current index snapshot.

        Use this when several graph calls must see the same snapshot even
        if the provider reloads in between.
        """
        return GraphSearchClient(self.index, self.traversal, self.expand_filtered)

    # ------------------------------------------------------------------ #
    #  Public API                                                         #
    # ------------------------------------------------------------------ #

    def extract_query_entities(self, query: str) -> list[str]:
        """Names of known functions, keywords and system items found in a query.

        A node matches when its name is a case-insensitive substring of the
        query or contains the query.
        """
        if not query.strip():
            return []
        index = self.index
        names: list[str] = []
        for node_type in ENTITY_TYPES:
            names.extend(node.name for node in index.find_nodes_by_name(query, node_type))
        return list(dict.fromkeys(names))

    def explore_from_entity(
        self, entity: str, options: TraversalOptions | None = None
    ) -> GraphSearchResult:
        """Breadth-first search from every node whose name matches `entity`."""
        index = self.index
        start_nodes = index.find_nodes_by_name(entity) if entity.strip() else []
        return self._traverse(index, entity, start_nodes, options or TraversalOptions())

    def search_graph(self, query: str, options: TraversalOptions | None = None) -> GraphSearchResult:
        """Search the graph for a free-text query.

        Explores from every entity recognized in the query and merges the
        per-entity results.

        Args:
            query: Free-text query.
            options: Traversal bounds and filters.

        Returns:
            Merged GraphSearchResult; empty when the index is degraded or no
            entity is recognized.
        """
        options = options or TraversalOptions()
        client = self.bind()
        index = client.index
        if index.degraded or len(index) == 0:
            logger.debug(f"Graph search skipped for '{query}': graph is empty")
            return GraphSearchResult.empty(query)

        entities = client.extract_query_entities(query)
        if not entities:
            logger.debug(f"No graph entities recognized in '{query}'")
            return GraphSearchResult.empty(query)

        results = [client.explore_from_entity(entity, options) for entity in entities]
        merged = self._merge_results(results, query)
        logger.info(
            f"Graph search '{query}': {len(entities)} entities recognized, "
            f"{len(merged.entities)} nodes, {len(merged.paths)} paths"
        )
        return merged

    def find_related_pages(self, function_name: str) -> list[GraphNode]:
        """Pages related to `function_name`.

        With the default pruning only pages whose names match are found;
        with expand_filtered, pages reachable from the matched functions too.
        """
        result = self.search_graph(
            function_name,
            TraversalOptions(node_types=(NodeType.PAGE,), max_depth=2),
        )
        return [entity for entity in result.entities if entity.type == NodeType.PAGE]

    def find_related_functions(self, page_id: str) -> list[GraphNode]:
        """Functions related to a page.

        Traverses from the page's own node when `page_id` resolves to a Page
        node; otherwise searches the graph with `page_id` as query text.
        """
        index = self.index
        page = index.find_page_node(page_id)
        if page is not None:
            # The Page anchor itself fails the Function filter
            options = TraversalOptions(node_types=(NodeType.FUNCTION,), max_depth=2, expand_filtered=True)
            result = self._traverse(index, page.name, [page], options)
        else:
            options = TraversalOptions(node_types=(NodeType.FUNCTION,), max_depth=2)
            result = self.search_graph(page_id, options)
        return [entity for entity in result.entities if entity.type == NodeType.FUNCTION]

    def document_context(self, document_id: str, max_depth: int = 2) -> GraphContext | None:
        """Graph context around one document's Page node, or None if absent."""
        index = self.index
        page = index.find_page_node(document_id)
        if page is None:
            return None
        result = self._traverse(
            index, page.name, [page], TraversalOptions(max_depth=max_depth, max_results=100)
        )
        return GraphContext.from_graph_result(result)

    def get_graph_stats(self) -> dict:
        return self.index.stats()

    # ------------------------------------------------------------------ #
    #  Traversal                                                          #
    # ------------------------------------------------------------------ #

    def _traverse(
        self,
        index: GraphIndex,
        entity: str,
        start_nodes: list[GraphNode],
        options: TraversalOptions,
    ) -> GraphSearchResult:
        if not start_nodes:
            return GraphSearchResult.empty(entity)
        if options.expand_filtered is None:
            options = replace(options, expand_filtered=self.expand_filtered)

        entities: list[GraphNode] = []
        relationships: list[GraphEdge] = []
        paths: list[GraphPath] = []

        if self.traversal == TraversalStrategy.BEST_SCORE:
            self._bfs_best_score(index, entity, start_nodes, options, entities, relationships, paths)
        else:
            self._bfs_shared_visited(index, entity, start_nodes, options, entities, relationships, paths)

        entities.sort(key=lambda node: node_relevance(entity, node), reverse=True)
        paths.sort(key=lambda path: path.relevance_score, reverse=True)
        # Edges compare on (source, target, relationship)
        relationships = list(dict.fromkeys(relationships))

        return GraphSearchResult(
            entities=entities[: options.max_results],
            relationships=relationships[: options.max_results * 2],
            paths=paths[: options.max_results],
            relevance_score=overall_relevance(entity, entities),
            query=entity,
        )

    def _bfs_shared_visited(self, index, entity, start_nodes, options, entities, relationships, paths):
        visited: set[str] = set()

        for start in start_nodes:
            queue = deque([(start, 0, [start], [])])
            while queue:
                node, depth, path, path_edges = queue.popleft()
                if node.id in visited or depth > options.max_depth:
                    continue
                visited.add(node.id)

                if self._include(node, options):
                    entities.append(node)
                elif not options.expand_filtered:
                    continue
                if depth >= options.max_depth:
                    continue

                for neighbor, edge, score in self._scored_neighbors(index, entity, node, options):
                    if neighbor.id in visited:
                        continue
                    relationships.append(edge)
                    if score < options.min_relevance_score:
                        continue
                    new_path = path + [neighbor]
                    new_edges = path_edges + [edge]
                    paths.append(GraphPath(new_path, new_edges, score))
                    queue.append((neighbor, depth + 1, new_path, new_edges))

    def _bfs_best_score(self, index, entity, start_nodes, options, entities, relationships, paths):
        # Rank of the best path into each node: higher score first, then fewer hops
        best: dict[str, tuple[float, int]] = {}
        included: set[str] = set()

        for start in start_nodes:
            # Outranks any reached entry, so a start node is expanded from depth 0
            # even when an earlier start node already reached it.
            if best.get(start.id) == START_RANK:
                continue
            best[start.id] = START_RANK
            queue = deque([(start, 0, [start], [], START_RANK)])
            while queue:
                node, depth, path, path_edges, rank = queue.popleft()
                # Stale entry: a better path to this node was found after it was queued
                if depth > options.max_depth or rank < best[node.id]:
                    continue

                if self._include(node, options):
                    if node.id not in included:
                        included.add(node.id)
                        entities.append(node)
                elif not options.expand_filtered:
                    continue
                if depth >= options.max_depth:
                    continue

                on_path = {n.id for n in path}
                for neighbor, edge, score in self._scored_neighbors(index, entity, node, options):
                    if neighbor.id in on_path:
                        continue
                    relationships.append(edge)
                    candidate = (score, -(depth + 1))
                    if score < options.min_relevance_score or candidate <= best.get(neighbor.id, (-1.0, 0)):
                        continue
                    best[neighbor.id] = candidate
                    new_path = path + [neighbor]
                    new_edges = path_edges + [edge]
                    paths.append(GraphPath(new_path, new_edges, score))
                    queue.append((neighbor, depth + 1, new_path, new_edges, candidate))

    @staticmethod
    def _scored_neighbors(index: GraphIndex, entity: str, node: GraphNode, options: TraversalOptions):
        """Yield (neighbor, edge, score) for outgoing edges allowed by the filters."""
        for edge in index.outgoing_edges(node.id):
            neighbor = index.get_node(edge.target)
            if neighbor is None:
                continue
            if options.relationships and edge.relationship not in options.relationships:
                continue
            yield neighbor, edge, relevance_score(entity, neighbor, edge)

    @staticmethod
    def _include(node: GraphNode, options: TraversalOptions) -> bool:
        return not options.node_types or node.type in options.node_types

    # ------------------------------------------------------------------ #
    #  Merging                                                            #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _merge_results(results: list[GraphSearchResult], query: str) -> GraphSearchResult:
        """Union per-entity results, deduplicating nodes, edges and paths."""
        entity_map: dict[str, GraphNode] = {}
        relationship_map: dict[tuple, GraphEdge] = {}
        path_map: dict[tuple, GraphPath] = {}

        for result in results:
            for entity in result.entities:
                entity_map.setdefault(entity.id, entity)
            for relationship in result.relationships:
                relationship_map.setdefault(relationship.key, relationship)
            for path in result.paths:
                path_map.setdefault(path.key, path)

        entities = sorted(
            entity_map.values(), key=lambda node: node_relevance(query, node), reverse=True
        )
        paths = sorted(path_map.values(), key=lambda path: path.relevance_score, reverse=True)

        return GraphSearchResult(
            entities=entities,
            relationships=list(relationship_map.values()),
            paths=paths,
            relevance_score=overall_relevance(query, entities),
            query=query,
        )
