"""Knowledge graph data model.

Node types and relationships are closed enums; anything outside them is
rejected when a snapshot is loaded (see graph/validation.py).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class NodeType(str, Enum):
    FUNCTION = "Function"
    SYSTEM_ITEM = "SystemItem"
    KEYWORD = "Keyword"
    PAGE = "Page"
    LABEL = "Label"


class Relationship(str, Enum):
    DESCRIBES = "DESCRIBES"
    CONTAINS = "CONTAINS"
    RELATES_TO = "RELATES_TO"
    ASSOCIATED_WITH = "ASSOCIATED_WITH"
    TAGGED_WITH = "TAGGED_WITH"


@dataclass(frozen=True)
class GraphNode:
    """A node of the knowledge graph. Never mutated after load."""

    id: str
    type: NodeType
    name: str
    properties: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def page_id(self) -> str:
        """Source document id (Page nodes carry it in properties.pageId)."""
        page_id = self.properties.get("pageId")
        return str(page_id) if page_id not in (None, "") else self.id

    @staticmethod
    def from_dict(data: dict) -> "GraphNode":
        """Build a node from its snapshot representation.

        Raises:
            ValueError: If the node type is not a known NodeType.
        """
        return GraphNode(
            id=str(data["id"]),
            type=NodeType(data["type"]),
            name=str(data["name"]),
            properties=dict(data.get("properties") or {}),
        )


@dataclass(frozen=True)
class GraphEdge:
    """A directed, typed edge between two nodes."""

    source: str
    target: str
    relationship: Relationship
    properties: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> tuple[str, str, Relationship]:
        return (self.source, self.target, self.relationship)

    @staticmethod
    def from_dict(data: dict) -> "GraphEdge":
        """Build an edge from its snapshot representation.

        Raises:
            ValueError: If the relationship is not a known Relationship.
        """
        return GraphEdge(
            source=str(data["source"]),
            target=str(data["target"]),
            relationship=Relationship(data["relationship"]),
            properties=dict(data.get("properties") or {}),
        )


@dataclass
class GraphPath:
    """An ordered walk through the graph, scored by its last hop."""

    nodes: list[GraphNode]
    edges: list[GraphEdge]
    relevance_score: float

    @property
    def length(self) -> int:
        return len(self.nodes)

    @property
    def key(self) -> tuple[str, ...]:
        return tuple(node.id for node in self.nodes)


@dataclass
class GraphSearchResult:
    """Entities, relationships and paths found for a query."""

    entities: list[GraphNode] = field(default_factory=list)
    relationships: list[GraphEdge] = field(default_factory=list)
    paths: list[GraphPath] = field(default_factory=list)
    relevance_score: float = 0.0
    query: str = ""

    @staticmethod
    def empty(query: str) -> "GraphSearchResult":
        return GraphSearchResult(query=query)


@dataclass
class GraphContext:
    """Graph-derived context attached to a fused search result."""

    related_functions: list[str] = field(default_factory=list)
    related_keywords: list[str] = field(default_factory=list)
    relationships: list[str] = field(default_factory=list)

    @staticmethod
    def from_graph_result(result: GraphSearchResult) -> "GraphContext":
        """Collect deduplicated function/keyword names and relationship types."""
        functions = [e.name for e in result.entities if e.type == NodeType.FUNCTION]
        keywords = [e.name for e in result.entities if e.type == NodeType.KEYWORD]
        relationships = [r.relationship.value for r in result.relationships]
        return GraphContext(
            related_functions=list(dict.fromkeys(functions)),
            related_keywords=list(dict.fromkeys(keywords)),
            relationships=list(dict.fromkeys(relationships)),
        )
