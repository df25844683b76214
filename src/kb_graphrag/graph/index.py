"""In-memory knowledge graph index.

Loads a graph snapshot once and exposes O(1) node lookup and O(1)
outgoing-edge lookup. The index is read-only after construction, so any
number of concurrent queries can share it without locking. A missing or
corrupt snapshot yields an empty, degraded index instead of an error.
"""

import json
import logging
import threading
from collections import Counter
from pathlib import Path

from kb_graphrag.errors import SnapshotError
from kb_graphrag.graph.models import GraphEdge, GraphNode, NodeType
from kb_graphrag.graph.validation import SnapshotValidator

logger = logging.getLogger(__name__)


class GraphIndex:
    """Immutable nodes + edges with derived lookup tables."""

    def __init__(
        self,
        nodes: list[GraphNode],
        edges: list[GraphEdge],
        metadata: dict | None = None,
        degraded: bool = False,
    ):
        self._nodes = tuple(nodes)
        self._edges = tuple(edges)
        self.metadata = dict(metadata or {})
        self.degraded = degraded

        self._node_map: dict[str, GraphNode] = {}
        self._adjacency: dict[str, list[str]] = {}
        self._edge_map: dict[str, list[GraphEdge]] = {}
        self._page_ids: dict[str, GraphNode] = {}
        self._build_indexes()

    def _build_indexes(self) -> None:
        for node in self._nodes:
            self._node_map[node.id] = node
            if node.type == NodeType.PAGE:
                self._page_ids.setdefault(node.page_id, node)

        for edge in self._edges:
            self._adjacency.setdefault(edge.source, []).append(edge.target)
            self._edge_map.setdefault(edge.source, []).append(edge)

    # ------------------------------------------------------------------ #
    #  Loading                                                            #
    # ------------------------------------------------------------------ #

    @classmethod
    def load(cls, snapshot_path: Path | str) -> "GraphIndex":
        """Load a graph snapshot, falling back to an empty degraded index.

        Args:
            snapshot_path: Path to the knowledge-graph JSON snapshot.

        Returns:
            A populated GraphIndex, or an empty one with degraded=True when
            the file is missing or unparsable.
        """
        path = Path(snapshot_path)
        try:
            data = cls._read_snapshot(path)
            nodes, edges, violations = SnapshotValidator().sanitize(data)
        except SnapshotError as e:
            logger.warning(f"Graph snapshot unavailable, running degraded: {e}")
            return cls.empty()

        if violations:
            logger.warning(f"Graph snapshot {path}: {len(violations)} invalid records dropped")
            for violation in violations[:10]:
                logger.debug(f"  {violation}")

        index = cls(nodes, edges, metadata=data.get("metadata"))
        logger.info(f"Loaded graph snapshot: {len(nodes)} nodes, {len(edges)} edges")
        return index

    @staticmethod
    def _read_snapshot(path: Path) -> dict:
        if not path.exists():
            raise SnapshotError(f"{path} not found (run the graph builder first)")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SnapshotError(f"{path} could not be parsed: {e}") from e

    @classmethod
    def empty(cls) -> "GraphIndex":
        """An index with no nodes or edges, flagged as degraded."""
        return cls([], [], degraded=True)

    # ------------------------------------------------------------------ #
    #  Accessors                                                          #
    # ------------------------------------------------------------------ #

    @property
    def nodes(self) -> tuple[GraphNode, ...]:
        return self._nodes

    @property
    def edges(self) -> tuple[GraphEdge, ...]:
        return self._edges

    def __len__(self) -> int:
        return len(self._nodes)

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._node_map.get(node_id)

    def neighbors(self, node_id: str) -> list[str]:
        return list(self._adjacency.get(node_id, ()))

    def outgoing_edges(self, node_id: str) -> list[GraphEdge]:
        return list(self._edge_map.get(node_id, ()))

    def find_nodes_by_name(self, name: str, node_type: NodeType | None = None) -> list[GraphNode]:
        """Nodes whose name contains `name` or is contained in it (case-insensitive)."""
        needle = name.lower()
        matches = []
        for node in self._nodes:
            if node_type is not None and node.type != node_type:
                continue
            candidate = node.name.lower()
            if needle in candidate or candidate in needle:
                matches.append(node)
        return matches

    def find_page_node(self, document_id: str) -> GraphNode | None:
        """Page node for a document id (matched on properties.pageId or node id)."""
        page = self._page_ids.get(str(document_id))
        if page is not None:
            return page
        node = self._node_map.get(str(document_id))
        if node is not None and node.type == NodeType.PAGE:
            return node
        return None

    def stats(self) -> dict:
        """Graph statistics computed from the loaded nodes and edges."""
        total_nodes = len(self._nodes)
        total_edges = len(self._edges)
        distribution = Counter(node.type.value for node in self._nodes)
        return {
            "totalNodes": total_nodes,
            "totalEdges": total_edges,
            "averageConnections": total_edges / total_nodes if total_nodes else 0.0,
            "nodeTypeDistribution": dict(distribution),
            "generatedAt": self.metadata.get("generatedAt"),
            "degraded": self.degraded,
        }


class GraphIndexProvider:
    """Owns the current GraphIndex for a process.

    The first get() loads the snapshot exactly once even under concurrent
    first use. reload() builds a fresh index and swaps the reference, so
    queries already holding the old index keep a consistent view.
    """

    def __init__(self, snapshot_path: Path | str):
        self.snapshot_path = Path(snapshot_path)
        self._lock = threading.Lock()
        self._index: GraphIndex | None = None

    def get(self) -> GraphIndex:
        index = self._index
        if index is not None:
            return index
        with self._lock:
            if self._index is None:
                self._index = GraphIndex.load(self.snapshot_path)
            return self._index

    def reload(self) -> GraphIndex:
        """Load the snapshot again and atomically replace the current index."""
        index = GraphIndex.load(self.snapshot_path)
        with self._lock:
            self._index = index
        logger.info(f"Graph index reloaded from {self.snapshot_path}")
        return index

    @property
    def loaded(self) -> bool:
        return self._index is not None

    def close(self) -> None:
        """Drop the current index; the next get() loads it again."""
        with self._lock:
            self._index = None
