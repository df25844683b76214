"""Schema validation for knowledge graph snapshots.

Checks that snapshot nodes and edges use the known type vocabulary and
that every edge references existing nodes. Invalid records are dropped
by the loader; the violations are reported so the graph builder job can
be fixed.
"""

import logging
from typing import Any

from kb_graphrag.errors import SnapshotError
from kb_graphrag.graph.models import GraphEdge, GraphNode, NodeType, Relationship

logger = logging.getLogger(__name__)

# Allowed values for enum-like fields
ALLOWED_VALUES = {
    "node_type": {t.value for t in NodeType},
    "relationship": {r.value for r in Relationship},
}


def check_shape(data: Any) -> None:
    """Verify the top-level snapshot document shape.

    Raises:
        SnapshotError: If the document is not {nodes: [...], edges: [...]}.
    """
    if not isinstance(data, dict):
        raise SnapshotError(f"Snapshot must be a JSON object, got {type(data).__name__}")
    for key in ("nodes", "edges"):
        if not isinstance(data.get(key, []), list):
            raise SnapshotError(f"Snapshot '{key}' must be a list")


class SnapshotValidator:
    """Validates graph snapshot documents against the node/edge vocabulary."""

    def sanitize(self, data: dict) -> tuple[list[GraphNode], list[GraphEdge], list[str]]:
        """Parse snapshot records, dropping the invalid ones.

        Args:
            data: Parsed snapshot document.

        Returns:
            (nodes, edges, violations)

        Raises:
            SnapshotError: If the top-level document shape is wrong.
        """
        check_shape(data)
        violations = []
        nodes: list[GraphNode] = []
        seen_ids: set[str] = set()

        for i, raw in enumerate(data.get("nodes", [])):
            if not isinstance(raw, dict) or not raw.get("id") or raw.get("name") is None:
                violations.append(f"Invalid node at index {i}: missing id or name")
                continue
            node_type = raw.get("type")
            if node_type not in ALLOWED_VALUES["node_type"]:
                violations.append(f"Invalid node.type: '{node_type}' on node {raw['id']}")
                continue
            node = GraphNode.from_dict(raw)
            if node.id in seen_ids:
                violations.append(f"Duplicate node.id: '{node.id}'")
                continue
            seen_ids.add(node.id)
            nodes.append(node)

        edges: list[GraphEdge] = []
        for i, raw in enumerate(data.get("edges", [])):
            if not isinstance(raw, dict) or not raw.get("source") or not raw.get("target"):
                violations.append(f"Invalid edge at index {i}: missing source or target")
                continue
            relationship = raw.get("relationship")
            if relationship not in ALLOWED_VALUES["relationship"]:
                violations.append(
                    f"Invalid edge.relationship: '{relationship}' "
                    f"on edge {raw['source']} -> {raw['target']}"
                )
                continue
            edge = GraphEdge.from_dict(raw)
            missing = [end for end in (edge.source, edge.target) if end not in seen_ids]
            if missing:
                violations.append(
                    f"Dangling edge: {edge.source} -[{edge.relationship.value}]-> {edge.target} "
                    f"references unknown node(s) {', '.join(missing)}"
                )
                continue
            edges.append(edge)

        violations.extend(self._check_metadata(data.get("metadata") or {}, len(nodes), len(edges)))
        return nodes, edges, violations

    def validate(self, data: dict) -> tuple[bool, list[str]]:
        """Validate a snapshot document.

        Args:
            data: Parsed snapshot document.

        Returns:
            (is_valid, violations): True if valid, list of violation messages
        """
        try:
            _, _, violations = self.sanitize(data)
        except SnapshotError as e:
            violations = [str(e)]

        if violations:
            logger.warning(f"Snapshot: {len(violations)} schema violations detected")

        return len(violations) == 0, violations

    @staticmethod
    def _check_metadata(metadata: dict, node_count: int, edge_count: int) -> list[str]:
        """Compare declared metadata counts with what was actually loaded."""
        violations = []
        declared_nodes = metadata.get("totalNodes")
        if declared_nodes is not None and declared_nodes != node_count:
            violations.append(
                f"Metadata mismatch: totalNodes={declared_nodes}, loaded {node_count}"
            )
        declared_edges = metadata.get("totalEdges")
        if declared_edges is not None and declared_edges != edge_count:
            violations.append(
                f"Metadata mismatch: totalEdges={declared_edges}, loaded {edge_count}"
            )
        return violations
