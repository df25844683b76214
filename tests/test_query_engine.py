"""Tests for the query engine facade."""

import json

import pytest

from kb_graphrag.config import Config
from kb_graphrag.graph.index import GraphIndexProvider
from kb_graphrag.query.adapter import InMemorySearchAdapter, SearchMode, SourceRecord
from kb_graphrag.query.engine import QueryEngine
from kb_graphrag.query.hybrid_search import SearchOptions


def _write_snapshot(path, extra_nodes=()):
    nodes = [
        {"id": "f1", "type": "Function", "name": "教室管理", "properties": {}},
        {"id": "p1", "type": "Page", "name": "教室管理ページ", "properties": {"pageId": "1001"}},
        {"id": "p2", "type": "Page", "name": "Seat map", "properties": {"pageId": "1002"}},
        {"id": "f2", "type": "Function", "name": "seat assignment", "properties": {}},
        *extra_nodes,
    ]
    edges = [
        {"source": "f1", "target": "p1", "relationship": "DESCRIBES"},
        {"source": "p2", "target": "f2", "relationship": "CONTAINS"},
    ]
    path.write_text(json.dumps({"nodes": nodes, "edges": edges}, ensure_ascii=False), encoding="utf-8")


@pytest.fixture
def snapshot(tmp_path):
    path = tmp_path / "knowledge-graph.json"
    _write_snapshot(path)
    return path


@pytest.fixture
def engine(snapshot):
    adapter = InMemorySearchAdapter(
        {SearchMode.VECTOR: [SourceRecord("1002", title="Seat map", score=0.9)]},
        documents=[SourceRecord("1001", title="Classroom admin")],
    )
    engine = QueryEngine(Config(graph_snapshot_path=snapshot), adapter=adapter)
    yield engine
    engine.close()


def test_graph_loaded_lazily(engine):
    assert engine.provider.loaded is False
    engine.get_graph_stats()
    assert engine.provider.loaded is True


def test_search(engine):
    results = engine.search("教室管理")
    assert [r.document_id for r in results] == ["1002", "1001"]
    assert results[1].source == "graph"


def test_search_detailed(engine):
    response = engine.search_detailed("教室管理", SearchOptions(max_results=1))
    assert len(response.results) == 1
    assert response.partial_failure is False
    assert response.total_outage is False


def test_related_lookups(engine):
    assert [p.page_id for p in engine.find_related_pages("教室管理")] == ["1001"]
    assert [f.name for f in engine.find_related_functions("1002")] == ["seat assignment"]


def test_graph_stats(engine):
    stats = engine.get_graph_stats()
    assert stats["totalNodes"] == 4
    assert stats["totalEdges"] == 2
    assert stats["degraded"] is False


def test_evaluate_search_quality(engine):
    results = engine.search("教室管理")
    report = engine.evaluate_search_quality("教室管理", results)
    assert report.completeness_score == 1.0
    assert 0.0 < report.overall_score <= 1.0


def test_reload_graph(engine, snapshot):
    engine.get_graph_stats()
    _write_snapshot(snapshot, extra_nodes=[{"id": "k1", "type": "Keyword", "name": "座席表"}])

    stats = engine.reload_graph()

    assert stats["totalNodes"] == 5
    assert engine.get_graph_stats()["totalNodes"] == 5


def test_missing_snapshot_runs_degraded(tmp_path):
    adapter = InMemorySearchAdapter({SearchMode.VECTOR: [SourceRecord("1", score=0.5)]})
    engine = QueryEngine(
        Config(graph_snapshot_path=tmp_path / "missing.json"),
        adapter=adapter,
        provider=GraphIndexProvider(tmp_path / "missing.json"),
    )
    try:
        response = engine.search_detailed("anything")
        assert [r.document_id for r in response.results] == ["1"]
        assert response.graph_degraded is True
        assert engine.get_graph_stats()["totalNodes"] == 0
    finally:
        engine.close()


def test_traversal_strategy_from_config(snapshot):
    engine = QueryEngine(
        Config(graph_snapshot_path=snapshot, traversal_strategy="best_score"),
        adapter=InMemorySearchAdapter(),
    )
    assert engine.graph.traversal.value == "best_score"


def test_filtered_expansion_from_config(snapshot):
    pruning = QueryEngine(Config(graph_snapshot_path=snapshot), adapter=InMemorySearchAdapter())
    expanding = QueryEngine(
        Config(graph_snapshot_path=snapshot, graph_expand_filtered=True),
        adapter=InMemorySearchAdapter(),
    )
    try:
        assert pruning.graph.expand_filtered is False
        assert expanding.graph.expand_filtered is True
    finally:
        pruning.close()
        expanding.close()
