"""Tests for the kgr command-line interface."""

import json

import pytest
from click.testing import CliRunner

from kb_graphrag.cli import main


@pytest.fixture
def snapshot(tmp_path):
    path = tmp_path / "knowledge-graph.json"
    path.write_text(
        json.dumps(
            {
                "nodes": [
                    {"id": "f1", "type": "Function", "name": "教室管理"},
                    {"id": "p1", "type": "Page", "name": "教室管理ページ", "properties": {"pageId": "1001"}},
                ],
                "edges": [{"source": "f1", "target": "p1", "relationship": "DESCRIBES"}],
                "metadata": {"generatedAt": "2025-01-15T10:00:00Z", "totalNodes": 2, "totalEdges": 1},
            },
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def adapter_file(tmp_path):
    path = tmp_path / "results.json"
    path.write_text(
        json.dumps(
            {
                "results": {"vector": [{"id": "1001", "title": "Classroom admin", "score": 0.5}]},
                "documents": [{"id": "1001", "title": "Classroom admin", "spaceKey": "KB"}],
            }
        ),
        encoding="utf-8",
    )
    return path


def _invoke(*args):
    return CliRunner().invoke(main, list(args))


def test_stats(snapshot):
    result = _invoke("--snapshot", str(snapshot), "stats")
    assert result.exit_code == 0
    assert "Nodes:" in result.output
    assert "2025-01-15T10:00:00Z" in result.output


def test_stats_missing_snapshot(tmp_path):
    result = _invoke("--snapshot", str(tmp_path / "missing.json"), "stats")
    assert result.exit_code == 0
    assert "not available" in result.output


def test_search_json(snapshot, adapter_file):
    result = _invoke("--snapshot", str(snapshot), "--adapter-file", str(adapter_file), "search", "教室管理", "--json")
    assert result.exit_code == 0

    payload = json.loads(result.stdout)
    assert payload["totalOutage"] is False
    assert payload["failedSources"] == []
    [doc] = payload["results"]
    assert doc["document_id"] == "1001"
    assert doc["source"] == "vector,graph"
    # 0.5 * 0.4 (vector) + 1.0 * 0.2 (graph)
    assert doc["score"] == pytest.approx(0.4)
    assert doc["graph_context"]["related_functions"] == ["教室管理"]


def test_search_table(snapshot, adapter_file):
    result = _invoke("--snapshot", str(snapshot), "--adapter-file", str(adapter_file), "search", "教室管理")
    assert result.exit_code == 0
    assert "Classroom admin" in result.output
    assert "Related functions" in result.output


@pytest.mark.parametrize("option", [["-n", "-1"], ["--depth", "-2"], ["--timeout", "0"]])
def test_search_rejects_out_of_range_options(snapshot, adapter_file, option):
    result = _invoke("--snapshot", str(snapshot), "--adapter-file", str(adapter_file), "search", "教室管理", *option)
    assert result.exit_code == 2


def test_search_max_results(snapshot, tmp_path):
    many = tmp_path / "many.json"
    many.write_text(
        json.dumps({"results": {"vector": [{"id": str(i), "score": 1.0 - i / 10} for i in range(3)]}}),
        encoding="utf-8",
    )
    result = _invoke("--snapshot", str(snapshot), "--adapter-file", str(many), "search", "payroll", "-n", "2", "--json")
    assert result.exit_code == 0
    assert [doc["document_id"] for doc in json.loads(result.stdout)["results"]] == ["0", "1"]


def test_search_no_results(snapshot, tmp_path):
    empty = tmp_path / "empty.json"
    empty.write_text(json.dumps({"results": {}}), encoding="utf-8")
    result = _invoke("--snapshot", str(snapshot), "--adapter-file", str(empty), "search", "payroll")
    assert result.exit_code == 0
    assert "No results." in result.output


def test_related_pages(snapshot, adapter_file):
    result = _invoke("--snapshot", str(snapshot), "--adapter-file", str(adapter_file), "related-pages", "教室管理")
    assert result.exit_code == 0
    assert "1001" in result.output


def test_related_functions_none(snapshot, adapter_file):
    result = _invoke("--snapshot", str(snapshot), "--adapter-file", str(adapter_file), "related-functions", "1001")
    assert result.exit_code == 0
    assert "No related functions found." in result.output


def test_validate_ok(snapshot):
    result = _invoke("validate", str(snapshot))
    assert result.exit_code == 0
    assert "Snapshot OK" in result.output


def test_validate_reports_violations(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(
        json.dumps(
            {
                "nodes": [{"id": "x", "type": "Person", "name": "Bob"}],
                "edges": [{"source": "x", "target": "y", "relationship": "KNOWS"}],
            }
        ),
        encoding="utf-8",
    )
    result = _invoke("validate", str(path))
    assert result.exit_code == 1
    assert "violations" in result.output


def test_validate_missing_file(tmp_path):
    result = _invoke("validate", str(tmp_path / "missing.json"))
    assert result.exit_code == 1
    assert "not found" in result.output


def test_evaluate(snapshot, adapter_file):
    result = _invoke("--snapshot", str(snapshot), "--adapter-file", str(adapter_file), "evaluate", "教室管理")
    assert result.exit_code == 0
    assert "Completeness" in result.output
