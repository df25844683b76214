"""Tests for the document index adapters."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from kb_graphrag.errors import SourceTimeoutError, SourceUnavailableError
from kb_graphrag.query.adapter import (
    HttpSearchAdapter,
    InMemorySearchAdapter,
    SearchMode,
    SourceRecord,
)


def _response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return response


# ---------------------------------------------------------------------------
# SourceRecord
# ---------------------------------------------------------------------------


class TestSourceRecord:
    def test_camel_case_keys(self):
        record = SourceRecord.from_dict(
            {
                "id": 1001,
                "title": "教室管理",
                "score": "0.75",
                "labels": ["faq"],
                "lastModified": "2025-01-10T09:00:00Z",
                "spaceKey": "KB",
            }
        )
        assert record.id == "1001"
        assert record.score == 0.75
        assert record.last_modified == "2025-01-10T09:00:00Z"
        assert record.space_key == "KB"

    def test_snake_case_keys_and_page_id(self):
        record = SourceRecord.from_dict({"pageId": "42", "space_key": "DEV", "last_modified": "yesterday"})
        assert record.id == "42"
        assert record.space_key == "DEV"
        assert record.title == ""
        assert record.labels == []

    def test_missing_id_rejected(self):
        with pytest.raises(ValueError):
            SourceRecord.from_dict({"title": "orphan"})


# ---------------------------------------------------------------------------
# HttpSearchAdapter
# ---------------------------------------------------------------------------


class TestHttpSearchAdapter:
    @patch("kb_graphrag.query.adapter.requests.post")
    def test_search_posts_query(self, mock_post):
        mock_post.return_value = _response({"results": [{"id": "1", "score": 0.9}, {"id": "2", "score": 0.4}]})
        adapter = HttpSearchAdapter("http://index:8080/", timeout=3.0)

        records = adapter.search("教室管理", 10, SearchMode.LEXICAL)

        assert [r.id for r in records] == ["1", "2"]
        mock_post.assert_called_once_with(
            "http://index:8080/search",
            json={"query": "教室管理", "topK": 10, "mode": "lexical"},
            timeout=3.0,
        )

    @patch("kb_graphrag.query.adapter.requests.post")
    def test_search_accepts_bare_list(self, mock_post):
        mock_post.return_value = _response([{"id": "7"}])
        records = HttpSearchAdapter("http://index").search("q", 5, "vector")
        assert [r.id for r in records] == ["7"]

    @patch("kb_graphrag.query.adapter.requests.post")
    def test_search_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("read timed out")
        with pytest.raises(SourceTimeoutError):
            HttpSearchAdapter("http://index").search("q", 5, SearchMode.VECTOR)

    @patch("kb_graphrag.query.adapter.requests.post")
    def test_search_http_error(self, mock_post):
        mock_post.return_value = _response({}, status_code=503)
        with pytest.raises(SourceUnavailableError) as exc_info:
            HttpSearchAdapter("http://index").search("q", 5, SearchMode.TITLE)
        assert not isinstance(exc_info.value, SourceTimeoutError)

    @patch("kb_graphrag.query.adapter.requests.post")
    def test_search_bad_json(self, mock_post):
        response = _response(None)
        response.json.side_effect = ValueError("Expecting value")
        mock_post.return_value = response
        with pytest.raises(SourceUnavailableError):
            HttpSearchAdapter("http://index").search("q", 5, SearchMode.KEYWORD)

    @patch("kb_graphrag.query.adapter.requests.get")
    def test_get_by_id(self, mock_get):
        mock_get.return_value = _response({"id": "1001", "title": "教室管理ページ"})
        record = HttpSearchAdapter("http://index", timeout=2.0).get_by_id("1001")
        assert record.title == "教室管理ページ"
        mock_get.assert_called_once_with("http://index/documents/1001", timeout=2.0)

    @patch("kb_graphrag.query.adapter.requests.get")
    def test_get_by_id_not_found(self, mock_get):
        mock_get.return_value = _response({}, status_code=404)
        assert HttpSearchAdapter("http://index").get_by_id("missing") is None

    @patch("kb_graphrag.query.adapter.requests.get")
    def test_get_by_id_connection_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(SourceUnavailableError):
            HttpSearchAdapter("http://index").get_by_id("1001")

    @patch("kb_graphrag.query.adapter.requests.get")
    def test_check_available(self, mock_get):
        mock_get.return_value = _response({"status": "ok"})
        assert HttpSearchAdapter("http://index").check_available() is True

        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        assert HttpSearchAdapter("http://index").check_available() is False


# ---------------------------------------------------------------------------
# InMemorySearchAdapter
# ---------------------------------------------------------------------------


class TestInMemorySearchAdapter:
    def test_search_respects_top_k(self):
        adapter = InMemorySearchAdapter({"vector": [SourceRecord(str(i)) for i in range(5)]})
        assert [r.id for r in adapter.search("q", 2, SearchMode.VECTOR)] == ["0", "1"]
        assert adapter.search("q", 2, SearchMode.TITLE) == []

    def test_ranked_records_are_looked_up(self):
        adapter = InMemorySearchAdapter({"lexical": [SourceRecord("9", title="nine")]})
        assert adapter.get_by_id("9").title == "nine"
        assert adapter.get_by_id("10") is None

    def test_from_json(self, tmp_path):
        path = tmp_path / "results.json"
        path.write_text(
            json.dumps(
                {
                    "results": {"vector": [{"id": "1", "score": 0.9}], "keyword": [{"pageId": "2"}]},
                    "documents": [{"id": "3", "title": "standalone"}],
                }
            ),
            encoding="utf-8",
        )
        adapter = InMemorySearchAdapter.from_json(path)

        assert [r.id for r in adapter.search("q", 10, "vector")] == ["1"]
        assert [r.id for r in adapter.search("q", 10, "keyword")] == ["2"]
        assert adapter.get_by_id("3").title == "standalone"
