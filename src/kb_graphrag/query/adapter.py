"""Search backend adapters.

The document index (vector store + lexical index) is an external
service. The fusion engine only sees it through the SourceSearchAdapter
protocol: a ranked search per mode and a single-document lookup.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import requests

from kb_graphrag.errors import SourceTimeoutError, SourceUnavailableError

logger = logging.getLogger(__name__)


class SearchMode(str, Enum):
    VECTOR = "vector"
    LEXICAL = "lexical"
    KEYWORD = "keyword"
    TITLE = "title"


@dataclass
class SourceRecord:
    """A document as returned by the document index."""

    id: str
    title: str = ""
    content: str = ""
    url: str = ""
    score: float = 0.0
    labels: list[str] = field(default_factory=list)
    last_modified: str = ""
    space_key: str = ""

    @staticmethod
    def from_dict(data: dict) -> "SourceRecord":
        """Build a record from the wire format (camelCase or snake_case keys)."""
        doc_id = data.get("id", data.get("pageId"))
        if doc_id in (None, ""):
            raise ValueError(f"Search record without id: {data!r}")
        return SourceRecord(
            id=str(doc_id),
            title=data.get("title") or "",
            content=data.get("content") or "",
            url=data.get("url") or "",
            score=float(data.get("score") or 0.0),
            labels=list(data.get("labels") or []),
            last_modified=data.get("lastModified", data.get("last_modified")) or "",
            space_key=data.get("spaceKey", data.get("space_key")) or "",
        )


class SourceSearchAdapter(Protocol):
    """Interface the document index must provide."""

    def search(self, query: str, top_k: int, mode: SearchMode) -> list[SourceRecord]:
        ...

    def get_by_id(self, doc_id: str) -> SourceRecord | None:
        ...


class HttpSearchAdapter:
    """Talks to the document index service over HTTP.

    Endpoints:
        POST {base_url}/search          {"query", "topK", "mode"} -> {"results": [...]}
        GET  {base_url}/documents/{id}  -> record, 404 when unknown
    """

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def search(self, query: str, top_k: int, mode: SearchMode) -> list[SourceRecord]:
        mode = SearchMode(mode)
        try:
            response = requests.post(
                f"{self.base_url}/search",
                json={"query": query, "topK": top_k, "mode": mode.value},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.Timeout as e:
            raise SourceTimeoutError(f"{mode.value} search timed out: {e}") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Document index {mode.value} search failed: {e}")
            raise SourceUnavailableError(f"{mode.value} search failed: {e}") from e

        results = payload.get("results", []) if isinstance(payload, dict) else payload
        return [SourceRecord.from_dict(item) for item in results]

    def get_by_id(self, doc_id: str) -> SourceRecord | None:
        try:
            response = requests.get(f"{self.base_url}/documents/{doc_id}", timeout=self.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return SourceRecord.from_dict(response.json())
        except requests.exceptions.Timeout as e:
            raise SourceTimeoutError(f"Lookup of {doc_id} timed out: {e}") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Document index lookup of {doc_id} failed: {e}")
            raise SourceUnavailableError(f"Lookup of {doc_id} failed: {e}") from e

    def check_available(self) -> bool:
        """True if the document index answers its health endpoint."""
        try:
            response = requests.get(f"{self.base_url}/health", timeout=5)
            response.raise_for_status()
            logger.info(f"Document index is available at {self.base_url}")
            return True
        except Exception as e:
            logger.warning(f"Document index availability check failed: {e}")
            return False


class InMemorySearchAdapter:
    """Serves canned ranked lists per mode plus a document table.

    Used for tests and for running searches against exported result sets.
    """

    def __init__(
        self,
        results: dict[SearchMode | str, list[SourceRecord]] | None = None,
        documents: list[SourceRecord] | None = None,
    ):
        self.results = {SearchMode(mode): list(records) for mode, records in (results or {}).items()}
        self.documents = {record.id: record for record in documents or []}
        for records in self.results.values():
            for record in records:
                self.documents.setdefault(record.id, record)

    def search(self, query: str, top_k: int, mode: SearchMode) -> list[SourceRecord]:
        return list(self.results.get(SearchMode(mode), []))[:top_k]

    def get_by_id(self, doc_id: str) -> SourceRecord | None:
        return self.documents.get(str(doc_id))

    @classmethod
    def from_json(cls, path: Path | str) -> "InMemorySearchAdapter":
        """Load {"results": {mode: [record, ...]}, "documents": [record, ...]}."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        results = {
            mode: [SourceRecord.from_dict(item) for item in items]
            for mode, items in (data.get("results") or {}).items()
        }
        documents = [SourceRecord.from_dict(item) for item in data.get("documents") or []]
        return cls(results, documents)
