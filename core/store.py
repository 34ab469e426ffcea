"""Document store boundary: fetch every document of a named collection."""

from __future__ import annotations

import json
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol


logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the document store cannot be read."""


@dataclass(frozen=True)
class Document:
    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.data


class DocumentStore(Protocol):
    def fetch_all(self, collection: str) -> List[Document]:
        ...


class FirestoreStore:
    """Read-only access to a Firestore database."""

    def __init__(self, project: Optional[str] = None, client: Any = None) -> None:
        self._project = project
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            from google.cloud import firestore

            self._client = firestore.Client(project=self._project)
        return self._client

    def fetch_all(self, collection: str) -> List[Document]:
        try:
            docs = [
                Document(id=snapshot.id, data=snapshot.to_dict() or {})
                for snapshot in self.client.collection(collection).stream()
            ]
        except Exception as exc:
            raise StoreError(f"failed to read collection {collection!r}: {exc}") from exc
        logger.info("Fetched %d documents from %s", len(docs), collection)
        return docs


class InMemoryStore:
    """Collections held in memory; used for tests, demos and JSON fixtures."""

    def __init__(self, collections: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self._collections: Dict[str, Dict[str, Any]] = {
            name: dict(docs) for name, docs in (collections or {}).items()
        }

    @classmethod
    def from_json(cls, path: Path) -> "InMemoryStore":
        """Load ``{collection: {doc_id: document}}`` from a JSON file."""
        with open(path, "r", encoding="utf-8") as fh:
            return cls(json.load(fh))

    def put(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = dict(data)

    def fetch_all(self, collection: str) -> List[Document]:
        docs = self._collections.get(collection, {})
        return [Document(id=str(doc_id), data=deepcopy(data)) for doc_id, data in docs.items()]
