import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pydantic import BaseModel

import main


class FakeStore:
    """In-memory stand-in for the MongoDB helpers used by main."""

    def __init__(self):
        self.collections = {}
        self.reads = []

    def _docs(self, collection_name):
        return self.collections.setdefault(collection_name, [])

    @staticmethod
    def _matches(doc, filter_dict):
        return all(doc.get(key) == value for key, value in (filter_dict or {}).items())

    def create_document(self, collection_name, data):
        doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        doc["_id"] = ObjectId()
        self._docs(collection_name).append(doc)
        return str(doc["_id"])

    def get_documents(self, collection_name, filter_dict=None, limit=None, sort=None):
        self.reads.append((collection_name, dict(filter_dict or {}), limit))
        docs = [dict(d) for d in self._docs(collection_name) if self._matches(d, filter_dict)]
        for key, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: d.get(key) or "", reverse=direction < 0)
        if limit:
            docs = docs[:limit]
        return docs

    def get_document(self, collection_name, document_id):
        for doc in self._docs(collection_name):
            if str(doc["_id"]) == document_id:
                return dict(doc)
        return None

    def update_document(self, collection_name, document_id, data):
        changes = data.model_dump(exclude_unset=True) if isinstance(data, BaseModel) else dict(data)
        for doc in self._docs(collection_name):
            if str(doc["_id"]) == document_id:
                doc.update(changes)
                return True
        return False

    def update_documents(self, collection_name, filter_dict, changes):
        matched = [d for d in self._docs(collection_name) if self._matches(d, filter_dict)]
        for doc in matched:
            doc.update(changes)
        return len(matched)

    def delete_document(self, collection_name, document_id):
        before = len(self._docs(collection_name))
        self.collections[collection_name] = [
            d for d in self._docs(collection_name) if str(d["_id"]) != document_id
        ]
        return len(self.collections[collection_name]) < before

    def delete_documents(self, collection_name, filter_dict):
        kept = [d for d in self._docs(collection_name) if not self._matches(d, filter_dict)]
        removed = len(self._docs(collection_name)) - len(kept)
        self.collections[collection_name] = kept
        return removed


@pytest.fixture
def store(monkeypatch):
    fake = FakeStore()
    for name in (
        "create_document",
        "get_documents",
        "get_document",
        "update_document",
        "update_documents",
        "delete_document",
        "delete_documents",
    ):
        monkeypatch.setattr(main, name, getattr(fake, name))
    monkeypatch.delenv("NOW_OVERRIDE", raising=False)
    return fake


@pytest.fixture
def client(store):
    return TestClient(main.app)
