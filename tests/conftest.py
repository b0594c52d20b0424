import copy

import pytest
from bson import ObjectId


class _InsertResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction):
        self._docs = sorted(self._docs, key=lambda d: d[key], reverse=direction < 0)
        return self

    def limit(self, n):
        self._docs = self._docs[:n]
        return self

    def __iter__(self):
        return iter(self._docs)


class FakeCollection:
    """Just enough of pymongo's Collection for DashboardStore."""

    def __init__(self):
        self.docs = []

    def _matches(self, doc, flt):
        return all(doc.get(k) == v for k, v in flt.items())

    def insert_one(self, payload):
        doc = copy.deepcopy(payload)
        doc["_id"] = ObjectId()
        self.docs.append(doc)
        return _InsertResult(doc["_id"])

    def find(self, flt=None):
        return FakeCursor([copy.deepcopy(d) for d in self.docs if self._matches(d, flt or {})])

    def find_one(self, flt):
        for d in self.docs:
            if self._matches(d, flt):
                return copy.deepcopy(d)
        return None


@pytest.fixture
def fake_collection():
    return FakeCollection()
