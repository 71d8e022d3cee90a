"""
Conftest for unit tests.

Unit tests in this directory are fully self-contained and do NOT require
a running MongoDB instance. Services talk to ``FakeDatabase``, an in-memory
stand-in for the handful of Motor collection methods they use.
"""
import copy
from datetime import datetime, timezone as dt_timezone
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo import ReturnDocument

_MODULES_USING_DB = (
    "api.services.approval_service",
    "api.services.case_service",
    "api.services.incident_service",
    "api.services.notification_service",
    "api.services.schedule_service",
)


def _matches(document: dict, query: dict) -> bool:
    # Equality only; a None value also matches a missing field, as in MongoDB
    return all(document.get(key) == value for key, value in query.items())


class FakeCursor:
    def __init__(self, documents):
        self._documents = documents

    def sort(self, key_or_list, direction=1):
        keys = key_or_list if isinstance(key_or_list, list) else [(key_or_list, direction)]
        for key, order in reversed(keys):
            self._documents.sort(
                key=lambda d: (d.get(key) is not None, d.get(key) or 0),
                reverse=order < 0,
            )
        return self

    def __aiter__(self):
        self._iter = iter(self._documents)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.documents = []
        self.fail_on = set()

    def _check(self, operation: str):
        if operation in self.fail_on:
            raise RuntimeError(f"{self.name}.{operation} failed")

    def _find(self, query):
        return [d for d in self.documents if _matches(d, query or {})]

    async def find_one(self, query=None, session=None, **kwargs):
        self._check("find_one")
        found = self._find(query)
        return copy.deepcopy(found[0]) if found else None

    def find(self, query=None, session=None):
        self._check("find")
        return FakeCursor([copy.deepcopy(d) for d in self._find(query)])

    async def insert_one(self, document, session=None):
        self._check("insert_one")
        stored = copy.deepcopy(document)
        stored.setdefault("_id", ObjectId())
        self.documents.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def insert_many(self, documents, session=None):
        self._check("insert_many")
        ids = []
        for document in documents:
            ids.append((await self.insert_one(document)).inserted_id)
        return SimpleNamespace(inserted_ids=ids)

    async def update_one(self, query, update, session=None):
        self._check("update_one")
        found = self._find(query)
        if found:
            found[0].update(copy.deepcopy(update.get("$set", {})))
        return SimpleNamespace(matched_count=len(found[:1]), modified_count=len(found[:1]))

    async def update_many(self, query, update, session=None):
        self._check("update_many")
        found = self._find(query)
        for document in found:
            document.update(copy.deepcopy(update.get("$set", {})))
        return SimpleNamespace(matched_count=len(found), modified_count=len(found))

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE, session=None):
        self._check("find_one_and_update")
        found = self._find(query)
        if not found:
            return None
        before = copy.deepcopy(found[0])
        found[0].update(copy.deepcopy(update.get("$set", {})))
        return copy.deepcopy(found[0]) if return_document == ReturnDocument.AFTER else before


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self._collections.setdefault(name, FakeCollection(name))


@pytest.fixture
def fake_db(monkeypatch):
    """Replace the Motor database handle in every service with an in-memory fake"""
    database = FakeDatabase()
    for module in _MODULES_USING_DB:
        monkeypatch.setattr(f"{module}.db", database)
    return database


def make_case(**overrides) -> dict:
    """A WorkerExceptions document with sensible test defaults"""
    document = {
        "_id": ObjectId(),
        "user_id": "worker_001",
        "team_id": "team_001",
        "exception_type": "accident",
        "reason": "Approved incident: slipped on wet floor",
        "start_date": datetime(2025, 1, 10),
        "end_date": None,
        "is_active": True,
        "created_by": "leader_001",
        "notes": None,
        "clinician_id": None,
        "return_to_work_duty_type": None,
        "return_to_work_date": None,
        "created_at": datetime(2025, 1, 10, 9, 30, tzinfo=dt_timezone.utc),
        "updated_at": None,
    }
    document.update(overrides)
    return document


@pytest.fixture
def case_factory():
    return make_case
