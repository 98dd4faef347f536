import copy
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from bson import ObjectId

from mongo_queue.config import get_settings


def _matches(document: dict, query: dict) -> bool:
    """Evaluate the subset of MongoDB query syntax the queue issues."""
    for field, condition in query.items():
        value = document.get(field)

        if condition is None:
            if value is not None:
                return False
        elif isinstance(condition, dict):
            for operator, operand in condition.items():
                if operator == "$exists":
                    if (field in document) != operand:
                        return False
                elif operator == "$lte":
                    if value is None or not value <= operand:
                        return False
                elif operator == "$gt":
                    if value is None or not value > operand:
                        return False
                else:
                    raise NotImplementedError(operator)
        elif value != condition:
            return False

    return True


class FakeCollection:
    """In-memory stand-in for AsyncIOMotorCollection."""

    def __init__(self, name: str):
        self.name = name
        self.documents: list[dict] = []
        self.indexes: list[tuple] = []

    async def create_index(self, keys, **kwargs):
        self.indexes.append((keys, kwargs))
        return str(keys)

    async def insert_one(self, document: dict):
        document.setdefault("_id", ObjectId())
        self.documents.append(copy.deepcopy(document))
        return SimpleNamespace(inserted_id=document["_id"])

    async def insert_many(self, documents: list[dict]):
        inserted_ids = []
        for document in documents:
            result = await self.insert_one(document)
            inserted_ids.append(result.inserted_id)
        return SimpleNamespace(inserted_ids=inserted_ids)

    async def find_one_and_update(self, query, update, sort=None, return_document=None):
        candidates = [doc for doc in self.documents if _matches(doc, query)]
        if sort:
            for field, direction in reversed(sort):
                candidates.sort(key=lambda doc: doc[field], reverse=direction < 0)
        if not candidates:
            return None

        document = candidates[0]
        for field, amount in update.get("$inc", {}).items():
            document[field] = document.get(field, 0) + amount
        for field, value in update.get("$set", {}).items():
            document[field] = value

        return copy.deepcopy(document)

    async def delete_many(self, query):
        kept = [doc for doc in self.documents if not _matches(doc, query)]
        deleted_count = len(self.documents) - len(kept)
        self.documents = kept
        return SimpleNamespace(deleted_count=deleted_count)

    async def count_documents(self, query):
        return sum(1 for doc in self.documents if _matches(doc, query))

    def find(self, query: dict) -> list[dict]:
        return [copy.deepcopy(doc) for doc in self.documents if _matches(doc, query)]


class FakeDatabase:
    """In-memory stand-in for AsyncIOMotorDatabase."""

    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}
        self.command = AsyncMock(return_value={"ok": 1.0})

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]


@pytest.fixture(autouse=True)
def fresh_settings():
    """Settings are cached; rebuild them around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_db():
    """Returns an empty in-memory database."""
    return FakeDatabase()


@pytest.fixture
def collection_mock():
    """Returns a Motor collection double with async driver methods."""
    collection = MagicMock()
    collection.create_index = AsyncMock()
    collection.find_one_and_update = AsyncMock()
    collection.insert_one = AsyncMock()
    collection.insert_many = AsyncMock()
    collection.delete_many = AsyncMock()
    collection.count_documents = AsyncMock()
    return collection


@pytest.fixture
def db_mock(collection_mock):
    """Returns a Motor database double whose collections are collection_mock."""
    database = MagicMock()
    database.__getitem__.return_value = collection_mock
    database.command = AsyncMock(return_value={"ok": 1.0})
    return database
