import copy
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import CollectionInvalid, DuplicateKeyError

from docmigrate.migrations.changelog import ChangeLogStore
from docmigrate.migrations.lock import LockStore


# In-memory stand-ins for motor objects
class FakeCursor:
    """Async cursor over a snapshot of documents."""

    def __init__(self, docs):
        self._docs = list(docs)

    def sort(self, key, direction=1):
        self._docs.sort(key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def limit(self, count):
        self._docs = self._docs[:count]
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield copy.deepcopy(doc)


class FakeCollection:
    """Enough of AsyncIOMotorCollection for the stores, honouring unique indexes."""

    def __init__(self, name):
        self.name = name
        self.docs = []
        self.indexes = {"_id_": {"key": [("_id", 1)], "v": 2}}

    @staticmethod
    def _matches(doc, query):
        return all(doc.get(k) == v for k, v in query.items())

    def _unique_keys(self):
        keys = [["_id"]]
        for info in self.indexes.values():
            if info.get("unique"):
                keys.append([field for field, _ in info["key"]])
        return keys

    async def insert_one(self, document):
        doc = dict(document)
        doc.setdefault("_id", ObjectId())
        for keys in self._unique_keys():
            for existing in self.docs:
                if all(existing.get(k) == doc.get(k) for k in keys):
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name}", 11000)
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query):
        for doc in self.docs:
            if self._matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query):
        return FakeCursor(d for d in self.docs if self._matches(d, query))

    async def count_documents(self, query):
        return sum(1 for d in self.docs if self._matches(d, query))

    async def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if self._matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def index_information(self):
        return copy.deepcopy(self.indexes)

    async def create_index(self, keys, name=None, unique=False, **kwargs):
        info = {"key": list(keys), "v": 2}
        if unique:
            info["unique"] = True
        self.indexes[name] = info
        return name

    async def drop_index(self, name):
        del self.indexes[name]


class FakeDatabase:
    """Enough of AsyncIOMotorDatabase for the stores."""

    def __init__(self, name="migrationtest"):
        self.name = name
        self.collections = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def list_collection_names(self):
        return list(self.collections)

    async def create_collection(self, name):
        if name in self.collections:
            raise CollectionInvalid(f"collection {name} already exists")
        return self[name]


@pytest.fixture
def fake_db():
    """In-memory database with unique index enforcement."""
    return FakeDatabase()


@pytest.fixture
def fake_client(fake_db):
    """Client mock handing out the in-memory database."""
    client = MagicMock()
    client.__getitem__.return_value = fake_db
    return client


# Store mocks
@pytest.fixture
def mock_changelog_store():
    """Change log store whose coroutine methods are AsyncMocks."""
    store = MagicMock(spec=ChangeLogStore)
    store.ensure_index = AsyncMock()
    store.is_new = AsyncMock(return_value=True)
    store.append = AsyncMock()
    store.history = AsyncMock(return_value=[])
    return store


@pytest.fixture
def mock_lock_store():
    """Lock store that grants the lock by default."""
    lock = MagicMock(spec=LockStore)
    lock.initialize = AsyncMock()
    lock.acquire = AsyncMock(return_value=True)
    lock.release = AsyncMock()
    lock.is_held = AsyncMock(return_value=False)
    lock.holder = AsyncMock(return_value=None)
    return lock


@pytest.fixture
def mock_client():
    """MongoDB client mock. Indexing returns a database mock."""
    return MagicMock()


class ExecutionChecker:
    """Records which change bodies ran, in order."""

    def __init__(self):
        self.calls = []

    def execute(self, name):
        self.calls.append(name)


@pytest.fixture
def checker():
    return ExecutionChecker()
