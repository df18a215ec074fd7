"""Shared fixtures: an in-memory stand-in for the Firestore client API."""

import copy
import threading
import time
from datetime import datetime

import pytest
from google.api_core import exceptions as gcloud_exceptions
from google.cloud import firestore

from src.core.models import Habit, User
from src.shell.firestore_client import HabitFirestoreClient


class FakeSnapshot:
    """Document snapshot with the attributes the shell reads."""

    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeQuery:
    """Chainable where/limit query over one collection."""

    def __init__(self, db, path, filters=(), max_results=None):
        self._db = db
        self._path = path
        self._filters = list(filters)
        self._limit = max_results

    def where(self, field, op, value):
        return FakeQuery(self._db, self._path, self._filters + [(field, op, value)], self._limit)

    def limit(self, count):
        return FakeQuery(self._db, self._path, self._filters, count)

    def _matches(self, data):
        ops = {
            "==": lambda a, b: a == b,
            ">=": lambda a, b: a >= b,
            "<=": lambda a, b: a <= b,
            "<": lambda a, b: a < b,
            ">": lambda a, b: a > b,
        }
        return all(
            field in data and ops[op](data[field], value) for field, op, value in self._filters
        )

    def stream(self):
        self._db.check_available()
        results = []
        for doc_path, data in self._db.snapshot_collection(self._path):
            if self._matches(data):
                results.append(FakeSnapshot(doc_path.rsplit("/", 1)[-1], copy.deepcopy(data)))
        if self._limit is not None:
            results = results[: self._limit]
        return iter(results)


class FakeCollection(FakeQuery):
    def document(self, doc_id):
        return FakeDocumentRef(self._db, f"{self._path}/{doc_id}")


class FakeDocumentRef:
    def __init__(self, db, path):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def collection(self, name):
        return FakeCollection(self._db, f"{self.path}/{name}")

    def get(self, transaction=None):
        self._db.check_available()
        data = self._db.read(self.path)
        # Widen the window between read and write for race tests
        if self._db.read_delay:
            time.sleep(self._db.read_delay)
        return FakeSnapshot(self.id, data)

    def set(self, data):
        self._db.check_available()
        self._db.write(self.path, data)

    def create(self, data):
        self._db.check_available()
        if self._db.read(self.path) is not None:
            raise gcloud_exceptions.AlreadyExists(f"Document already exists: {self.path}")
        self._db.write(self.path, data)

    def update(self, data):
        self._db.check_available()
        current = self._db.read(self.path)
        if current is None:
            raise gcloud_exceptions.NotFound(f"No document to update: {self.path}")
        current.update(data)
        self._db.write(self.path, current)

    def delete(self):
        self._db.check_available()
        self._db.remove(self.path)


class FakeTransaction:
    """Applies writes immediately; the shell's lock provides isolation."""

    def create(self, ref, data):
        ref.create(data)

    def set(self, ref, data):
        ref.set(data)

    def update(self, ref, data):
        ref.update(data)

    def delete(self, ref):
        ref.delete()


class FakeBatch:
    """Queues creates and applies them all or none on commit."""

    def __init__(self, db):
        self._db = db
        self._creates = []

    def create(self, ref, data):
        self._creates.append((ref.path, copy.deepcopy(data)))

    def commit(self):
        self._db.commit_creates(self._creates)


class FakeFirestore:
    """Path-keyed document store mimicking firestore.Client."""

    def __init__(self):
        self._docs: dict[str, dict] = {}
        self._mutex = threading.Lock()
        self.read_delay = 0.0
        self.unavailable = False

    def check_available(self):
        if self.unavailable:
            raise gcloud_exceptions.ServiceUnavailable("Firestore is unavailable")

    def collection(self, name):
        return FakeCollection(self, name)

    def transaction(self):
        return FakeTransaction()

    def batch(self):
        return FakeBatch(self)

    def read(self, path):
        with self._mutex:
            data = self._docs.get(path)
            return copy.deepcopy(data) if data is not None else None

    def write(self, path, data):
        with self._mutex:
            self._docs[path] = copy.deepcopy(data)

    def remove(self, path):
        with self._mutex:
            self._docs.pop(path, None)

    def commit_creates(self, creates):
        self.check_available()
        with self._mutex:
            for path, _ in creates:
                if path in self._docs:
                    raise gcloud_exceptions.AlreadyExists(f"Document already exists: {path}")
            for path, data in creates:
                self._docs[path] = data

    def snapshot_collection(self, collection_path):
        prefix = collection_path + "/"
        with self._mutex:
            return [
                (path, data)
                for path, data in self._docs.items()
                if path.startswith(prefix) and "/" not in path[len(prefix):]
            ]


@pytest.fixture
def fake_db():
    """Empty in-memory Firestore."""
    return FakeFirestore()


@pytest.fixture
def db_client(fake_db, monkeypatch):
    """HabitFirestoreClient wired to the fake store.

    Transactions run the wrapped function directly against the fake.
    """
    monkeypatch.setattr(firestore, "transactional", lambda fn: fn)
    client = HabitFirestoreClient()
    client._client = fake_db
    return client


@pytest.fixture
def make_user(fake_db):
    """Create a user document and return its id."""

    def _make_user(user_id="user-0001-aaaaaaaa", total_xp=0, username="tester"):
        user = User(
            username=username,
            email=f"{username}@example.com",
            api_key_hash=user_id,
            total_xp=total_xp,
        )
        fake_db.write(f"users/{user_id}", user.model_dump())
        return user_id

    return _make_user


@pytest.fixture
def make_habit(fake_db):
    """Create a habit document and return the Habit."""

    def _make_habit(user_id, xp_reward=50, name="Meditate"):
        habit = Habit(user_id=user_id, name=name, xp_reward=xp_reward, created_at=datetime(2024, 12, 1))
        fake_db.write(f"users/{user_id}/habits/{habit.id}", habit.model_dump(mode="json"))
        return habit

    return _make_habit
