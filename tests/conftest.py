"""
Test Configuration and Fixtures

Managers run against FakeCollection, an in-memory stand-in for the part of
pymongo's Collection API they use, wired into the app through FastAPI
dependency overrides.
"""
import copy
import os
import threading
from datetime import datetime, timezone
from types import SimpleNamespace

import jwt
import pytest

os.environ["DATABASE_URL"] = ""
os.environ.setdefault("JWT_SECRET", "test_secret")

import bson  # noqa: E402
from bson.codec_options import CodecOptions  # noqa: E402
from pymongo.errors import DuplicateKeyError  # noqa: E402

from config import settings  # noqa: E402
from facilities import FacilityBookingManager  # noqa: E402
from notifications import ConnectionRegistry  # noqa: E402
from parking import GuestParkingManager  # noqa: E402

NOW = datetime(2023, 12, 31, 8, 0, tzinfo=timezone.utc)
COMMUNITY = "community-1"
OTHER_COMMUNITY = "community-2"


def fixed_clock() -> datetime:
    return NOW


# ============================================================================
# FAKE MONGO
# ============================================================================

STORED = CodecOptions(tz_aware=True, tzinfo=timezone.utc)


def _stored(doc):
    # what a tz_aware client reads back: millisecond datetimes, UTC
    return bson.decode(bson.encode(doc), codec_options=STORED)


def _match_value(doc, key, cond):
    if isinstance(cond, dict) and "$exists" in cond:
        return (key in doc) == cond["$exists"]
    return doc.get(key) == cond


def _matches(doc, query):
    return all(_match_value(doc, k, v) for k, v in query.items())


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def skip(self, n):
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    def __iter__(self):
        return iter(self._docs)


class FakeCollection:
    """
    Copies on every read and write like a real database would, and stores
    documents through a BSON round trip.
    `before_replace` runs once just before the next replace_one, which lets
    a test slip a competing write between a load and a save.
    """

    def __init__(self):
        self.docs = {}
        self.lock = threading.Lock()
        self.before_replace = None
        self.replace_calls = 0

    def insert_one(self, doc):
        with self.lock:
            if doc["_id"] in self.docs:
                raise DuplicateKeyError("duplicate _id")
            self.docs[doc["_id"]] = _stored(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    def find_one(self, query):
        with self.lock:
            for doc in self.docs.values():
                if _matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    def find(self, query=None):
        with self.lock:
            rows = [copy.deepcopy(d) for d in self.docs.values() if _matches(d, query or {})]
        return FakeCursor(rows)

    def count_documents(self, query):
        with self.lock:
            return sum(1 for d in self.docs.values() if _matches(d, query))

    def replace_one(self, query, replacement):
        hook, self.before_replace = self.before_replace, None
        if hook is not None:
            hook()
        with self.lock:
            self.replace_calls += 1
            for _id, doc in self.docs.items():
                if _matches(doc, query):
                    self.docs[_id] = _stored(replacement)
                    return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def create_index(self, keys, unique=False):
        return "_".join(f"{k}_{d}" for k, d in keys)


# ============================================================================
# MANAGER FIXTURES
# ============================================================================

@pytest.fixture
def facility_collection():
    return FakeCollection()


@pytest.fixture
def parking_collection():
    return FakeCollection()


@pytest.fixture
def facilities(facility_collection):
    return FacilityBookingManager(facility_collection, clock=fixed_clock)


@pytest.fixture
def parking(parking_collection):
    return GuestParkingManager(parking_collection, clock=fixed_clock)


@pytest.fixture
def gym(facilities):
    return facilities.create_facility(COMMUNITY, name="Gym", type="gym")


@pytest.fixture
def guest_slot(parking):
    return parking.create_slot(COMMUNITY, "G-1", "guest")


# ============================================================================
# API FIXTURES
# ============================================================================

def make_token(user_id, role, community_id=COMMUNITY):
    payload = {"sub": user_id, "role": role}
    if community_id:
        payload["community_id"] = community_id
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user_id, role, community_id=COMMUNITY):
    return {"Authorization": f"Bearer {make_token(user_id, role, community_id)}"}


@pytest.fixture
def notifier():
    return ConnectionRegistry()


@pytest.fixture
def client(facilities, parking, notifier):
    from fastapi.testclient import TestClient

    from main import app, get_facility_manager, get_parking_manager, get_registry

    app.dependency_overrides[get_facility_manager] = lambda: facilities
    app.dependency_overrides[get_parking_manager] = lambda: parking
    app.dependency_overrides[get_registry] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin():
    return auth_headers("admin-1", "admin")


@pytest.fixture
def alice():
    return auth_headers("alice", "resident")


@pytest.fixture
def bob():
    return auth_headers("bob", "resident")
