"""
MongoDB access

`db` is None when DATABASE_URL is not configured. Facilities and parking
slots are stored one document per resource with their reservations
embedded, so every booking operation is a read-modify-write of exactly one
document. ResourceStore makes that write atomic with a version check.
"""
import logging
from typing import Any, Callable, Dict, Optional, TypeVar, Union

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient

from config import settings
from errors import ConcurrentUpdateError, NotFoundError, ValidationError
from intervals import now_utc

logger = logging.getLogger("urbangate.store")

T = TypeVar("T")

_client: Optional[MongoClient] = None
db = None

if settings.DATABASE_URL:
    _client = MongoClient(settings.DATABASE_URL, tz_aware=True)
    db = _client[settings.DATABASE_NAME]


def parse_object_id(value: str, label: str = "id") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}")


class ResourceStore:
    """
    Versioned single-document store.

    mutate() loads the document, lets the caller check and change it in
    memory, then writes it back only if nobody else wrote in between. On a
    lost race the whole check runs again against the fresh document, so two
    writers can never both act on the same stale view.
    """

    def __init__(self, collection, label: str, max_attempts: Optional[int] = None):
        self.collection = collection
        self.label = label
        self.max_attempts = max_attempts or settings.WRITE_MAX_ATTEMPTS

    def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(doc)
        now = now_utc()
        doc.setdefault("_id", ObjectId())
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        doc["version"] = 0
        self.collection.insert_one(doc)
        return doc

    def load(self, resource_id: Union[str, ObjectId]) -> Dict[str, Any]:
        _id = resource_id if isinstance(resource_id, ObjectId) else parse_object_id(resource_id, f"{self.label} id")
        doc = self.collection.find_one({"_id": _id})
        if doc is None:
            raise NotFoundError(f"{self.label.capitalize()} not found")
        return doc

    def save(self, doc: Dict[str, Any]) -> bool:
        expected = doc.get("version")
        # documents written outside insert() carry no version yet
        version_filter = expected if expected is not None else {"$exists": False}
        updated = {**doc, "version": (expected or 0) + 1, "updated_at": now_utc()}
        result = self.collection.replace_one({"_id": doc["_id"], "version": version_filter}, updated)
        if result.matched_count == 0:
            return False
        doc.update(updated)
        return True

    def mutate(self, resource_id: Union[str, ObjectId], change: Callable[[Dict[str, Any]], T]) -> T:
        """Apply change(doc) and persist atomically; errors raised by change() abort without writing."""
        for attempt in range(1, self.max_attempts + 1):
            doc = self.load(resource_id)
            result = change(doc)
            if self.save(doc):
                return result
            logger.info("%s %s modified concurrently, retrying (attempt %d)", self.label, resource_id, attempt)
        logger.warning("%s %s: gave up after %d concurrent writes", self.label, resource_id, self.max_attempts)
        raise ConcurrentUpdateError(f"{self.label.capitalize()} is being modified, please try again")
