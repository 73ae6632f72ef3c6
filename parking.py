"""
Guest parking requests

Guest slots hold date-range requests from residents. Only approved requests
are exclusive: a new request is refused when it overlaps an approved one,
or when the same resident already has an overlapping pending request.
Pending requests of different residents may overlap; the first one an admin
approves wins and later approvals of overlapping requests fail.
"""
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from database import ResourceStore
from errors import (
    AlreadyProcessedError,
    ConflictError,
    DuplicateRequestError,
    NotFoundError,
    ValidationError,
)
from intervals import as_utc, now_utc, overlaps

logger = logging.getLogger("urbangate.parking")


def find_request(slot: Dict[str, Any], request_id: str) -> Dict[str, Any]:
    for r in slot.get("guest_requests", []):
        if r["id"] == request_id:
            return r
    raise NotFoundError("Request not found")


def _conflict(message: str, r: Dict[str, Any]) -> ConflictError:
    return ConflictError(
        message,
        {"from": r["from_date"].isoformat(), "to": r["to_date"].isoformat(), "status": r["status"]},
    )


class GuestParkingManager:
    def __init__(self, collection, clock: Callable[[], datetime] = now_utc, max_attempts: Optional[int] = None):
        self.collection = collection
        self.store = ResourceStore(collection, "parking slot", max_attempts=max_attempts)
        self.clock = clock

    def ensure_indexes(self) -> None:
        self.collection.create_index([("community_id", 1), ("slot_number", 1)], unique=True)

    # -------------------------------
    # Slots
    # -------------------------------

    def create_slot(
        self,
        community_id: str,
        slot_number: str,
        type: str,
        floor: Optional[str] = None,
        block: Optional[str] = None,
    ) -> Dict[str, Any]:
        if self.collection.find_one({"community_id": community_id, "slot_number": slot_number}):
            raise ValidationError(f"Slot number {slot_number} already exists")
        try:
            slot = self.store.insert({
                "community_id": community_id,
                "slot_number": slot_number,
                "type": type,
                "resident_id": None,
                "is_available": True,
                "floor": floor,
                "block": block,
                "guest_requests": [],
            })
        except DuplicateKeyError:
            raise ValidationError(f"Slot number {slot_number} already exists")
        logger.info("Parking slot %s (%s) created in community %s", slot["_id"], slot_number, community_id)
        return slot

    def get_slot(self, slot_id: str) -> Dict[str, Any]:
        return self.store.load(slot_id)

    def list_slots(self, community_id: str, type: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        query: Dict[str, Any] = {"community_id": community_id}
        if type:
            query["type"] = type
        skip = (page - 1) * limit
        rows = list(self.collection.find(query).skip(skip).limit(limit))
        total = self.collection.count_documents(query)
        return {
            "parking_slots": rows,
            "pagination": {"total": total, "pages": math.ceil(total / limit), "current_page": page},
        }

    def resident_slot(self, resident_id: str) -> Dict[str, Any]:
        slot = self.collection.find_one({"resident_id": resident_id, "type": "resident"})
        if slot is None:
            raise NotFoundError("No parking slot assigned")
        return slot

    def assign_slot(self, slot_id: str, resident_id: str) -> Dict[str, Any]:
        def assign(slot: Dict[str, Any]) -> Dict[str, Any]:
            if slot["type"] != "resident":
                raise ValidationError("Only resident parking slots can be assigned")
            slot["resident_id"] = resident_id
            slot["is_available"] = False
            return slot

        slot = self.store.mutate(slot_id, assign)
        logger.info("Parking slot %s assigned to %s", slot_id, resident_id)
        return slot

    # -------------------------------
    # Guest requests
    # -------------------------------

    def create_guest_request(self, slot_id: str, requester_id: str, from_date: datetime, to_date: datetime) -> Dict[str, Any]:
        from_date, to_date = as_utc(from_date), as_utc(to_date)

        def request(slot: Dict[str, Any]) -> Dict[str, Any]:
            if slot["type"] != "guest":
                raise ValidationError("Only guest parking slots can be requested")
            if from_date >= to_date:
                raise ValidationError("Invalid date range: from must be before to")
            if from_date < self.clock():
                raise ValidationError("Cannot request parking in the past")

            requests = slot.setdefault("guest_requests", [])
            for r in requests:
                if r["status"] == "approved" and overlaps(from_date, to_date, r["from_date"], r["to_date"]):
                    raise _conflict("Slot already booked for these dates", r)
            for r in requests:
                if (
                    r["status"] == "pending"
                    and r["requested_by"] == requester_id
                    and overlaps(from_date, to_date, r["from_date"], r["to_date"])
                ):
                    raise DuplicateRequestError(
                        "You already have a pending request for these dates",
                        {"request_id": r["id"]},
                    )

            entry = {
                "id": str(ObjectId()),
                "requested_by": requester_id,
                "request_date": as_utc(self.clock()),
                "from_date": from_date,
                "to_date": to_date,
                "status": "pending",
                "approved_by": None,
            }
            requests.append(entry)
            return entry

        entry = self.store.mutate(slot_id, request)
        logger.info("Guest request %s on slot %s by %s", entry["id"], slot_id, requester_id)
        return entry

    def approve_guest_request(self, slot_id: str, request_id: str, admin_id: str) -> Dict[str, Any]:
        def approve(slot: Dict[str, Any]) -> Dict[str, Any]:
            entry = find_request(slot, request_id)
            if entry["status"] != "pending":
                raise AlreadyProcessedError(f"Request already {entry['status']}", {"status": entry["status"]})
            for r in slot["guest_requests"]:
                if (
                    r["id"] != request_id
                    and r["status"] == "approved"
                    and overlaps(entry["from_date"], entry["to_date"], r["from_date"], r["to_date"])
                ):
                    raise _conflict("Another approved request overlaps these dates", r)
            entry["status"] = "approved"
            entry["approved_by"] = admin_id
            return entry

        entry = self.store.mutate(slot_id, approve)
        logger.info("Guest request %s on slot %s approved by %s", request_id, slot_id, admin_id)
        return entry

    def reject_guest_request(self, slot_id: str, request_id: str, admin_id: str) -> Dict[str, Any]:
        # rejects from any status, approved and rejected included
        def reject(slot: Dict[str, Any]) -> Dict[str, Any]:
            entry = find_request(slot, request_id)
            entry["status"] = "rejected"
            return entry

        entry = self.store.mutate(slot_id, reject)
        logger.info("Guest request %s on slot %s rejected by %s", request_id, slot_id, admin_id)
        return entry
