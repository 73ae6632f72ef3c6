"""
Facility booking

Bookings live inside their facility document. A new booking is refused
when it overlaps any pending or confirmed booking of the same facility, or
when the confirmed bookings overlapping it already fill the facility's
capacity. Admins later confirm or cancel; neither re-checks overlap.
"""
import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId

from database import ResourceStore
from errors import CapacityExceededError, ConflictError, NotFoundError, ValidationError
from intervals import as_utc, now_utc, overlaps

logger = logging.getLogger("urbangate.facilities")

ACTIVE_STATUSES = ("pending", "confirmed")
DEFAULT_WORKING_HOURS = {"open": "09:00", "close": "22:00"}


def find_booking(facility: Dict[str, Any], booking_id: str) -> Dict[str, Any]:
    for b in facility.get("bookings", []):
        if b["id"] == booking_id:
            return b
    raise NotFoundError("Booking not found")


class FacilityBookingManager:
    def __init__(self, collection, clock: Callable[[], datetime] = now_utc, max_attempts: Optional[int] = None):
        self.collection = collection
        self.store = ResourceStore(collection, "facility", max_attempts=max_attempts)
        self.clock = clock

    # -------------------------------
    # Facilities
    # -------------------------------

    def create_facility(
        self,
        community_id: str,
        name: str,
        type: str,
        description: Optional[str] = None,
        capacity: Optional[int] = None,
        image: Optional[str] = None,
        working_hours: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        facility = self.store.insert({
            "community_id": community_id,
            "name": name,
            "description": description,
            "type": type,
            "capacity": capacity,
            "image": image,
            "working_hours": working_hours or dict(DEFAULT_WORKING_HOURS),
            "bookings": [],
        })
        logger.info("Facility %s (%s) created in community %s", facility["_id"], name, community_id)
        return facility

    def get_facility(self, facility_id: str) -> Dict[str, Any]:
        return self.store.load(facility_id)

    def list_facilities(self, community_id: str, type: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        query: Dict[str, Any] = {"community_id": community_id}
        if type:
            query["type"] = type
        skip = (page - 1) * limit
        rows = list(self.collection.find(query).skip(skip).limit(limit))
        total = self.collection.count_documents(query)
        return {
            "facilities": rows,
            "pagination": {"total": total, "pages": math.ceil(total / limit), "current_page": page},
        }

    def availability(self, facility_id: str, day: date) -> Dict[str, Any]:
        """Non-cancelled bookings touching the given UTC day."""
        facility = self.store.load(facility_id)
        day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        day_end = day_start + timedelta(days=1)
        taken = [
            {"start": b["start_time"], "end": b["end_time"], "status": b["status"]}
            for b in facility.get("bookings", [])
            if b["status"] in ACTIVE_STATUSES and overlaps(day_start, day_end, b["start_time"], b["end_time"])
        ]
        taken.sort(key=lambda w: w["start"])
        return {
            "facility_id": str(facility["_id"]),
            "date": day,
            "unavailable": taken,
            "hours": facility.get("working_hours") or DEFAULT_WORKING_HOURS,
        }

    # -------------------------------
    # Bookings
    # -------------------------------

    def create_booking(self, facility_id: str, resident_id: str, start: datetime, end: datetime) -> Dict[str, Any]:
        start, end = as_utc(start), as_utc(end)
        if start >= end:
            raise ValidationError("Invalid time range: start must be before end")
        if start < self.clock():
            raise ValidationError("Cannot book a time in the past")

        def book(facility: Dict[str, Any]) -> Dict[str, Any]:
            bookings: List[Dict[str, Any]] = facility.setdefault("bookings", [])
            for b in bookings:
                if b["status"] in ACTIVE_STATUSES and overlaps(start, end, b["start_time"], b["end_time"]):
                    raise ConflictError(
                        "Time slot not available",
                        {"start": b["start_time"].isoformat(), "end": b["end_time"].isoformat(), "status": b["status"]},
                    )

            capacity = facility.get("capacity")
            if capacity is not None:
                confirmed = sum(
                    1 for b in bookings
                    if b["status"] == "confirmed" and overlaps(start, end, b["start_time"], b["end_time"])
                )
                if confirmed >= capacity:
                    raise CapacityExceededError(
                        "Facility is fully booked for this time",
                        {"capacity": capacity, "confirmed": confirmed},
                    )

            booking = {
                "id": str(ObjectId()),
                "resident_id": resident_id,
                "start_time": start,
                "end_time": end,
                "status": "pending",
                "booked_at": as_utc(self.clock()),
            }
            bookings.append(booking)
            return booking

        booking = self.store.mutate(facility_id, book)
        logger.info("Booking %s created on facility %s by %s", booking["id"], facility_id, resident_id)
        return booking

    def _transition(self, facility_id: str, booking_id: str, status: str, admin_id: str) -> Dict[str, Any]:
        def apply(facility: Dict[str, Any]) -> Dict[str, Any]:
            booking = find_booking(facility, booking_id)
            booking["status"] = status
            return booking

        booking = self.store.mutate(facility_id, apply)
        logger.info("Booking %s on facility %s %s by %s", booking_id, facility_id, status, admin_id)
        return booking

    def confirm_booking(self, facility_id: str, booking_id: str, admin_id: str) -> Dict[str, Any]:
        # no overlap re-check and no guard on cancelled bookings
        return self._transition(facility_id, booking_id, "confirmed", admin_id)

    def cancel_booking(self, facility_id: str, booking_id: str, admin_id: str) -> Dict[str, Any]:
        return self._transition(facility_id, booking_id, "cancelled", admin_id)
