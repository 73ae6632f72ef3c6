"""
Database Schemas for UrbanGate - Facility & Guest Parking Bookings

Each resource is a MongoDB document with its reservations embedded:
- Facility    -> "facility"  (bookings[])
- ParkingSlot -> "parking"   (guest_requests[])

Request bodies accepted by the API live at the bottom of this module.
"""
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

BookingStatus = Literal["pending", "confirmed", "cancelled"]
GuestRequestStatus = Literal["pending", "approved", "rejected"]
FacilityType = Literal["clubhouse", "gym", "guest-room", "tennis-court", "pool", "other"]
SlotType = Literal["resident", "guest"]


class WorkingHours(BaseModel):
    open: str = Field("09:00", description="HH:MM 24h, informational")
    close: str = Field("22:00", description="HH:MM 24h, informational")


class Booking(BaseModel):
    """
    Embedded in facility.bookings
    Interval is half-open: [start_time, end_time)
    """
    id: str
    resident_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus = "pending"
    booked_at: datetime


class Facility(BaseModel):
    """
    Facilities collection schema
    Collection name: "facility"
    """
    id: str
    community_id: str
    name: str = Field(..., description="Facility display name")
    description: Optional[str] = None
    type: FacilityType
    capacity: Optional[int] = Field(None, ge=0, description="Max confirmed overlapping bookings; None = unlimited")
    image: Optional[str] = None
    working_hours: WorkingHours = Field(default_factory=WorkingHours)
    bookings: List[Booking] = Field(default_factory=list)


class GuestRequest(BaseModel):
    """
    Embedded in parking.guest_requests
    Range is half-open: [from_date, to_date)
    """
    id: str
    requested_by: str
    request_date: datetime
    from_date: datetime
    to_date: datetime
    status: GuestRequestStatus = "pending"
    approved_by: Optional[str] = None


class ParkingSlot(BaseModel):
    """
    Parking collection schema
    Collection name: "parking"
    slot_number is unique per community.
    """
    id: str
    community_id: str
    slot_number: str
    type: SlotType
    resident_id: Optional[str] = None
    is_available: bool = True
    floor: Optional[str] = None
    block: Optional[str] = None
    guest_requests: List[GuestRequest] = Field(default_factory=list)


class Pagination(BaseModel):
    total: int
    pages: int
    current_page: int


class FacilityList(BaseModel):
    facilities: List[Facility]
    pagination: Pagination


class ParkingSlotList(BaseModel):
    parking_slots: List[ParkingSlot]
    pagination: Pagination


class BookedWindow(BaseModel):
    start: datetime
    end: datetime
    status: BookingStatus


class Availability(BaseModel):
    facility_id: str
    date: date
    unavailable: List[BookedWindow]
    hours: WorkingHours


# -------------------------------
# Request bodies
# -------------------------------

class CreateFacility(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: FacilityType
    capacity: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    working_hours: Optional[WorkingHours] = None


class CreateBooking(BaseModel):
    start_time: datetime
    end_time: datetime


class BookingAction(BaseModel):
    facility_id: str
    booking_id: str


class CreateParkingSlot(BaseModel):
    slot_number: str = Field(..., min_length=1)
    type: SlotType
    floor: Optional[str] = None
    block: Optional[str] = None


class AssignParkingSlot(BaseModel):
    slot_id: str
    resident_id: str


class CreateGuestRequest(BaseModel):
    slot_id: str
    from_date: datetime
    to_date: datetime


class GuestRequestAction(BaseModel):
    slot_id: str
    request_id: str
