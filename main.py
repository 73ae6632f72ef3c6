import asyncio
import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import Requester, community_of, ensure_community, require, requester_from_token
from config import settings
from database import db
from errors import ServiceError, ValidationError
from facilities import FacilityBookingManager
from notifications import ConnectionRegistry, admins_topic, registry, user_topic
from parking import GuestParkingManager
from schemas import (
    AssignParkingSlot,
    Availability,
    Booking,
    BookingAction,
    CreateBooking,
    CreateFacility,
    CreateGuestRequest,
    CreateParkingSlot,
    Facility,
    FacilityList,
    GuestRequest,
    GuestRequestAction,
    ParkingSlot,
    ParkingSlotList,
)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("urbangate.api")

app = FastAPI(title="UrbanGate - Facility & Parking Bookings API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = ValidationError("Invalid request", {"errors": jsonable_encoder(exc.errors())})
    logger.info("%s %s -> %d %s", request.method, request.url.path, err.status_code, err.code)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


# -------------------------------
# Dependencies
# -------------------------------

def _require_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def get_facility_manager() -> FacilityBookingManager:
    return FacilityBookingManager(_require_db()["facility"])


def get_parking_manager() -> GuestParkingManager:
    return GuestParkingManager(_require_db()["parking"])


def get_registry() -> ConnectionRegistry:
    return registry


@app.on_event("startup")
def startup():
    if db is not None:
        get_parking_manager().ensure_indexes()


# -------------------------------
# Utilities
# -------------------------------

def to_str_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def facility_out(doc: Dict[str, Any]) -> Facility:
    return Facility(**to_str_id(doc))


def slot_out(doc: Dict[str, Any]) -> ParkingSlot:
    return ParkingSlot(**to_str_id(doc))


# -------------------------------
# Root
# -------------------------------

@app.get("/")
def root():
    return {"message": "UrbanGate Bookings API"}


# -------------------------------
# Facilities
# -------------------------------

@app.post("/api/facilities", response_model=Facility, status_code=201)
def create_facility(
    payload: CreateFacility,
    user: Requester = Depends(require("facility.create")),
    facilities: FacilityBookingManager = Depends(get_facility_manager),
):
    doc = facilities.create_facility(
        community_of(user),
        name=payload.name,
        type=payload.type,
        description=payload.description,
        capacity=payload.capacity,
        image=payload.image,
        working_hours=payload.working_hours.model_dump() if payload.working_hours else None,
    )
    return facility_out(doc)


@app.get("/api/facilities", response_model=FacilityList)
def list_facilities(
    type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Requester = Depends(require("facility.list")),
    facilities: FacilityBookingManager = Depends(get_facility_manager),
):
    result = facilities.list_facilities(community_of(user), type=type, page=page, limit=limit)
    return {
        "facilities": [facility_out(f) for f in result["facilities"]],
        "pagination": result["pagination"],
    }


@app.get("/api/facilities/{facility_id}", response_model=Facility)
def get_facility(
    facility_id: str,
    user: Requester = Depends(require("facility.read")),
    facilities: FacilityBookingManager = Depends(get_facility_manager),
):
    doc = facilities.get_facility(facility_id)
    ensure_community(user, doc)
    return facility_out(doc)


@app.get("/api/facilities/{facility_id}/availability", response_model=Availability)
def facility_availability(
    facility_id: str,
    day: date = Query(..., alias="date"),
    user: Requester = Depends(require("facility.read")),
    facilities: FacilityBookingManager = Depends(get_facility_manager),
):
    ensure_community(user, facilities.get_facility(facility_id))
    return facilities.availability(facility_id, day)


@app.post("/api/facilities/{facility_id}/book", response_model=Booking, status_code=201)
def book_facility(
    facility_id: str,
    payload: CreateBooking,
    background_tasks: BackgroundTasks,
    user: Requester = Depends(require("facility.book")),
    facilities: FacilityBookingManager = Depends(get_facility_manager),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    facility = facilities.get_facility(facility_id)
    ensure_community(user, facility)
    booking = facilities.create_booking(facility_id, user.user_id, payload.start_time, payload.end_time)
    background_tasks.add_task(notifier.publish, admins_topic(facility["community_id"]), {
        "type": "booking_created",
        "facility_id": facility_id,
        "facility_name": facility.get("name"),
        "booking_id": booking["id"],
        "resident_id": user.user_id,
        "start_time": booking["start_time"].isoformat(),
        "end_time": booking["end_time"].isoformat(),
    })
    return booking


def _booking_action(action: str, payload: BookingAction, user: Requester, facilities: FacilityBookingManager,
                    notifier: ConnectionRegistry, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    ensure_community(user, facilities.get_facility(payload.facility_id))
    if action == "confirm":
        booking = facilities.confirm_booking(payload.facility_id, payload.booking_id, user.user_id)
    else:
        booking = facilities.cancel_booking(payload.facility_id, payload.booking_id, user.user_id)
    background_tasks.add_task(notifier.publish, user_topic(booking["resident_id"]), {
        "type": "booking_status",
        "facility_id": payload.facility_id,
        "booking_id": booking["id"],
        "status": booking["status"],
    })
    return booking


@app.post("/api/facilities/confirm-booking", response_model=Booking)
def confirm_booking(
    payload: BookingAction,
    background_tasks: BackgroundTasks,
    user: Requester = Depends(require("facility.confirm")),
    facilities: FacilityBookingManager = Depends(get_facility_manager),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    return _booking_action("confirm", payload, user, facilities, notifier, background_tasks)


@app.post("/api/facilities/cancel-booking", response_model=Booking)
def cancel_booking(
    payload: BookingAction,
    background_tasks: BackgroundTasks,
    user: Requester = Depends(require("facility.cancel")),
    facilities: FacilityBookingManager = Depends(get_facility_manager),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    return _booking_action("cancel", payload, user, facilities, notifier, background_tasks)


# -------------------------------
# Parking
# -------------------------------

@app.get("/api/parking", response_model=ParkingSlotList)
def list_parking_slots(
    type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: Requester = Depends(require("parking.list")),
    parking: GuestParkingManager = Depends(get_parking_manager),
):
    result = parking.list_slots(community_of(user), type=type, page=page, limit=limit)
    return {
        "parking_slots": [slot_out(s) for s in result["parking_slots"]],
        "pagination": result["pagination"],
    }


@app.get("/api/parking/resident/my-slot", response_model=ParkingSlot)
def my_parking_slot(
    user: Requester = Depends(require("parking.my_slot")),
    parking: GuestParkingManager = Depends(get_parking_manager),
):
    return slot_out(parking.resident_slot(user.user_id))


@app.get("/api/parking/{slot_id}", response_model=ParkingSlot)
def get_parking_slot(
    slot_id: str,
    user: Requester = Depends(require("parking.read")),
    parking: GuestParkingManager = Depends(get_parking_manager),
):
    doc = parking.get_slot(slot_id)
    ensure_community(user, doc)
    return slot_out(doc)


@app.post("/api/parking/create", response_model=ParkingSlot, status_code=201)
def create_parking_slot(
    payload: CreateParkingSlot,
    user: Requester = Depends(require("parking.create")),
    parking: GuestParkingManager = Depends(get_parking_manager),
):
    doc = parking.create_slot(community_of(user), payload.slot_number, payload.type, floor=payload.floor, block=payload.block)
    return slot_out(doc)


@app.post("/api/parking/assign", response_model=ParkingSlot)
def assign_parking_slot(
    payload: AssignParkingSlot,
    user: Requester = Depends(require("parking.assign")),
    parking: GuestParkingManager = Depends(get_parking_manager),
):
    ensure_community(user, parking.get_slot(payload.slot_id))
    return slot_out(parking.assign_slot(payload.slot_id, payload.resident_id))


@app.post("/api/parking/request-guest", response_model=GuestRequest, status_code=201)
def request_guest_parking(
    payload: CreateGuestRequest,
    background_tasks: BackgroundTasks,
    user: Requester = Depends(require("parking.request_guest")),
    parking: GuestParkingManager = Depends(get_parking_manager),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    slot = parking.get_slot(payload.slot_id)
    ensure_community(user, slot)
    entry = parking.create_guest_request(payload.slot_id, user.user_id, payload.from_date, payload.to_date)
    background_tasks.add_task(notifier.publish, admins_topic(slot["community_id"]), {
        "type": "guest_request_created",
        "slot_id": payload.slot_id,
        "slot_number": slot.get("slot_number"),
        "request_id": entry["id"],
        "requested_by": user.user_id,
        "from_date": entry["from_date"].isoformat(),
        "to_date": entry["to_date"].isoformat(),
    })
    return entry


def _guest_action(action: str, payload: GuestRequestAction, user: Requester, parking: GuestParkingManager,
                  notifier: ConnectionRegistry, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    ensure_community(user, parking.get_slot(payload.slot_id))
    if action == "approve":
        entry = parking.approve_guest_request(payload.slot_id, payload.request_id, user.user_id)
    else:
        entry = parking.reject_guest_request(payload.slot_id, payload.request_id, user.user_id)
    background_tasks.add_task(notifier.publish, user_topic(entry["requested_by"]), {
        "type": "guest_request_status",
        "slot_id": payload.slot_id,
        "request_id": entry["id"],
        "status": entry["status"],
    })
    return entry


@app.post("/api/parking/approve-guest", response_model=GuestRequest)
def approve_guest_parking(
    payload: GuestRequestAction,
    background_tasks: BackgroundTasks,
    user: Requester = Depends(require("parking.approve_guest")),
    parking: GuestParkingManager = Depends(get_parking_manager),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    return _guest_action("approve", payload, user, parking, notifier, background_tasks)


@app.post("/api/parking/reject-guest", response_model=GuestRequest)
def reject_guest_parking(
    payload: GuestRequestAction,
    background_tasks: BackgroundTasks,
    user: Requester = Depends(require("parking.reject_guest")),
    parking: GuestParkingManager = Depends(get_parking_manager),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    return _guest_action("reject", payload, user, parking, notifier, background_tasks)


# -------------------------------
# Notifications
# -------------------------------

def log_failed_delivery(task: asyncio.Task, user_id: str) -> None:
    if task.done() and not task.cancelled() and task.exception() is not None:
        logger.warning("Notification delivery to %s stopped: %r", user_id, task.exception())


@app.websocket("/ws")
async def notifications_ws(
    websocket: WebSocket,
    token: str = Query(...),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    try:
        user = requester_from_token(token)
    except HTTPException:
        await websocket.close(code=1008)
        return

    topics = [user_topic(user.user_id)]
    if user.role == "admin" and user.community_id:
        topics.append(admins_topic(user.community_id))

    await websocket.accept()
    sub = notifier.register(topics)

    async def pump():
        while True:
            await websocket.send_json(await sub.get())

    sender = asyncio.create_task(pump())
    try:
        await websocket.send_json({"type": "connected", "topics": sorted(sub.topics)})
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        log_failed_delivery(sender, user.user_id)
        sender.cancel()
        notifier.deregister(sub)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
