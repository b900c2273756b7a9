import logging
from datetime import date, timedelta
from typing import List, Optional
from uuid import UUID

import pydantic

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Room types & rates
    CreateRoomTypeRequest, UpdateRatesRequest, RoomTypeResponse, RateCalendarResponse,
    # Rooms
    CreateRoomRequest, UpdateRoomStatusRequest, RoomResponse,
    # Booking rules
    CreateBookingRuleRequest, BookingRuleResponse, RuleCheckResponse,
    # Reservations
    CreateReservationRequest, ModifyDatesRequest, ChangeStatusRequest, AddPaymentRequest,
    ReservationResponse, QuoteResponse, StayBoundField,
    # Auth
    Token, UserResponse
)
from api.dependencies import get_current_active_user, fake_users_db, get_user, require_roles
from infrastructure.security import verify_password, create_access_token, ACCESS_TOKEN_EXPIRE_MINUTES
from domain.auth import User

from application.services import (
    BookingRuleService, RateCalendarService, ReservationService, RoomService
)
from infrastructure.repositories.in_memory_repositories import (
    InMemoryBookingRuleRepository, InMemoryReservationRepository,
    InMemoryRoomRepository, InMemoryRoomTypeRepository
)
from config import settings
from domain.booking_rules import BookingRule
from domain.entities import Reservation
from domain.enums import (
    PaymentStatus, ReservationStatus, RoomStatus, RuleType, UserRole
)
from domain.exceptions import (
    BookingEngineError, CapacityExceeded, IdentifierConflict, InvalidStatusTransition,
    NotFound, RuleViolation, ValidationError
)
from domain.value_objects import GuestInfo, RateOverride

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Reservation availability, booking rules, rate calendar and reservation lifecycle",
    version="1.0.0",
    debug=settings.DEBUG
)

# Initialize repositories
reservation_repo = InMemoryReservationRepository()
room_repo = InMemoryRoomRepository()
room_type_repo = InMemoryRoomTypeRepository()
booking_rule_repo = InMemoryBookingRuleRepository()

# Dependency injection
def get_reservation_service() -> ReservationService:
    return ReservationService(reservation_repo, room_repo, room_type_repo, booking_rule_repo)

def get_rate_calendar_service() -> RateCalendarService:
    return RateCalendarService(room_type_repo)

def get_room_service() -> RoomService:
    return RoomService(room_repo, room_type_repo)

def get_booking_rule_service() -> BookingRuleService:
    return BookingRuleService(booking_rule_repo)

manager_or_admin = require_roles(UserRole.ADMIN, UserRole.MANAGER)

# ============================================================================
# ERROR HANDLING
# ============================================================================

_ERROR_STATUS_CODES = (
    (RuleViolation, 400),
    (ValidationError, 400),
    (NotFound, 404),
    (CapacityExceeded, 409),
    (InvalidStatusTransition, 409),
    (IdentifierConflict, 503),
)

@app.exception_handler(BookingEngineError)
async def booking_engine_error_handler(request: Request, exc: BookingEngineError):
    status_code = next(
        (code for error_type, code in _ERROR_STATUS_CODES if isinstance(exc, error_type)), 400
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"detail": exc.message, **exc.details}),
    )

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.value for item in ReservationStatus],
        "description": "Reservation status values: confirmed, checked-in, checked-out, cancelled, no-show"
    }

@app.get("/api/enums/payment-status", tags=["Enum Reference"])
async def get_payment_statuses():
    """Get all PaymentStatus enum values"""
    return {
        "values": [item.value for item in PaymentStatus],
        "description": "Payment status values: pending, partially_paid, paid, refunded"
    }

@app.get("/api/enums/room-status", tags=["Enum Reference"])
async def get_room_statuses():
    """Get all RoomStatus enum values"""
    return {
        "values": [item.value for item in RoomStatus],
        "description": "Room status values: available, occupied, maintenance, cleaning"
    }

@app.get("/api/enums/rule-type", tags=["Enum Reference"])
async def get_rule_types():
    """Get all RuleType enum values"""
    return {
        "values": [item.value for item in RuleType],
        "description": "Booking rule types: min_stay, max_stay, blackout_date, cutoff_time, advance_booking"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user(fake_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username, "role": user.role.value}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# ROOM TYPE & RATE ENDPOINTS
# ============================================================================

@app.post("/api/room-types", response_model=RoomTypeResponse, status_code=201, tags=["Room Types"])
async def create_room_type(
    request: CreateRoomTypeRequest,
    service: RateCalendarService = Depends(get_rate_calendar_service),
    current_user: User = Depends(manager_or_admin)
):
    """Create a room type with optional initial rate overrides"""
    room_type = await service.create_room_type(
        room_type_id=request.room_type_id,
        name=request.name,
        description=request.description,
        capacity=request.capacity,
        base_rate=request.base_rate,
        rates=[RateOverride(**rate.model_dump()) for rate in request.rates]
    )
    return room_type.model_dump()

@app.get("/api/room-types", response_model=List[RoomTypeResponse], tags=["Room Types"])
async def list_room_types(
    service: RateCalendarService = Depends(get_rate_calendar_service),
    current_user: User = Depends(get_current_active_user)
):
    room_types = await service.list_room_types()
    return [room_type.model_dump() for room_type in room_types]

@app.get("/api/room-types/{room_type_id}/rooms", response_model=List[RoomResponse], tags=["Room Types"])
async def list_room_type_rooms(
    room_type_id: str,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    """Rooms of a room type with their current status"""
    rooms = await service.list_rooms(room_type_id)
    return [room.model_dump() for room in rooms]

@app.get("/api/room-types/{room_type_id}", response_model=RoomTypeResponse, tags=["Room Types"])
async def get_room_type(
    room_type_id: str,
    service: RateCalendarService = Depends(get_rate_calendar_service),
    current_user: User = Depends(get_current_active_user)
):
    room_type = await service.get_room_type(room_type_id)
    return room_type.model_dump()

@app.put("/api/room-types/{room_type_id}/rates", response_model=RoomTypeResponse, tags=["Room Types"])
async def update_room_type_rates(
    room_type_id: str,
    request: UpdateRatesRequest,
    service: RateCalendarService = Depends(get_rate_calendar_service),
    current_user: User = Depends(manager_or_admin)
):
    """Add rate overrides or replace the ones on the same dates"""
    room_type = await service.update_rates(
        room_type_id, [RateOverride(**rate.model_dump()) for rate in request.rates]
    )
    return room_type.model_dump()

@app.get("/api/room-types/{room_type_id}/rates", response_model=RateCalendarResponse, tags=["Room Types"])
async def get_rate_calendar(
    room_type_id: str,
    start_date: date,
    end_date: date,
    service: RateCalendarService = Depends(get_rate_calendar_service),
    current_user: User = Depends(get_current_active_user)
):
    """Nightly prices for every date from start_date through end_date"""
    room_type = await service.get_room_type(room_type_id)
    rates = await service.rate_calendar(room_type_id, start_date, end_date)
    return {
        "room_type_id": room_type.room_type_id,
        "name": room_type.name,
        "base_rate": room_type.base_rate,
        "rates": [rate.model_dump() for rate in rates],
    }

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@app.post("/api/rooms", response_model=RoomResponse, status_code=201, tags=["Rooms"])
async def create_room(
    request: CreateRoomRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(manager_or_admin)
):
    room = await service.create_room(**request.model_dump())
    return room.model_dump()

@app.get("/api/rooms/{room_id}", response_model=RoomResponse, tags=["Rooms"])
async def get_room(
    room_id: str,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    room = await service.get_room(room_id)
    return room.model_dump()

@app.put("/api/rooms/{room_id}/status", response_model=RoomResponse, tags=["Rooms"])
async def update_room_status(
    room_id: str,
    request: UpdateRoomStatusRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    """Set room status, e.g. available again once housekeeping is done"""
    room = await service.update_status(room_id, request.status)
    return room.model_dump()

# ============================================================================
# BOOKING RULE ENDPOINTS
# ============================================================================

@app.post("/api/booking-rules", response_model=BookingRuleResponse, status_code=201, tags=["Booking Rules"])
async def create_booking_rule(
    request: CreateBookingRuleRequest,
    service: BookingRuleService = Depends(get_booking_rule_service),
    current_user: User = Depends(manager_or_admin)
):
    """Create booking rule; value must match the rule type"""
    try:
        constraint = request.to_constraint()
    except pydantic.ValidationError as e:
        raise HTTPException(
            status_code=400, detail=f"Invalid value for {request.rule_type.value}: {_error_messages(e)}"
        )

    try:
        rule = BookingRule(
            name=request.name,
            constraint=constraint,
            room_type_ids=request.room_type_ids,
            start_date=request.start_date,
            end_date=request.end_date,
            is_active=request.is_active,
            priority=request.priority,
            created_by=current_user.username
        )
    except pydantic.ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid booking rule: {_error_messages(e)}")

    rule = await service.create_rule(rule)
    return _rule_to_response(rule)

@app.get("/api/booking-rules", response_model=List[BookingRuleResponse], tags=["Booking Rules"])
async def list_booking_rules(
    active: Optional[bool] = None,
    room_type_id: Optional[str] = None,
    service: BookingRuleService = Depends(get_booking_rule_service),
    current_user: User = Depends(get_current_active_user)
):
    rules = await service.list_rules(active=active, room_type_id=room_type_id)
    return [_rule_to_response(rule) for rule in rules]

@app.get("/api/booking-rules/check", response_model=RuleCheckResponse, tags=["Booking Rules"])
async def check_booking_rules(
    room_type_id: str,
    check_in: StayBoundField,
    check_out: StayBoundField,
    service: BookingRuleService = Depends(get_booking_rule_service),
    current_user: User = Depends(get_current_active_user)
):
    """Check whether a stay meets every applicable booking rule"""
    violations = await service.check(room_type_id, check_in, check_out)
    return {
        "is_valid": not violations,
        "violations": [v.model_dump() for v in violations],
    }

@app.get("/api/booking-rules/{rule_id}", response_model=BookingRuleResponse, tags=["Booking Rules"])
async def get_booking_rule(
    rule_id: UUID,
    service: BookingRuleService = Depends(get_booking_rule_service),
    current_user: User = Depends(get_current_active_user)
):
    rule = await service.get_rule(rule_id)
    return _rule_to_response(rule)

@app.put("/api/booking-rules/{rule_id}/toggle-status", response_model=BookingRuleResponse, tags=["Booking Rules"])
async def toggle_booking_rule(
    rule_id: UUID,
    service: BookingRuleService = Depends(get_booking_rule_service),
    current_user: User = Depends(manager_or_admin)
):
    rule = await service.toggle_status(rule_id)
    return _rule_to_response(rule)

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.get("/api/reservations/availability/{room_type_id}", response_model=QuoteResponse, tags=["Reservations"])
async def check_availability(
    room_type_id: str,
    check_in: StayBoundField,
    check_out: StayBoundField,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Availability, rule violations and total price for a prospective stay"""
    quote = await service.quote(room_type_id, check_in, check_out)
    return quote.model_dump()

@app.post("/api/reservations", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def create_reservation(
    request: CreateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Create new reservation"""
    reservation = await service.create_reservation(
        guest=GuestInfo(**request.guest.model_dump()),
        room_type_id=request.room_type_id,
        check_in=request.check_in,
        check_out=request.check_out,
        source=request.source,
        special_requests=request.special_requests,
        notes=request.notes,
        created_by=current_user.username
    )
    return _reservation_to_response(reservation)

@app.get("/api/reservations", response_model=List[ReservationResponse], tags=["Reservations"])
async def get_all_reservations(
    status: Optional[ReservationStatus] = None,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get all reservations, newest first"""
    reservations = await service.get_all_reservations(status)
    return [_reservation_to_response(r) for r in reservations]

@app.get("/api/reservations/number/{reservation_number}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation_by_number(
    reservation_number: str,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    reservation = await service.get_reservation_by_number(reservation_number)
    return _reservation_to_response(reservation)

@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by ID"""
    reservation = await service.get_reservation(reservation_id)
    return _reservation_to_response(reservation)

@app.put("/api/reservations/{reservation_id}/dates", response_model=ReservationResponse, tags=["Reservations"])
async def modify_reservation_dates(
    reservation_id: UUID,
    request: ModifyDatesRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Move a confirmed reservation to new dates"""
    reservation = await service.modify_dates(reservation_id, request.check_in, request.check_out)
    return _reservation_to_response(reservation)

@app.post("/api/reservations/{reservation_id}/status", response_model=ReservationResponse, tags=["Reservations"])
async def change_reservation_status(
    reservation_id: UUID,
    request: ChangeStatusRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Check in, check out, cancel or mark as no-show"""
    reservation = await service.change_status(reservation_id, request.status, request.room_id)
    return _reservation_to_response(reservation)

@app.post("/api/reservations/{reservation_id}/payments", response_model=ReservationResponse, tags=["Reservations"])
async def add_payment(
    reservation_id: UUID,
    request: AddPaymentRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Record a payment against the reservation"""
    reservation = await service.add_payment(
        reservation_id=reservation_id,
        amount=request.amount,
        method=request.method,
        transaction_id=request.transaction_id
    )
    return _reservation_to_response(reservation)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _reservation_to_response(reservation: Reservation) -> dict:
    """Convert Reservation entity to response dict"""
    return {
        "reservation_id": reservation.reservation_id,
        "reservation_number": reservation.reservation_number,
        "guest": reservation.guest.model_dump(),
        "room_type_id": reservation.room_type_id,
        "room_id": reservation.room_id,
        "check_in": reservation.date_range.check_in,
        "check_out": reservation.date_range.check_out,
        "nights": reservation.get_nights(),
        "status": reservation.status,
        "total_amount": reservation.total_amount,
        "payment_status": reservation.payment_status,
        "total_paid": reservation.total_paid(),
        "payments": [p.model_dump() for p in reservation.payments],
        "source": reservation.source,
        "special_requests": reservation.special_requests,
        "notes": reservation.notes,
        "created_at": reservation.created_at,
        "modified_at": reservation.modified_at,
        "created_by": reservation.created_by,
        "version": reservation.version
    }

def _error_messages(error: pydantic.ValidationError) -> str:
    return "; ".join(err["msg"] for err in error.errors())

def _rule_to_response(rule: BookingRule) -> dict:
    """Convert BookingRule entity to response dict"""
    return {
        "rule_id": rule.rule_id,
        "name": rule.name,
        "rule_type": rule.rule_type,
        "value": rule.constraint.value,
        "room_type_ids": rule.room_type_ids,
        "start_date": rule.start_date,
        "end_date": rule.end_date,
        "is_active": rule.is_active,
        "priority": rule.priority,
        "created_by": rule.created_by,
        "created_at": rule.created_at
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
