"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field, TypeAdapter
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import Any, List, Optional, Union

from domain.booking_rules import RuleConstraint
from domain.value_objects import CalendarDate
from domain.enums import (
    PaymentStatus, ReservationSource, ReservationStatus, RoomStatus, RuleType, UserRole
)

_constraint_adapter = TypeAdapter(RuleConstraint)

StayBoundField = Union[datetime, date]


# ============================================================================
# ROOM TYPE & RATE SCHEMAS
# ============================================================================

class RateOverrideRequest(BaseModel):
    """Rate override request DTO"""
    rate_date: CalendarDate
    price: Decimal = Field(gt=0)
    is_special: bool = False
    reason: Optional[str] = None


class CreateRoomTypeRequest(BaseModel):
    """Create room type request DTO"""
    room_type_id: str
    name: str
    description: Optional[str] = None
    capacity: int = Field(ge=1)
    base_rate: Decimal = Field(gt=0)
    rates: List[RateOverrideRequest] = []


class UpdateRatesRequest(BaseModel):
    """Upsert rate overrides request DTO"""
    rates: List[RateOverrideRequest]


class RateOverrideResponse(BaseModel):
    rate_date: date
    price: Decimal
    is_special: bool
    reason: Optional[str] = None


class RoomTypeResponse(BaseModel):
    """Room type response DTO"""
    room_type_id: str
    name: str
    description: Optional[str] = None
    capacity: int
    base_rate: Decimal
    rates: List[RateOverrideResponse]


class NightlyRateResponse(BaseModel):
    stay_date: date
    price: Decimal
    is_special: bool
    reason: Optional[str] = None


class RateCalendarResponse(BaseModel):
    """Per-date prices for a room type"""
    room_type_id: str
    name: str
    base_rate: Decimal
    rates: List[NightlyRateResponse]


# ============================================================================
# ROOM SCHEMAS
# ============================================================================

class CreateRoomRequest(BaseModel):
    """Create room request DTO"""
    room_id: str
    room_number: str
    room_type_id: str
    floor: int = 0
    is_active: bool = True


class UpdateRoomStatusRequest(BaseModel):
    """Room status change request DTO"""
    status: RoomStatus


class RoomResponse(BaseModel):
    """Room response DTO"""
    room_id: str
    room_number: str
    room_type_id: str
    floor: int
    status: RoomStatus
    is_active: bool


# ============================================================================
# BOOKING RULE SCHEMAS
# ============================================================================

class CreateBookingRuleRequest(BaseModel):
    """Create booking rule request DTO

    `value` shape depends on `rule_type`: a positive number for min_stay,
    max_stay, cutoff_time (hours) and advance_booking (days); a date or a list
    of dates for blackout_date.
    """
    name: str
    rule_type: RuleType
    value: Any
    room_type_ids: List[str] = []
    start_date: Optional[CalendarDate] = None
    end_date: Optional[CalendarDate] = None
    is_active: bool = True
    priority: int = 0

    def to_constraint(self):
        """Typed constraint; raises pydantic.ValidationError on a mismatched value"""
        return _constraint_adapter.validate_python(
            {"rule_type": self.rule_type.value, "value": self.value}
        )


class BookingRuleResponse(BaseModel):
    """Booking rule response DTO"""
    rule_id: UUID
    name: str
    rule_type: RuleType
    value: Any
    room_type_ids: List[str]
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool
    priority: int
    created_by: str
    created_at: datetime


class ViolationResponse(BaseModel):
    rule_name: str
    rule_type: RuleType
    message: str
    value: Any = None


class RuleCheckResponse(BaseModel):
    """Standalone rule check result"""
    is_valid: bool
    violations: List[ViolationResponse]


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class GuestRequest(BaseModel):
    """Guest details DTO"""
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None


class CreateReservationRequest(BaseModel):
    """Create reservation request DTO"""
    guest: GuestRequest
    room_type_id: str
    check_in: StayBoundField
    check_out: StayBoundField
    source: ReservationSource = Field(default=ReservationSource.DIRECT, description="Source of reservation")
    special_requests: Optional[str] = None
    notes: Optional[str] = None


class ModifyDatesRequest(BaseModel):
    """Move a reservation to new dates"""
    check_in: StayBoundField
    check_out: StayBoundField


class ChangeStatusRequest(BaseModel):
    """Status transition request DTO"""
    status: ReservationStatus
    room_id: Optional[str] = None


class AddPaymentRequest(BaseModel):
    """Add payment request DTO"""
    amount: Decimal = Field(ge=0)
    method: str
    transaction_id: Optional[str] = None


class PaymentResponse(BaseModel):
    amount: Decimal
    method: str
    transaction_id: Optional[str] = None
    paid_at: datetime


class GuestResponse(GuestRequest):
    pass


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: UUID
    reservation_number: str
    guest: GuestResponse
    room_type_id: str
    room_id: Optional[str] = None
    check_in: datetime
    check_out: datetime
    nights: int
    status: ReservationStatus
    total_amount: Decimal
    payment_status: PaymentStatus
    total_paid: Decimal
    payments: List[PaymentResponse]
    source: ReservationSource
    special_requests: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    modified_at: datetime
    created_by: str
    version: int


class AvailabilityResponse(BaseModel):
    """Availability snapshot DTO"""
    room_count: int
    booked_count: int
    available_count: int
    is_available: bool


class QuoteResponse(BaseModel):
    """Availability query DTO: rules, capacity and price together"""
    is_available: bool
    nights: int
    availability: AvailabilityResponse
    rule_violations: List[ViolationResponse]
    total_amount: Decimal


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole
    disabled: bool
