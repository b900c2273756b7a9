"""Domain Entities - Aggregates"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from domain.enums import PaymentStatus, ReservationSource, ReservationStatus, RoomStatus
from domain.exceptions import InvalidStatusTransition, ValidationError
from domain.value_objects import DateRange, GuestInfo, NightlyRate, Payment, RateOverride


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomType(BaseModel):
    """RoomType Aggregate Root - base rate plus per-date overrides"""

    room_type_id: str
    name: str
    description: Optional[str] = None
    capacity: int = Field(ge=1)
    base_rate: Decimal = Field(gt=0)

    # Always sorted by rate_date, one entry per calendar date
    rates: List[RateOverride] = []

    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(from_attributes=True)

    # ==================== PRICING ====================
    def _overrides_by_date(self) -> Dict[date, RateOverride]:
        return {rate.rate_date: rate for rate in self.rates}

    def price_for(self, day: date) -> Decimal:
        """Override price for the calendar date, else the base rate"""
        if isinstance(day, datetime):
            day = day.date()
        override = self._overrides_by_date().get(day)
        return override.price if override else self.base_rate

    def nightly_rates(self, days: Iterable[date]) -> List[NightlyRate]:
        overrides = self._overrides_by_date()
        result = []
        for day in days:
            override = overrides.get(day)
            result.append(NightlyRate(
                stay_date=day,
                price=override.price if override else self.base_rate,
                is_special=override.is_special if override else False,
                reason=override.reason if override else None,
            ))
        return result

    def total_for(self, date_range: DateRange) -> Decimal:
        """Sum of nightly prices across the stay"""
        return sum(
            (night.price for night in self.nightly_rates(date_range.stay_dates())),
            Decimal("0"),
        )

    def rate_calendar(self, start_date: date, end_date: date) -> List[NightlyRate]:
        """Nightly prices for every date from start_date through end_date"""
        if end_date < start_date:
            raise ValidationError("end_date must not be before start_date")
        days = (start_date + timedelta(days=offset) for offset in range((end_date - start_date).days + 1))
        return self.nightly_rates(days)

    # ==================== MODIFICATION METHODS ====================
    def upsert_rates(self, overrides: Iterable[RateOverride]) -> None:
        """Replace overrides on matching dates, add the rest, keep sorted"""
        by_date = self._overrides_by_date()
        for override in overrides:
            by_date[override.rate_date] = override
        self.rates = sorted(by_date.values(), key=lambda rate: rate.rate_date)
        self.modified_at = _utcnow()


class Room(BaseModel):
    """Room Entity - one physical unit of a room type"""

    room_id: str
    room_number: str
    room_type_id: str
    floor: int = 0
    status: RoomStatus = RoomStatus.AVAILABLE
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)

    def is_assignable(self) -> bool:
        return self.is_active and self.status == RoomStatus.AVAILABLE


# Status graph: terminal statuses have no outgoing edges
ALLOWED_TRANSITIONS: Dict[ReservationStatus, frozenset] = {
    ReservationStatus.CONFIRMED: frozenset({
        ReservationStatus.CHECKED_IN,
        ReservationStatus.CANCELLED,
        ReservationStatus.NO_SHOW,
    }),
    ReservationStatus.CHECKED_IN: frozenset({ReservationStatus.CHECKED_OUT}),
    ReservationStatus.CHECKED_OUT: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
}


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""

    # Identity
    reservation_id: UUID = Field(default_factory=uuid4)
    reservation_number: str

    # Guest and references to other aggregates
    guest: GuestInfo
    room_type_id: str
    room_id: Optional[str] = None

    # Value Objects
    date_range: DateRange
    total_amount: Decimal = Field(ge=0)

    # Enums/Status
    status: ReservationStatus = ReservationStatus.CONFIRMED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    source: ReservationSource = ReservationSource.DIRECT

    # Append-only
    payments: List[Payment] = []

    special_requests: Optional[str] = None
    notes: Optional[str] = None

    # Metadata
    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)
    created_by: str = "SYSTEM"
    version: int = 1

    model_config = ConfigDict(from_attributes=True)

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        reservation_number: str,
        guest: GuestInfo,
        room_type_id: str,
        date_range: DateRange,
        total_amount: Decimal,
        source: ReservationSource = ReservationSource.DIRECT,
        special_requests: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: str = "SYSTEM",
        created_at: Optional[datetime] = None,
    ) -> "Reservation":
        """Create a confirmed reservation"""
        created_at = created_at or _utcnow()
        return Reservation(
            reservation_number=reservation_number,
            guest=guest,
            room_type_id=room_type_id,
            date_range=date_range,
            total_amount=total_amount,
            source=source,
            special_requests=special_requests,
            notes=notes,
            status=ReservationStatus.CONFIRMED,
            created_by=created_by,
            created_at=created_at,
            modified_at=created_at,
        )

    # ==================== STATE TRANSITION METHODS ====================
    def can_transition_to(self, new_status: ReservationStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def ensure_can_transition_to(self, new_status: ReservationStatus) -> None:
        if not self.can_transition_to(new_status):
            raise InvalidStatusTransition(self.status, new_status)

    def check_in(self, room_id: str) -> None:
        """Mark guest as checked in to the given room"""
        self.ensure_can_transition_to(ReservationStatus.CHECKED_IN)
        self.room_id = room_id
        self._change_status(ReservationStatus.CHECKED_IN)

    def check_out(self) -> None:
        self.ensure_can_transition_to(ReservationStatus.CHECKED_OUT)
        self._change_status(ReservationStatus.CHECKED_OUT)

    def cancel(self) -> None:
        self.ensure_can_transition_to(ReservationStatus.CANCELLED)
        self._change_status(ReservationStatus.CANCELLED)

    def mark_no_show(self) -> None:
        self.ensure_can_transition_to(ReservationStatus.NO_SHOW)
        self._change_status(ReservationStatus.NO_SHOW)

    def _change_status(self, new_status: ReservationStatus) -> None:
        self.status = new_status
        self._touch()

    # ==================== MODIFICATION METHODS ====================
    def reschedule(self, date_range: DateRange, total_amount: Decimal) -> None:
        """Move the stay to new dates at a new price"""
        if self.status != ReservationStatus.CONFIRMED:
            raise ValidationError(
                f"Cannot change dates of a reservation with status {self.status.value}"
            )
        self.date_range = date_range
        self.total_amount = total_amount
        if self.payments:
            self._refresh_payment_status()
        self._touch()

    def add_payment(self, payment: Payment) -> None:
        """Record a payment and recompute the payment status"""
        self.payments = [*self.payments, payment]
        self._refresh_payment_status()
        self._touch()

    def _refresh_payment_status(self) -> None:
        total_paid = self.total_paid()
        if total_paid >= self.total_amount:
            self.payment_status = PaymentStatus.PAID
        elif total_paid > 0:
            self.payment_status = PaymentStatus.PARTIALLY_PAID

    # ==================== QUERY METHODS ====================
    def total_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0"))

    def get_nights(self) -> int:
        return self.date_range.nights()

    def is_blocking_inventory(self) -> bool:
        """Cancelled and no-show reservations free their room"""
        return self.status not in (ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW)

    def _touch(self) -> None:
        self.modified_at = _utcnow()
        self.version += 1
