"""Domain Value Objects"""
import math
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Annotated, Any, Iterator, List, Optional

import pydantic
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from domain.enums import RuleType

ONE_NIGHT = timedelta(days=1)

_datetime_adapter = TypeAdapter(datetime)


def to_calendar_date(v):
    """Reduce a timestamp to its UTC calendar date; anything else is left to the date field"""
    if isinstance(v, str) and len(v) > 10:
        try:
            v = _datetime_adapter.validate_python(v)
        except pydantic.ValidationError:
            return v
    if isinstance(v, datetime):
        if v.tzinfo is not None:
            v = v.astimezone(timezone.utc)
        return v.date()
    return v


# Time of day ignored
CalendarDate = Annotated[date, BeforeValidator(to_calendar_date)]


class DateRange(BaseModel):
    """Half-open stay interval [check_in, check_out)"""
    check_in: datetime
    check_out: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("check_in", "check_out", mode="before")
    @classmethod
    def coerce_calendar_date(cls, v):
        # A bare calendar date means midnight UTC
        if isinstance(v, str) and len(v) == 10:
            v = date.fromisoformat(v)
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime.combine(v, time.min, tzinfo=timezone.utc)
        return v

    @field_validator("check_in", "check_out")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def check_out_after_check_in(self):
        if self.check_out <= self.check_in:
            raise ValueError("Check-out must be after check-in")
        return self

    def nights(self) -> int:
        """Number of nights, partial days rounded up"""
        return math.ceil((self.check_out - self.check_in) / ONE_NIGHT)

    def stay_dates(self) -> Iterator[date]:
        """Calendar date of every night, from check-in up to (not including) check-out"""
        current = self.check_in
        while current < self.check_out:
            yield current.date()
            current += ONE_NIGHT

    def overlaps(self, other: "DateRange") -> bool:
        """Half-open interval overlap; adjacent stays do not overlap"""
        return self.check_in < other.check_out and self.check_out > other.check_in

    def intersects_window(self, start: Optional[date], end: Optional[date]) -> bool:
        """Whether any night falls inside the inclusive window [start, end]"""
        first_night = self.check_in.date()
        last_night = (self.check_in + (self.nights() - 1) * ONE_NIGHT).date()
        if start is not None and start > last_night:
            return False
        if end is not None and end < first_night:
            return False
        return True


class RateOverride(BaseModel):
    """Price replacing the base rate for one calendar date"""
    rate_date: CalendarDate
    price: Decimal = Field(gt=0)
    is_special: bool = False
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class NightlyRate(BaseModel):
    """Resolved price of a single night"""
    stay_date: date
    price: Decimal
    is_special: bool = False
    reason: Optional[str] = None


class GuestInfo(BaseModel):
    """Guest contact details"""
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class Payment(BaseModel):
    """Payment already received for a reservation"""
    amount: Decimal = Field(ge=0)
    method: str
    transaction_id: Optional[str] = None
    paid_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class Violation(BaseModel):
    """A booking rule broken by a requested stay"""
    rule_name: str
    rule_type: RuleType
    message: str
    value: Any = None


class AvailabilitySnapshot(BaseModel):
    """Inventory versus conflicting reservations for a stay"""
    room_count: int
    booked_count: int
    available_count: int
    is_available: bool


class StayQuote(BaseModel):
    """Read-only answer to 'can I book this, and for how much'"""
    is_available: bool
    nights: int
    availability: AvailabilitySnapshot
    rule_violations: List[Violation] = []
    total_amount: Decimal
