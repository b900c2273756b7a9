"""Booking Rules - tagged constraint variants and the BookingRule aggregate

Each rule type carries its own typed payload; the `rule_type` field is the
discriminator, so a rule can never hold a value of the wrong shape.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Annotated, Callable, Dict, List, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from domain.enums import RuleType
from domain.value_objects import ONE_NIGHT, CalendarDate, DateRange


class MinStayConstraint(BaseModel):
    rule_type: Literal["min_stay"] = "min_stay"
    value: int = Field(gt=0, description="Minimum nights")

    model_config = ConfigDict(frozen=True)


class MaxStayConstraint(BaseModel):
    rule_type: Literal["max_stay"] = "max_stay"
    value: int = Field(gt=0, description="Maximum nights")

    model_config = ConfigDict(frozen=True)


class BlackoutDateConstraint(BaseModel):
    rule_type: Literal["blackout_date"] = "blackout_date"
    value: Union[CalendarDate, List[CalendarDate]]

    model_config = ConfigDict(frozen=True)

    def dates(self) -> List[date]:
        if isinstance(self.value, list):
            return list(self.value)
        return [self.value]


class CutoffTimeConstraint(BaseModel):
    rule_type: Literal["cutoff_time"] = "cutoff_time"
    value: float = Field(gt=0, description="Hours required before check-in")

    model_config = ConfigDict(frozen=True)


class AdvanceBookingConstraint(BaseModel):
    rule_type: Literal["advance_booking"] = "advance_booking"
    value: float = Field(gt=0, description="Maximum days booked ahead")

    model_config = ConfigDict(frozen=True)


RuleConstraint = Annotated[
    Union[
        MinStayConstraint,
        MaxStayConstraint,
        BlackoutDateConstraint,
        CutoffTimeConstraint,
        AdvanceBookingConstraint,
    ],
    Field(discriminator="rule_type"),
]


# ==================== CONSTRAINT CHECKS ====================
# Each check returns a violation message, or None when the stay complies.

def check_min_stay(constraint: MinStayConstraint, date_range: DateRange, now: datetime) -> Optional[str]:
    nights = date_range.nights()
    if nights < constraint.value:
        return (
            f"Minimum stay requirement not met. "
            f"Required: {constraint.value} nights, Requested: {nights} nights."
        )
    return None


def check_max_stay(constraint: MaxStayConstraint, date_range: DateRange, now: datetime) -> Optional[str]:
    nights = date_range.nights()
    if nights > constraint.value:
        return (
            f"Maximum stay requirement exceeded. "
            f"Maximum: {constraint.value} nights, Requested: {nights} nights."
        )
    return None


def check_blackout_date(constraint: BlackoutDateConstraint, date_range: DateRange, now: datetime) -> Optional[str]:
    blackout_dates = set(constraint.dates())
    # First breaching night only
    for night in date_range.stay_dates():
        if night in blackout_dates:
            return f"The date {night.isoformat()} is a blackout date and not available for booking."
    return None


def check_cutoff_time(constraint: CutoffTimeConstraint, date_range: DateRange, now: datetime) -> Optional[str]:
    hours_before_check_in = (date_range.check_in - now) / timedelta(hours=1)
    if hours_before_check_in < constraint.value:
        return (
            f"Reservation cutoff time has passed. "
            f"Requires at least {constraint.value:g} hours before check-in."
        )
    return None


def check_advance_booking(constraint: AdvanceBookingConstraint, date_range: DateRange, now: datetime) -> Optional[str]:
    days_in_advance = (date_range.check_in - now) / ONE_NIGHT
    if days_in_advance > constraint.value:
        return f"Advance booking limit exceeded. Maximum: {constraint.value:g} days in advance."
    return None


CONSTRAINT_CHECKS: Dict[RuleType, Callable[..., Optional[str]]] = {
    RuleType.MIN_STAY: check_min_stay,
    RuleType.MAX_STAY: check_max_stay,
    RuleType.BLACKOUT_DATE: check_blackout_date,
    RuleType.CUTOFF_TIME: check_cutoff_time,
    RuleType.ADVANCE_BOOKING: check_advance_booking,
}


class BookingRule(BaseModel):
    """BookingRule Aggregate Root Entity"""

    # Identity
    rule_id: UUID = Field(default_factory=uuid4)
    name: str

    # Typed payload
    constraint: RuleConstraint

    # Scope: empty means every room type
    room_type_ids: List[str] = []
    start_date: Optional[CalendarDate] = None
    end_date: Optional[CalendarDate] = None

    is_active: bool = True
    priority: int = 0

    # Metadata
    created_by: str = "SYSTEM"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    modified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def window_in_order(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("Rule start_date must not be after end_date")
        return self

    @property
    def rule_type(self) -> RuleType:
        return RuleType(self.constraint.rule_type)

    def applies_to(self, room_type_id: str, date_range: DateRange) -> bool:
        """Active, scoped to the room type, and valid for some night of the stay"""
        if not self.is_active:
            return False
        if self.room_type_ids and room_type_id not in self.room_type_ids:
            return False
        return date_range.intersects_window(self.start_date, self.end_date)

    def toggle_active(self) -> None:
        self.is_active = not self.is_active
        self.modified_at = datetime.now(timezone.utc)
