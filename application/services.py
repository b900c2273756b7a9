"""Application Services - Booking engine use cases

Each public call reads `now` from the injected clock exactly once and passes
it down, so every rule in one evaluation agrees on the current time.
"""
import asyncio
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Union
from uuid import UUID

import pydantic

from config import settings
from domain.booking_rules import CONSTRAINT_CHECKS, BookingRule
from domain.entities import Reservation, Room, RoomType
from domain.enums import ReservationSource, ReservationStatus, RoomStatus
from domain.exceptions import (
    CapacityExceeded, IdentifierConflict, NotFound, RuleViolation, ValidationError
)
from domain.repositories import (
    BookingRuleRepository, ReservationRepository, RoomRepository, RoomTypeRepository
)
from domain.value_objects import (
    AvailabilitySnapshot, DateRange, GuestInfo, NightlyRate, Payment, RateOverride,
    StayQuote, Violation
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
StayBound = Union[date, datetime, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def build_date_range(check_in: StayBound, check_out: StayBound) -> DateRange:
    """Build a DateRange, reporting malformed input as a ValidationError"""
    try:
        return DateRange(check_in=check_in, check_out=check_out)
    except pydantic.ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise ValidationError(f"Invalid date range: {messages}")


class RateCalendarService:
    """Rate Calendar Resolver - nightly prices from base rate and date overrides"""

    def __init__(self, repository: RoomTypeRepository):
        self.repository = repository

    async def create_room_type(
        self,
        room_type_id: str,
        name: str,
        capacity: int,
        base_rate: Decimal,
        description: Optional[str] = None,
        rates: Iterable[RateOverride] = ()
    ) -> RoomType:
        if await self.repository.get(room_type_id):
            raise ValidationError(f"Room type {room_type_id} already exists")
        try:
            room_type = RoomType(
                room_type_id=room_type_id,
                name=name,
                description=description,
                capacity=capacity,
                base_rate=base_rate,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid room type: {e.errors()[0]['msg']}")
        room_type.upsert_rates(rates)
        return await self.repository.save(room_type)

    async def get_room_type(self, room_type_id: str) -> RoomType:
        room_type = await self.repository.get(room_type_id)
        if room_type is None:
            raise NotFound("Room type", room_type_id)
        return room_type

    async def list_room_types(self) -> List[RoomType]:
        room_types = await self.repository.find_all()
        return sorted(room_types, key=lambda rt: rt.room_type_id)

    async def price_for(self, room_type_id: str, day: date) -> Decimal:
        room_type = await self.get_room_type(room_type_id)
        return room_type.price_for(day)

    async def total_for(self, room_type_id: str, date_range: DateRange) -> Decimal:
        room_type = await self.get_room_type(room_type_id)
        return room_type.total_for(date_range)

    async def rate_calendar(self, room_type_id: str, start_date: date, end_date: date) -> List[NightlyRate]:
        room_type = await self.get_room_type(room_type_id)
        return room_type.rate_calendar(start_date, end_date)

    async def update_rates(self, room_type_id: str, overrides: Iterable[RateOverride]) -> RoomType:
        """Upsert overrides by calendar date and persist the re-sorted set"""
        room_type = await self.get_room_type(room_type_id)
        overrides = list(overrides)
        room_type.upsert_rates(overrides)
        logger.info(f"Updated {len(overrides)} rate override(s) for room type {room_type_id}")
        return await self.repository.save(room_type)


class BookingRuleEvaluator:
    """Rule Evaluator - reports every active booking rule a stay breaks"""

    def __init__(self, repository: BookingRuleRepository):
        self.repository = repository

    async def violations(self, room_type_id: str, date_range: DateRange, now: datetime) -> List[Violation]:
        rules = await self.repository.find_applicable(room_type_id, date_range)
        return self.evaluate(rules, date_range, now)

    @staticmethod
    def evaluate(rules: Iterable[BookingRule], date_range: DateRange, now: datetime) -> List[Violation]:
        """Evaluate all rules, highest priority first; at most one violation per rule"""
        now = _as_utc(now)
        violations = []
        for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
            check = CONSTRAINT_CHECKS.get(rule.rule_type)
            if check is None:
                logger.warning(
                    f"Booking rule {rule.rule_id} ({rule.name}) has unsupported type "
                    f"{rule.rule_type.value}; treating as satisfied"
                )
                continue
            message = check(rule.constraint, date_range, now)
            if message:
                violations.append(Violation(
                    rule_name=rule.name,
                    rule_type=rule.rule_type,
                    message=message,
                    value=rule.constraint.value,
                ))
        return violations


class AvailabilityService:
    """Availability Calculator - inventory against overlapping reservations"""

    def __init__(self, room_repo: RoomRepository, reservation_repo: ReservationRepository):
        self.room_repo = room_repo
        self.reservation_repo = reservation_repo

    async def availability(
        self,
        room_type_id: str,
        date_range: DateRange,
        exclude_reservation_id: Optional[UUID] = None
    ) -> AvailabilitySnapshot:
        room_count = await self.room_repo.count_active(room_type_id)
        booked_count = await self.reservation_repo.find_conflicting(
            room_type_id, date_range, exclude_reservation_id
        )
        return AvailabilitySnapshot(
            room_count=room_count,
            booked_count=booked_count,
            # Overbooking through another path shows as zero, never negative
            available_count=max(0, room_count - booked_count),
            is_available=booked_count < room_count,
        )


class ReservationNumberAllocator:
    """Reservation Identifier Allocator - R{YY}{MM}{DD}-{NNNN}, counter per day"""

    def __init__(self, repository: ReservationRepository, prefix: str = settings.RESERVATION_NUMBER_PREFIX):
        self.repository = repository
        self.prefix = prefix

    def day_prefix(self, now: datetime) -> str:
        return f"{self.prefix}{now:%y%m%d}"

    async def next_reservation_number(self, now: datetime) -> str:
        day_prefix = self.day_prefix(_as_utc(now))
        latest = await self.repository.find_max_reservation_number_with_prefix(day_prefix)

        last_used = 0
        if latest:
            try:
                last_used = int(latest[-4:])
            except ValueError:
                last_used = 0
        return f"{day_prefix}-{last_used + 1:04d}"


class BookingRuleService:
    """Service for BookingRule management and standalone rule checks"""

    def __init__(self, repository: BookingRuleRepository, clock: Clock = utc_now):
        self.repository = repository
        self.evaluator = BookingRuleEvaluator(repository)
        self._clock = clock

    async def create_rule(self, rule: BookingRule) -> BookingRule:
        saved = await self.repository.save(rule)
        logger.info(f"Created booking rule {rule.rule_id} ({rule.rule_type.value}: {rule.name})")
        return saved

    async def get_rule(self, rule_id: UUID) -> BookingRule:
        rule = await self.repository.find_by_id(rule_id)
        if rule is None:
            raise NotFound("Booking rule", rule_id)
        return rule

    async def list_rules(self, active: Optional[bool] = None, room_type_id: Optional[str] = None) -> List[BookingRule]:
        rules = await self.repository.find_all()
        if active is not None:
            rules = [r for r in rules if r.is_active == active]
        if room_type_id:
            rules = [r for r in rules if room_type_id in r.room_type_ids]
        return sorted(rules, key=lambda r: r.created_at, reverse=True)

    async def toggle_status(self, rule_id: UUID) -> BookingRule:
        rule = await self.get_rule(rule_id)
        rule.toggle_active()
        return await self.repository.update(rule)

    async def check(self, room_type_id: str, check_in: StayBound, check_out: StayBound) -> List[Violation]:
        date_range = build_date_range(check_in, check_out)
        return await self.evaluator.violations(room_type_id, date_range, self._clock())


class RoomService:
    """Service for Room inventory"""

    def __init__(self, repository: RoomRepository, room_type_repo: RoomTypeRepository):
        self.repository = repository
        self.room_type_repo = room_type_repo

    async def create_room(
        self,
        room_id: str,
        room_number: str,
        room_type_id: str,
        floor: int = 0,
        is_active: bool = True
    ) -> Room:
        if await self.room_type_repo.get(room_type_id) is None:
            raise NotFound("Room type", room_type_id)
        if await self.repository.find_by_id(room_id):
            raise ValidationError(f"Room {room_id} already exists")
        room = Room(
            room_id=room_id,
            room_number=room_number,
            room_type_id=room_type_id,
            floor=floor,
            is_active=is_active,
        )
        return await self.repository.save(room)

    async def get_room(self, room_id: str) -> Room:
        room = await self.repository.find_by_id(room_id)
        if room is None:
            raise NotFound("Room", room_id)
        return room

    async def list_rooms(self, room_type_id: str) -> List[Room]:
        if await self.room_type_repo.get(room_type_id) is None:
            raise NotFound("Room type", room_type_id)
        rooms = await self.repository.find_by_room_type(room_type_id)
        return sorted(rooms, key=lambda room: room.room_number)

    async def update_status(self, room_id: str, status: RoomStatus) -> Room:
        """Set room status, e.g. housekeeping returning a cleaned room"""
        await self.get_room(room_id)
        return await self.repository.set_status(room_id, status)


class ReservationService:
    """Reservation Lifecycle Controller"""

    def __init__(
        self,
        repository: ReservationRepository,
        room_repo: RoomRepository,
        room_type_repo: RoomTypeRepository,
        rule_repo: BookingRuleRepository,
        clock: Clock = utc_now,
        max_number_attempts: int = settings.RESERVATION_NUMBER_MAX_RETRIES
    ):
        self.repository = repository
        self.room_repo = room_repo
        self.rates = RateCalendarService(room_type_repo)
        self.rules = BookingRuleEvaluator(rule_repo)
        self.availability = AvailabilityService(room_repo, repository)
        self.numbers = ReservationNumberAllocator(repository)
        self._clock = clock
        self.max_number_attempts = max(1, max_number_attempts)

    # ==================== QUERIES ====================
    async def get_reservation(self, reservation_id: UUID) -> Reservation:
        reservation = await self.repository.find_by_id(reservation_id)
        if reservation is None:
            raise NotFound("Reservation", reservation_id)
        return reservation

    async def get_reservation_by_number(self, reservation_number: str) -> Reservation:
        reservation = await self.repository.find_by_number(reservation_number)
        if reservation is None:
            raise NotFound("Reservation", reservation_number)
        return reservation

    async def get_all_reservations(self, status: Optional[ReservationStatus] = None) -> List[Reservation]:
        reservations = await self.repository.find_all()
        if status:
            reservations = [r for r in reservations if r.status == status]
        return sorted(reservations, key=lambda r: r.created_at, reverse=True)

    async def quote(self, room_type_id: str, check_in: StayBound, check_out: StayBound) -> StayQuote:
        """Rules, capacity and price for a prospective stay, without booking it"""
        date_range = build_date_range(check_in, check_out)
        now = self._clock()
        room_type = await self.rates.get_room_type(room_type_id)

        violations, availability = await asyncio.gather(
            self.rules.violations(room_type_id, date_range, now),
            self.availability.availability(room_type_id, date_range),
        )
        return StayQuote(
            is_available=availability.is_available and not violations,
            nights=date_range.nights(),
            availability=availability,
            rule_violations=violations,
            total_amount=room_type.total_for(date_range),
        )

    # ==================== CREATE ====================
    async def create_reservation(
        self,
        guest: GuestInfo,
        room_type_id: str,
        check_in: StayBound,
        check_out: StayBound,
        source: ReservationSource = ReservationSource.DIRECT,
        special_requests: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: str = "SYSTEM"
    ) -> Reservation:
        """Validate, price, number and persist a new reservation

        Everything before the final insert is read-only, so a rejected request
        leaves no trace in storage.
        """
        date_range = build_date_range(check_in, check_out)
        now = self._clock()
        room_type = await self.rates.get_room_type(room_type_id)

        await self._ensure_bookable(room_type_id, date_range, now)
        total_amount = room_type.total_for(date_range)

        for attempt in range(1, self.max_number_attempts + 1):
            reservation_number = await self.numbers.next_reservation_number(now)
            reservation = Reservation.create(
                reservation_number=reservation_number,
                guest=guest,
                room_type_id=room_type_id,
                date_range=date_range,
                total_amount=total_amount,
                source=source,
                special_requests=special_requests,
                notes=notes,
                created_by=created_by,
                created_at=now,
            )

            # Optimistic re-check right before the write
            availability = await self.availability.availability(room_type_id, date_range)
            if not availability.is_available:
                logger.info(f"Room type {room_type_id} sold out before insert of {reservation_number}")
                raise CapacityExceeded("No rooms available for the selected dates", availability)

            try:
                saved = await self.repository.insert(reservation)
            except IdentifierConflict:
                logger.warning(
                    f"Reservation number {reservation_number} taken "
                    f"(attempt {attempt}/{self.max_number_attempts})"
                )
                continue

            logger.info(
                f"Created reservation {saved.reservation_number} for room type {room_type_id}, "
                f"{date_range.nights()} night(s), total {saved.total_amount}"
            )
            return saved

        raise IdentifierConflict(reservation_number)

    async def _ensure_bookable(
        self,
        room_type_id: str,
        date_range: DateRange,
        now: datetime,
        exclude_reservation_id: Optional[UUID] = None
    ) -> AvailabilitySnapshot:
        violations, availability = await asyncio.gather(
            self.rules.violations(room_type_id, date_range, now),
            self.availability.availability(room_type_id, date_range, exclude_reservation_id),
        )
        if violations:
            logger.info(f"Stay for room type {room_type_id} rejected by {len(violations)} booking rule(s)")
            raise RuleViolation(violations)
        if not availability.is_available:
            logger.info(
                f"Room type {room_type_id} unavailable: "
                f"{availability.booked_count}/{availability.room_count} booked"
            )
            raise CapacityExceeded("No rooms available for the selected dates", availability)
        return availability

    # ==================== MODIFY ====================
    async def modify_dates(self, reservation_id: UUID, check_in: StayBound, check_out: StayBound) -> Reservation:
        """Move a confirmed reservation to new dates, re-validated and re-priced"""
        reservation = await self.get_reservation(reservation_id)
        date_range = build_date_range(check_in, check_out)
        now = self._clock()
        room_type = await self.rates.get_room_type(reservation.room_type_id)

        if reservation.status != ReservationStatus.CONFIRMED:
            raise ValidationError(
                f"Cannot change dates of a reservation with status {reservation.status.value}"
            )
        await self._ensure_bookable(reservation.room_type_id, date_range, now, reservation.reservation_id)

        reservation.reschedule(date_range, room_type.total_for(date_range))
        return await self._persist(reservation, "date_range", "total_amount", "payment_status")

    # ==================== STATE TRANSITIONS ====================
    async def change_status(
        self,
        reservation_id: UUID,
        new_status: ReservationStatus,
        room_id: Optional[str] = None
    ) -> Reservation:
        if new_status == ReservationStatus.CHECKED_IN:
            return await self.check_in(reservation_id, room_id)
        if new_status == ReservationStatus.CHECKED_OUT:
            return await self.check_out(reservation_id)
        if new_status == ReservationStatus.CANCELLED:
            return await self.cancel(reservation_id)
        if new_status == ReservationStatus.NO_SHOW:
            return await self.mark_no_show(reservation_id)

        reservation = await self.get_reservation(reservation_id)
        reservation.ensure_can_transition_to(new_status)
        return reservation

    async def check_in(self, reservation_id: UUID, room_id: Optional[str] = None) -> Reservation:
        """Check the guest in, assigning and occupying a room"""
        reservation = await self.get_reservation(reservation_id)
        reservation.ensure_can_transition_to(ReservationStatus.CHECKED_IN)

        if room_id:
            room = await self._requested_room(reservation, room_id)
        elif reservation.room_id:
            room = await self.room_repo.find_by_id(reservation.room_id)
            if room is None:
                raise NotFound("Room", reservation.room_id)
        else:
            room = await self.room_repo.find_available(reservation.room_type_id)
            if room is None:
                raise CapacityExceeded("No available rooms of the requested type")

        reservation.check_in(room.room_id)
        await self.room_repo.set_status(room.room_id, RoomStatus.OCCUPIED)
        logger.info(f"Reservation {reservation.reservation_number} checked in to room {room.room_number}")
        return await self._persist(reservation, "status", "room_id")

    async def _requested_room(self, reservation: Reservation, room_id: str) -> Room:
        room = await self.room_repo.find_by_id(room_id)
        if room is None:
            raise NotFound("Room", room_id)
        if room.room_type_id != reservation.room_type_id:
            raise ValidationError(f"Room {room.room_number} is not of room type {reservation.room_type_id}")
        if not room.is_assignable():
            raise ValidationError(f"Room {room.room_number} is not available (status {room.status.value})")
        return room

    async def check_out(self, reservation_id: UUID) -> Reservation:
        """Check the guest out; the room goes to cleaning"""
        reservation = await self.get_reservation(reservation_id)
        reservation.check_out()
        saved = await self._persist(reservation, "status")

        if reservation.room_id:
            await self.room_repo.set_status(reservation.room_id, RoomStatus.CLEANING)
            logger.info(f"Room {reservation.room_id} marked for cleaning after {reservation.reservation_number}")
        return saved

    async def cancel(self, reservation_id: UUID) -> Reservation:
        reservation = await self.get_reservation(reservation_id)
        reservation.cancel()
        return await self._persist(reservation, "status")

    async def mark_no_show(self, reservation_id: UUID) -> Reservation:
        reservation = await self.get_reservation(reservation_id)
        reservation.mark_no_show()
        return await self._persist(reservation, "status")

    # ==================== PAYMENTS ====================
    async def add_payment(
        self,
        reservation_id: UUID,
        amount: Decimal,
        method: str,
        transaction_id: Optional[str] = None
    ) -> Reservation:
        """Append a payment record and update the payment status"""
        if amount < 0:
            raise ValidationError("Payment amount must not be negative")
        reservation = await self.get_reservation(reservation_id)
        reservation.add_payment(Payment(
            amount=amount,
            method=method,
            transaction_id=transaction_id,
            paid_at=self._clock(),
        ))
        return await self._persist(reservation, "payments", "payment_status")

    async def _persist(self, reservation: Reservation, *fields: str) -> Reservation:
        patch = {field: getattr(reservation, field) for field in (*fields, "modified_at", "version")}
        return await self.repository.update(reservation.reservation_id, patch)
