"""In-Memory Repository Implementations

Reads hand out copies so callers work on snapshots; nothing changes in
storage until insert/update/save is called.
"""
from typing import Any, Dict, List, Optional
from uuid import UUID

from domain.booking_rules import BookingRule
from domain.entities import Reservation, Room, RoomType
from domain.enums import RoomStatus
from domain.exceptions import IdentifierConflict, NotFound
from domain.repositories import (
    BookingRuleRepository, ReservationRepository, RoomRepository, RoomTypeRepository
)
from domain.value_objects import DateRange


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Reservation] = {}
        # Unique index on reservation_number
        self._numbers: Dict[str, UUID] = {}

    async def insert(self, reservation: Reservation) -> Reservation:
        """Insert reservation, rejecting duplicate reservation numbers"""
        if reservation.reservation_number in self._numbers:
            raise IdentifierConflict(reservation.reservation_number)
        self._storage[reservation.reservation_id] = reservation.model_copy(deep=True)
        self._numbers[reservation.reservation_number] = reservation.reservation_id
        return reservation.model_copy(deep=True)

    async def update(self, reservation_id: UUID, patch: Dict[str, Any]) -> Reservation:
        """Apply a partial update"""
        stored = self._storage.get(reservation_id)
        if stored is None:
            raise NotFound("Reservation", reservation_id)
        updated = stored.model_copy(update=patch, deep=True)
        self._storage[reservation_id] = updated
        return updated.model_copy(deep=True)

    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        reservation = self._storage.get(reservation_id)
        return reservation.model_copy(deep=True) if reservation else None

    async def find_by_number(self, reservation_number: str) -> Optional[Reservation]:
        reservation_id = self._numbers.get(reservation_number)
        if reservation_id is None:
            return None
        return await self.find_by_id(reservation_id)

    async def find_all(self) -> List[Reservation]:
        return [r.model_copy(deep=True) for r in self._storage.values()]

    async def find_conflicting(
        self,
        room_type_id: str,
        date_range: DateRange,
        exclude_id: Optional[UUID] = None
    ) -> int:
        """Count overlapping reservations that still hold inventory"""
        return sum(
            1 for r in self._storage.values()
            if r.room_type_id == room_type_id
            and r.reservation_id != exclude_id
            and r.is_blocking_inventory()
            and r.date_range.overlaps(date_range)
        )

    async def find_max_reservation_number_with_prefix(self, prefix: str) -> Optional[str]:
        matching = [number for number in self._numbers if number.startswith(prefix)]
        return max(matching) if matching else None


class InMemoryRoomRepository(RoomRepository):
    """In-memory implementation of RoomRepository"""

    def __init__(self):
        self._storage: Dict[str, Room] = {}

    async def save(self, room: Room) -> Room:
        self._storage[room.room_id] = room.model_copy(deep=True)
        return room

    async def find_by_id(self, room_id: str) -> Optional[Room]:
        room = self._storage.get(room_id)
        return room.model_copy(deep=True) if room else None

    async def find_by_room_type(self, room_type_id: str) -> List[Room]:
        return [
            room.model_copy(deep=True) for room in self._storage.values()
            if room.room_type_id == room_type_id
        ]

    async def count_active(self, room_type_id: str) -> int:
        return sum(
            1 for room in self._storage.values()
            if room.room_type_id == room_type_id and room.is_active
        )

    async def find_available(self, room_type_id: str) -> Optional[Room]:
        for room in self._storage.values():
            if room.room_type_id == room_type_id and room.is_assignable():
                return room.model_copy(deep=True)
        return None

    async def set_status(self, room_id: str, status: RoomStatus) -> Room:
        room = self._storage.get(room_id)
        if room is None:
            raise NotFound("Room", room_id)
        room.status = status
        return room.model_copy(deep=True)


class InMemoryRoomTypeRepository(RoomTypeRepository):
    """In-memory implementation of RoomTypeRepository"""

    def __init__(self):
        self._storage: Dict[str, RoomType] = {}

    async def save(self, room_type: RoomType) -> RoomType:
        self._storage[room_type.room_type_id] = room_type.model_copy(deep=True)
        return room_type

    async def get(self, room_type_id: str) -> Optional[RoomType]:
        room_type = self._storage.get(room_type_id)
        return room_type.model_copy(deep=True) if room_type else None

    async def find_all(self) -> List[RoomType]:
        return [rt.model_copy(deep=True) for rt in self._storage.values()]


class InMemoryBookingRuleRepository(BookingRuleRepository):
    """In-memory implementation of BookingRuleRepository"""

    def __init__(self):
        self._storage: Dict[UUID, BookingRule] = {}

    async def save(self, rule: BookingRule) -> BookingRule:
        self._storage[rule.rule_id] = rule.model_copy(deep=True)
        return rule

    async def update(self, rule: BookingRule) -> BookingRule:
        if rule.rule_id not in self._storage:
            raise NotFound("Booking rule", rule.rule_id)
        self._storage[rule.rule_id] = rule.model_copy(deep=True)
        return rule

    async def find_by_id(self, rule_id: UUID) -> Optional[BookingRule]:
        rule = self._storage.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    async def find_all(self) -> List[BookingRule]:
        return [rule.model_copy(deep=True) for rule in self._storage.values()]

    async def find_applicable(self, room_type_id: str, date_range: DateRange) -> List[BookingRule]:
        rules = [
            rule.model_copy(deep=True) for rule in self._storage.values()
            if rule.applies_to(room_type_id, date_range)
        ]
        return sorted(rules, key=lambda rule: rule.priority, reverse=True)
