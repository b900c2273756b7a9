"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from uuid import UUID

from domain.booking_rules import BookingRule
from domain.entities import Reservation, Room, RoomType
from domain.enums import RoomStatus
from domain.value_objects import DateRange


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate"""

    @abstractmethod
    async def insert(self, reservation: Reservation) -> Reservation:
        """Insert reservation; raises IdentifierConflict on a duplicate reservation number"""
        pass

    @abstractmethod
    async def update(self, reservation_id: UUID, patch: Dict[str, Any]) -> Reservation:
        """Apply a partial update and return the stored reservation"""
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        pass

    @abstractmethod
    async def find_by_number(self, reservation_number: str) -> Optional[Reservation]:
        pass

    @abstractmethod
    async def find_all(self) -> List[Reservation]:
        pass

    @abstractmethod
    async def find_conflicting(
        self,
        room_type_id: str,
        date_range: DateRange,
        exclude_id: Optional[UUID] = None
    ) -> int:
        """Count reservations holding inventory of the room type that overlap the range"""
        pass

    @abstractmethod
    async def find_max_reservation_number_with_prefix(self, prefix: str) -> Optional[str]:
        """Lexicographically greatest reservation number starting with prefix"""
        pass


class RoomRepository(ABC):
    """Repository interface for Room Entity"""

    @abstractmethod
    async def save(self, room: Room) -> Room:
        pass

    @abstractmethod
    async def find_by_id(self, room_id: str) -> Optional[Room]:
        pass

    @abstractmethod
    async def find_by_room_type(self, room_type_id: str) -> List[Room]:
        pass

    @abstractmethod
    async def count_active(self, room_type_id: str) -> int:
        """Count active rooms of a room type"""
        pass

    @abstractmethod
    async def find_available(self, room_type_id: str) -> Optional[Room]:
        """Any active room of the type whose status is available"""
        pass

    @abstractmethod
    async def set_status(self, room_id: str, status: RoomStatus) -> Room:
        pass


class RoomTypeRepository(ABC):
    """Repository interface for RoomType Aggregate"""

    @abstractmethod
    async def save(self, room_type: RoomType) -> RoomType:
        pass

    @abstractmethod
    async def get(self, room_type_id: str) -> Optional[RoomType]:
        pass

    @abstractmethod
    async def find_all(self) -> List[RoomType]:
        pass


class BookingRuleRepository(ABC):
    """Repository interface for BookingRule Aggregate"""

    @abstractmethod
    async def save(self, rule: BookingRule) -> BookingRule:
        pass

    @abstractmethod
    async def update(self, rule: BookingRule) -> BookingRule:
        pass

    @abstractmethod
    async def find_by_id(self, rule_id: UUID) -> Optional[BookingRule]:
        pass

    @abstractmethod
    async def find_all(self) -> List[BookingRule]:
        pass

    @abstractmethod
    async def find_applicable(self, room_type_id: str, date_range: DateRange) -> List[BookingRule]:
        """Active rules scoped to the room type whose validity window meets the stay, highest priority first"""
        pass
