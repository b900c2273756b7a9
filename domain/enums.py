"""Domain Enums"""
from enum import Enum


class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    REFUNDED = "refunded"


class ReservationSource(str, Enum):
    DIRECT = "direct"
    BOOKING_COM = "booking.com"
    EXPEDIA = "expedia"
    AIRBNB = "airbnb"
    OTHER = "other"


class RoomStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    CLEANING = "cleaning"


class RuleType(str, Enum):
    MIN_STAY = "min_stay"
    MAX_STAY = "max_stay"
    BLACKOUT_DATE = "blackout_date"
    CUTOFF_TIME = "cutoff_time"
    ADVANCE_BOOKING = "advance_booking"


class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"
