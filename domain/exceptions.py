"""Domain Exceptions

Every failure of the booking engine is per-request and carries enough
structured data for the API layer to report it.
"""
from typing import Any, Dict, List, Optional


class BookingEngineError(Exception):
    """Base class for booking engine failures"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(BookingEngineError, ValueError):
    """Malformed input: bad date range, non-positive amounts, wrong room"""


class NotFound(BookingEngineError):
    """Room type, reservation, room or rule does not exist"""

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found", {"entity": entity, "id": str(entity_id)})


class RuleViolation(BookingEngineError):
    """One or more booking rules forbid the requested stay"""

    def __init__(self, violations: List[Any]):
        self.violations = violations
        super().__init__(
            "Booking rule violations",
            {"violations": [v.model_dump(mode="json") for v in violations]},
        )


class CapacityExceeded(BookingEngineError):
    """No inventory left for the requested room type and dates"""

    def __init__(self, message: str, availability: Optional[Any] = None):
        self.availability = availability
        details = {}
        if availability is not None:
            details["availability"] = availability.model_dump()
        super().__init__(message, details)


class IdentifierConflict(BookingEngineError):
    """Reservation number already taken"""

    def __init__(self, reservation_number: str):
        self.reservation_number = reservation_number
        super().__init__(
            f"Reservation number {reservation_number} already exists",
            {"reservation_number": reservation_number},
        )


class InvalidStatusTransition(BookingEngineError):
    """Requested status change is not allowed from the current status"""

    def __init__(self, current: Any, requested: Any):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot change reservation status from {current.value} to {requested.value}",
            {"current": current.value, "requested": requested.value},
        )
