"""Custom exceptions for the ride engine."""


class RideEngineError(Exception):
    """Base class for ride engine errors."""
    pass


class InvalidLocation(RideEngineError):
    """Raised when a location is missing or has non-finite coordinates."""
    pass


class InvalidTransition(RideEngineError):
    """Raised when a status change is not a legal successor of the current status."""

    def __init__(self, current, target, message: str = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Invalid status transition: {current} -> {target}")


class NotFound(RideEngineError):
    """Raised when a ride cannot be found."""

    def __init__(self, ride_id):
        self.ride_id = ride_id
        super().__init__(f"Ride {ride_id} not found")
