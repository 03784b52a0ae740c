class InvalidPayloadError(ValueError):
    """Raised when an inbound payload is malformed or misses required fields."""
    pass


class InvalidSecurityTokenError(RuntimeError):
    """Raised when an execution token does not match its prebooking and instant."""
    pass


class SessionMissingError(RuntimeError):
    """Raised when no stored session exists for the user and session kind."""
    pass


class SessionExpiredError(RuntimeError):
    """Raised when the upstream reports the session as logged out."""
    pass


class InvalidTransitionError(RuntimeError):
    """Raised when a status change would move backwards or leave a terminal state."""
    pass


class PreBookingNotFoundError(LookupError):
    """Raised when a prebooking does not exist or is not owned by the caller."""
    pass


class PreBookingInFlightError(RuntimeError):
    """Raised when cancelling a prebooking that has already been claimed."""
    pass


class PreBookingLimitError(RuntimeError):
    """Raised when a user already holds the maximum number of pending prebookings."""

    def __init__(self, current: int, maximum: int) -> None:
        super().__init__(f"Maximum of {maximum} pending prebookings reached (current: {current})")
        self.current = current
        self.maximum = maximum


class PreBookingRejectedError(ValueError):
    """Raised when an upstream rejection cannot be turned into an availability instant."""
    pass


class TriggerSchedulingError(RuntimeError):
    """Raised when the delayed trigger service fails to schedule or cancel a message."""
    pass
