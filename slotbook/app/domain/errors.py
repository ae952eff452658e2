"""Error taxonomy shared by the engine and its front ends.

Every error carries a short snake_case ``code`` that front ends can show or
translate without leaking exception text.
"""

from __future__ import annotations


class BookingError(Exception):
    code = "internal"
    retryable = False

    def __init__(self, code: str | None = None, message: str | None = None) -> None:
        if code:
            self.code = code
        super().__init__(message or self.code)


class InvalidArgument(BookingError):
    code = "invalid_argument"


class SlotUnavailable(BookingError):
    """The slot is taken; re-fetch availability and pick another one."""

    code = "slot_unavailable"


class InsufficientPoints(BookingError):
    code = "insufficient_points"

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(message=f"Insufficient points. Required: {required}, Available: {available}")


class TrialAlreadyUsed(BookingError):
    code = "trial_already_used"


class NotFound(BookingError):
    code = "not_found"


class PermissionDenied(BookingError):
    code = "permission_denied"


class Unavailable(BookingError):
    """Transient store fault; the caller may retry with the same idempotency key."""

    code = "unavailable"
    retryable = True


class Internal(BookingError):
    code = "internal"


CancelError = BookingError

__all__ = [
    "BookingError",
    "CancelError",
    "InvalidArgument",
    "SlotUnavailable",
    "InsufficientPoints",
    "TrialAlreadyUsed",
    "NotFound",
    "PermissionDenied",
    "Unavailable",
    "Internal",
]
