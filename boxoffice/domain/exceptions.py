

class BoxOfficeError(Exception):
    """
    Base exception for all domain-level errors
    inside the box office reservation engine.
    """

    code = "BOX_OFFICE_ERROR"

    def __init__(self, message: str, seat_ids: list[str] | None = None):
        self.message = message
        self.seat_ids = list(seat_ids or [])
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.seat_ids:
            payload["seat_ids"] = self.seat_ids
        return payload


class InvalidStateTransitionError(BoxOfficeError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    code = "INVALID_STATE_TRANSITION"

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class PerformanceNotFound(BoxOfficeError):
    code = "PERFORMANCE_NOT_FOUND"

    def __init__(self, performance_id: str):
        self.performance_id = performance_id
        super().__init__(f"Performance {performance_id} not found")


class PerformanceNotBookable(BoxOfficeError):
    """Raised when the performance status is anything but scheduled."""

    code = "PERFORMANCE_NOT_BOOKABLE"

    def __init__(self, performance_id: str, status: str):
        self.performance_id = performance_id
        self.status = status
        super().__init__(
            f"Performance {performance_id} is not open for booking (status={status})"
        )


class SeatUnavailable(BoxOfficeError):
    """Raised when a seat is permanently booked or structurally disabled."""

    code = "SEAT_UNAVAILABLE"

    def __init__(self, seat_id: str, reason: str):
        self.reason = reason
        super().__init__(f"Seat {seat_id} is unavailable ({reason})", [seat_id])


class SeatHeldByOther(BoxOfficeError):
    code = "SEAT_HELD_BY_OTHER"

    def __init__(self, seat_id: str):
        super().__init__(f"Seat {seat_id} is held by another buyer", [seat_id])


class PartySizeExceeded(BoxOfficeError):
    code = "PARTY_SIZE_EXCEEDED"

    def __init__(self, max_party_size: int):
        self.max_party_size = max_party_size
        super().__init__(f"A booking may contain at most {max_party_size} seats")


class InvalidSeatSelection(BoxOfficeError):
    code = "INVALID_SEAT_SELECTION"


class SeatAlreadyBooked(BoxOfficeError):
    """Commit-time conflict: one or more seats were booked concurrently."""

    code = "SEAT_ALREADY_BOOKED"

    def __init__(self, seat_ids: list[str]):
        super().__init__(
            "Seats already booked: " + ", ".join(seat_ids or ["<unknown>"]),
            seat_ids,
        )


class SeatNotHeld(BoxOfficeError):
    """Commit-time conflict: the session no longer holds the seats."""

    code = "SEAT_NOT_HELD"

    def __init__(self, seat_ids: list[str]):
        super().__init__(
            "Seats are not held by this session or the hold expired: "
            + ", ".join(seat_ids),
            seat_ids,
        )


class CodeGenerationFailed(BoxOfficeError):
    code = "CODE_GENERATION_FAILED"

    def __init__(self, kind: str, attempts: int):
        self.kind = kind
        self.attempts = attempts
        super().__init__(f"Could not generate a unique {kind} after {attempts} attempts")


class CommitFailed(BoxOfficeError):
    """Generic persistence fault; the whole commit was rolled back."""

    code = "COMMIT_FAILED"


class NotificationFailed(BoxOfficeError):
    """Post-commit delivery failure. Never fails the booking itself."""

    code = "NOTIFICATION_FAILED"


class BookingNotFound(BoxOfficeError):
    code = "BOOKING_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Booking {reference} not found")
