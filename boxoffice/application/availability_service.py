from collections import Counter
from dataclasses import dataclass
import logging
import re

from sqlalchemy.orm import Session

from boxoffice.domain.clock import Clock, utc_now
from boxoffice.domain.state_machine import PerformanceStatus, SeatStatus
from boxoffice.infrastructure.db.models import Performance, Seat
from boxoffice.infrastructure.repositories.booking_repository import BookingRepository
from boxoffice.infrastructure.repositories.hold_repository import HoldRepository
from boxoffice.infrastructure.repositories.seat_repository import SeatRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeatView:
    seat_id: str
    row_label: str
    seat_number: str
    section_name: str | None
    is_wheelchair_accessible: bool
    is_companion_seat: bool
    is_restricted_view: bool
    status: SeatStatus


def _seat_sort_key(seat: Seat) -> tuple:
    match = re.match(r"\d+", seat.seat_number or "")
    number = int(match.group()) if match else 0
    return (seat.row_label, number, seat.seat_number)


class AvailabilityService:
    """Derives per-seat status for a performance from bookings and live holds."""

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock
        self.seat_repository = SeatRepository(db)
        self.hold_repository = HoldRepository(db)
        self.booking_repository = BookingRepository(db)

    def _statuses(
        self,
        performance: Performance,
        session_id: str | None,
    ) -> tuple[list[Seat], dict[str, SeatStatus]]:
        seats = self.seat_repository.list_seats_for_venue(performance.venue_id)

        # Holds are read before bookings: a commit landing between the two
        # reads swaps a hold for a booking, so the seat still reads as taken.
        holds = {
            hold.seat_id: hold
            for hold in self.hold_repository.live_holds(performance.id, self.clock())
        }
        booked = self.booking_repository.booked_seat_ids(performance.id)

        statuses: dict[str, SeatStatus] = {}
        for seat in seats:
            hold = holds.get(seat.id)
            if seat.id in booked:
                statuses[seat.id] = SeatStatus.BOOKED
            elif not seat.is_available:
                statuses[seat.id] = SeatStatus.UNAVAILABLE
            elif hold is not None and session_id and hold.session_id == session_id:
                statuses[seat.id] = SeatStatus.HELD_BY_ME
            elif hold is not None:
                statuses[seat.id] = SeatStatus.HELD_BY_OTHER
            else:
                statuses[seat.id] = SeatStatus.AVAILABLE
        return seats, statuses

    def compute_status(
        self,
        performance_id: str,
        session_id: str | None = None,
    ) -> dict[str, SeatStatus]:
        performance = self.seat_repository.get_performance(performance_id)
        _, statuses = self._statuses(performance, session_id)
        return statuses

    def seat_map(
        self,
        performance_id: str,
        session_id: str | None = None,
    ) -> list[SeatView]:
        performance = self.seat_repository.get_performance(performance_id)
        seats, statuses = self._statuses(performance, session_id)
        return [
            SeatView(
                seat_id=seat.id,
                row_label=seat.row_label,
                seat_number=seat.seat_number,
                section_name=seat.section_name,
                is_wheelchair_accessible=seat.is_wheelchair_accessible,
                is_companion_seat=seat.is_companion_seat,
                is_restricted_view=seat.is_restricted_view,
                status=statuses[seat.id],
            )
            for seat in sorted(seats, key=_seat_sort_key)
        ]

    @staticmethod
    def summarize(statuses: dict[str, SeatStatus]) -> dict[str, int]:
        counts = Counter(statuses.values())
        summary = {status.value: counts.get(status, 0) for status in SeatStatus}
        summary["total"] = len(statuses)
        return summary

    def refresh_sold_out(self, performance: Performance) -> PerformanceStatus:
        """
        Flip scheduled <-> sold_out from the current bookings. Other statuses
        are owned by catalog management and left untouched.
        """
        if performance.status not in (
            PerformanceStatus.SCHEDULED,
            PerformanceStatus.SOLD_OUT,
        ):
            return performance.status

        seats = self.seat_repository.list_seats_for_venue(performance.venue_id)
        in_service = {seat.id for seat in seats if seat.is_available}
        booked = self.booking_repository.booked_seat_ids(performance.id)
        sold_out = bool(in_service) and in_service <= booked

        if sold_out and performance.status == PerformanceStatus.SCHEDULED:
            self.seat_repository.update_performance_status(
                performance, PerformanceStatus.SOLD_OUT
            )
            logger.info("Performance sold out. performance_id=%s", performance.id)
        elif not sold_out and performance.status == PerformanceStatus.SOLD_OUT:
            self.seat_repository.update_performance_status(
                performance, PerformanceStatus.SCHEDULED
            )
            logger.info("Performance reopened. performance_id=%s", performance.id)
        return performance.status
