# boxoffice/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select, update

from boxoffice.infrastructure.db.models import Booking, BookingSeat, Ticket
from boxoffice.domain.exceptions import BookingNotFound
from boxoffice.domain.state_machine import BookingMethod, BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def _aggregate_query(self):
        return select(Booking).options(
            selectinload(Booking.seats).selectinload(BookingSeat.seat),
            selectinload(Booking.tickets),
            selectinload(Booking.payments),
        )

    def get_by_reference(
        self,
        reference: str,
        for_update: bool = False,
    ) -> Booking:
        stmt = self._aggregate_query().where(Booking.reference == reference)
        if for_update:
            stmt = stmt.with_for_update(of=Booking)

        booking = self.db.execute(stmt).scalar_one_or_none()
        if not booking:
            raise BookingNotFound(reference)
        return booking

    def list_for_user(self, user_id: str, limit: int = 50) -> list[Booking]:
        stmt = (
            self._aggregate_query()
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_for_performance(
        self,
        performance_id: str,
        method: BookingMethod | None = None,
        limit: int = 50,
    ) -> list[Booking]:
        stmt = self._aggregate_query().where(Booking.performance_id == performance_id)
        if method is not None:
            stmt = stmt.where(Booking.method == method)
        stmt = stmt.order_by(Booking.created_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def reference_exists(self, reference: str) -> bool:
        stmt = select(Booking.id).where(Booking.reference == reference)
        return self.db.execute(stmt).first() is not None

    def ticket_code_exists(self, ticket_code: str) -> bool:
        stmt = select(Ticket.id).where(Ticket.ticket_code == ticket_code)
        return self.db.execute(stmt).first() is not None

    def booked_seat_ids(
        self,
        performance_id: str,
        seat_ids: list[str] | None = None,
    ) -> set[str]:
        """Seats with a non-released BookingSeat for the performance."""

        stmt = (
            select(BookingSeat.seat_id)
            .where(BookingSeat.performance_id == performance_id)
            .where(BookingSeat.released.is_(False))
        )
        if seat_ids is not None:
            stmt = stmt.where(BookingSeat.seat_id.in_(seat_ids))
        return set(self.db.execute(stmt).scalars().all())

    def is_seat_booked(self, performance_id: str, seat_id: str) -> bool:
        return bool(self.booked_seat_ids(performance_id, [seat_id]))

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def release_seats(self, booking: Booking) -> int:
        stmt = (
            update(BookingSeat)
            .where(BookingSeat.booking_id == booking.id)
            .where(BookingSeat.released.is_(False))
            .values(released=True)
            .execution_options(synchronize_session="fetch")
        )
        return self.db.execute(stmt).rowcount or 0
