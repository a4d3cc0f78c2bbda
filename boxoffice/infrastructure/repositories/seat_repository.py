# boxoffice/infrastructure/repositories/seat_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from boxoffice.infrastructure.db.models import Performance, Seat
from boxoffice.domain.exceptions import PerformanceNotFound
from boxoffice.domain.state_machine import PerformanceStatus


class SeatRepository:
    """Read side of the catalog: performances and the seats of their venue."""

    def __init__(self, db: Session):
        self.db = db

    def get_performance(self, performance_id: str) -> Performance:
        performance = self.db.get(Performance, performance_id)
        if not performance:
            raise PerformanceNotFound(performance_id)
        return performance

    def get_seat(self, seat_id: str) -> Seat | None:
        return self.db.get(Seat, seat_id)

    def list_seats_for_venue(self, venue_id: str) -> list[Seat]:
        stmt = select(Seat).where(Seat.venue_id == venue_id)
        return list(self.db.execute(stmt).scalars().all())

    def get_seats(self, venue_id: str, seat_ids: list[str]) -> dict[str, Seat]:
        if not seat_ids:
            return {}
        stmt = (
            select(Seat)
            .where(Seat.venue_id == venue_id)
            .where(Seat.id.in_(seat_ids))
        )
        return {seat.id: seat for seat in self.db.execute(stmt).scalars().all()}

    def update_performance_status(
        self,
        performance: Performance,
        new_status: PerformanceStatus,
    ) -> None:

        performance.status = new_status
