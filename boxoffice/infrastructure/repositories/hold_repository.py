# boxoffice/infrastructure/repositories/hold_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import delete, func, or_, select, update

from boxoffice.infrastructure.db.models import SeatHold


class HoldRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock_hold(self, performance_id: str, seat_id: str) -> SeatHold | None:
        """
        SELECT ... FOR UPDATE on the (performance, seat) hold row.
        Expired rows are returned too; callers decide what they mean.
        """

        stmt = (
            select(SeatHold)
            .where(SeatHold.performance_id == performance_id)
            .where(SeatHold.seat_id == seat_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_holds(self, performance_id: str, seat_ids: list[str]) -> dict[str, SeatHold]:
        # Ordered so concurrent committers lock rows in the same sequence.
        stmt = (
            select(SeatHold)
            .where(SeatHold.performance_id == performance_id)
            .where(SeatHold.seat_id.in_(seat_ids))
            .order_by(SeatHold.seat_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {hold.seat_id: hold for hold in self.db.execute(stmt).scalars().all()}

    def live_holds(self, performance_id: str, now: datetime) -> list[SeatHold]:
        stmt = (
            select(SeatHold)
            .where(SeatHold.performance_id == performance_id)
            .where(SeatHold.expires_at > now)
        )
        return list(self.db.execute(stmt).scalars().all())

    def live_holds_for_session(
        self,
        performance_id: str,
        session_id: str,
        now: datetime,
    ) -> list[SeatHold]:
        stmt = (
            select(SeatHold)
            .where(SeatHold.performance_id == performance_id)
            .where(SeatHold.session_id == session_id)
            .where(SeatHold.expires_at > now)
            .order_by(SeatHold.seat_id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def count_live_holds_for_session(
        self,
        performance_id: str,
        session_id: str,
        now: datetime,
        exclude_seat_id: str | None = None,
    ) -> int:
        stmt = (
            select(func.count(SeatHold.id))
            .where(SeatHold.performance_id == performance_id)
            .where(SeatHold.session_id == session_id)
            .where(SeatHold.expires_at > now)
        )
        if exclude_seat_id:
            stmt = stmt.where(SeatHold.seat_id != exclude_seat_id)
        return self.db.execute(stmt).scalar_one()

    def add(self, hold: SeatHold) -> SeatHold:
        self.db.add(hold)
        return hold

    def claim(
        self,
        performance_id: str,
        seat_id: str,
        session_id: str,
        user_id: str | None,
        now: datetime,
        expires_at: datetime,
    ) -> int:
        """
        Conditional overwrite of an existing hold row. Only matches when the
        row is expired or already belongs to session_id, so of two racing
        claimants at most one sees rowcount 1.
        """

        stmt = (
            update(SeatHold)
            .where(SeatHold.performance_id == performance_id)
            .where(SeatHold.seat_id == seat_id)
            .where(
                or_(
                    SeatHold.expires_at <= now,
                    SeatHold.session_id == session_id,
                )
            )
            .values(session_id=session_id, user_id=user_id, expires_at=expires_at)
        )
        result = self.db.execute(stmt, execution_options={"synchronize_session": False})
        return result.rowcount or 0

    def delete_for_session(
        self,
        performance_id: str,
        session_id: str,
        seat_ids: list[str] | None = None,
    ) -> int:
        stmt = (
            delete(SeatHold)
            .where(SeatHold.performance_id == performance_id)
            .where(SeatHold.session_id == session_id)
        )
        if seat_ids is not None:
            stmt = stmt.where(SeatHold.seat_id.in_(seat_ids))
        result = self.db.execute(stmt, execution_options={"synchronize_session": "fetch"})
        return result.rowcount or 0

    def delete_expired(self, now: datetime) -> int:
        stmt = delete(SeatHold).where(SeatHold.expires_at <= now)
        result = self.db.execute(stmt, execution_options={"synchronize_session": "fetch"})
        return result.rowcount or 0

    def delete_for_seats(self, performance_id: str, seat_ids: list[str]) -> int:
        stmt = (
            delete(SeatHold)
            .where(SeatHold.performance_id == performance_id)
            .where(SeatHold.seat_id.in_(seat_ids))
        )
        return self.db.execute(
            stmt, execution_options={"synchronize_session": "fetch"}
        ).rowcount or 0
