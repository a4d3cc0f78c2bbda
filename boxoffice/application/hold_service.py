from dataclasses import dataclass
from datetime import datetime, timedelta
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from boxoffice.config import Settings, get_settings
from boxoffice.domain.clock import Clock, ensure_utc, utc_now
from boxoffice.domain.exceptions import (
    PartySizeExceeded,
    PerformanceNotBookable,
    SeatHeldByOther,
    SeatUnavailable,
)
from boxoffice.domain.state_machine import PerformanceStatus
from boxoffice.infrastructure.db.models import SeatHold
from boxoffice.infrastructure.repositories.booking_repository import BookingRepository
from boxoffice.infrastructure.repositories.hold_repository import HoldRepository
from boxoffice.infrastructure.repositories.seat_repository import SeatRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldResult:
    granted: bool
    performance_id: str
    seat_id: str
    session_id: str
    expires_at: datetime
    renewed: bool = False


def is_live(hold: SeatHold | None, now: datetime) -> bool:
    return hold is not None and ensure_utc(hold.expires_at) > now


class HoldService:
    """
    Hold ledger: time-bounded claims binding a seat to a buyer session.

    Each operation runs as its own transaction. Expiry is passive, a hold
    whose expires_at is not in the future is ignored by every reader and
    overwritten by the next grant.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock
        self.hold_repository = HoldRepository(db)
        self.seat_repository = SeatRepository(db)
        self.booking_repository = BookingRepository(db)

    def _resolve_ttl(self, ttl: timedelta | None) -> timedelta:
        if ttl is None:
            return timedelta(seconds=self.settings.hold_ttl_seconds)
        if ttl <= timedelta(0):
            raise ValueError("Hold TTL must be positive")
        return min(ttl, timedelta(seconds=self.settings.hold_max_ttl_seconds))

    def acquire(
        self,
        performance_id: str,
        seat_id: str,
        session_id: str,
        user_id: str | None = None,
        ttl: timedelta | None = None,
    ) -> HoldResult:
        """
        Grant or refresh a hold on one seat.

        Raises:
            PerformanceNotFound: unknown performance.
            PerformanceNotBookable: performance is not scheduled.
            SeatUnavailable: seat is disabled, not in the venue, or booked.
            SeatHeldByOther: a different session holds an unexpired claim.
            PartySizeExceeded: the session already holds the maximum seats.
        """
        ttl = self._resolve_ttl(ttl)

        performance = self.seat_repository.get_performance(performance_id)
        if performance.status != PerformanceStatus.SCHEDULED:
            raise PerformanceNotBookable(performance_id, performance.status.value)

        seat = self.seat_repository.get_seat(seat_id)
        if not seat or seat.venue_id != performance.venue_id:
            raise SeatUnavailable(seat_id, "unknown_seat")
        if not seat.is_available:
            raise SeatUnavailable(seat_id, "disabled")

        now = self.clock()
        expires_at = now + ttl
        hold = self.hold_repository.lock_hold(performance_id, seat_id)

        # Checked after the lock so a sale committed meanwhile is seen.
        if self.booking_repository.is_seat_booked(performance_id, seat_id):
            self.db.rollback()
            raise SeatUnavailable(seat_id, "booked")

        if is_live(hold, now) and hold.session_id != session_id:
            self.db.rollback()
            raise SeatHeldByOther(seat_id)

        held_elsewhere = self.hold_repository.count_live_holds_for_session(
            performance_id,
            session_id,
            now,
            exclude_seat_id=seat_id,
        )
        if held_elsewhere >= self.settings.max_party_size:
            self.db.rollback()
            raise PartySizeExceeded(self.settings.max_party_size)

        renewed = is_live(hold, now)
        if hold is None:
            self.hold_repository.add(
                SeatHold(
                    performance_id=performance_id,
                    seat_id=seat_id,
                    session_id=session_id,
                    user_id=user_id,
                    expires_at=expires_at,
                )
            )
        else:
            claimed = self.hold_repository.claim(
                performance_id,
                seat_id,
                session_id,
                user_id,
                now,
                expires_at,
            )
            if not claimed:
                # Another session took the expired row first.
                self.db.rollback()
                raise SeatHeldByOther(seat_id)

        try:
            self.db.commit()
        except IntegrityError:
            # Lost an insert race on the (performance, seat) key.
            self.db.rollback()
            winner = self.hold_repository.lock_hold(performance_id, seat_id)
            if is_live(winner, now) and winner.session_id == session_id:
                self.db.commit()
                return HoldResult(
                    granted=True,
                    performance_id=performance_id,
                    seat_id=seat_id,
                    session_id=session_id,
                    expires_at=ensure_utc(winner.expires_at),
                    renewed=True,
                )
            self.db.rollback()
            raise SeatHeldByOther(seat_id)

        logger.info(
            "Hold %s. performance_id=%s seat_id=%s session_id=%s expires_at=%s",
            "renewed" if renewed else "granted",
            performance_id,
            seat_id,
            session_id,
            expires_at.isoformat(),
        )
        return HoldResult(
            granted=True,
            performance_id=performance_id,
            seat_id=seat_id,
            session_id=session_id,
            expires_at=expires_at,
            renewed=renewed,
        )

    def release(self, performance_id: str, seat_id: str, session_id: str) -> bool:
        """Drop the caller's own hold. Anyone else's hold is left alone."""
        deleted = self.hold_repository.delete_for_session(
            performance_id,
            session_id,
            [seat_id],
        )
        self.db.commit()
        return deleted > 0

    def release_session(self, performance_id: str, session_id: str) -> int:
        deleted = self.hold_repository.delete_for_session(performance_id, session_id)
        self.db.commit()
        return deleted

    def held_seat_ids(self, performance_id: str, session_id: str) -> list[str]:
        holds = self.hold_repository.live_holds_for_session(
            performance_id,
            session_id,
            self.clock(),
        )
        return [hold.seat_id for hold in holds]

    def purge_expired(self, now: datetime | None = None) -> int:
        """Storage hygiene only; correctness never depends on this running."""
        deleted = self.hold_repository.delete_expired(now or self.clock())
        self.db.commit()
        if deleted:
            logger.info("Purged %d expired hold(s).", deleted)
        return deleted
