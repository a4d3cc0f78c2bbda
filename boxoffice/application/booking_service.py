from dataclasses import dataclass
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from boxoffice.application.availability_service import AvailabilityService
from boxoffice.application.hold_service import is_live
from boxoffice.config import Settings, get_settings
from boxoffice.domain.clock import Clock, utc_now
from boxoffice.domain.codes import CodeGenerator
from boxoffice.domain.exceptions import (
    BoxOfficeError,
    CodeGenerationFailed,
    CommitFailed,
    InvalidSeatSelection,
    PartySizeExceeded,
    PerformanceNotBookable,
    SeatAlreadyBooked,
    SeatHeldByOther,
    SeatNotHeld,
    SeatUnavailable,
)
from boxoffice.domain.pricing import compute_totals, to_money
from boxoffice.domain.state_machine import (
    BookingMethod,
    BookingStateMachine,
    BookingStatus,
    PerformanceStatus,
    RELEASING_STATUSES,
)
from boxoffice.infrastructure.db.models import (
    Booking,
    BookingSeat,
    Performance,
    Seat,
    Ticket,
)
from boxoffice.infrastructure.repositories.booking_repository import BookingRepository
from boxoffice.infrastructure.repositories.hold_repository import HoldRepository
from boxoffice.infrastructure.repositories.outbox_repository import OutboxRepository
from boxoffice.infrastructure.repositories.payment_repository import PaymentRepository
from boxoffice.infrastructure.repositories.seat_repository import SeatRepository

logger = logging.getLogger(__name__)

BOOKING_CONFIRMED = "BOOKING_CONFIRMED"


@dataclass(frozen=True)
class BuyerInfo:
    name: str
    email: str
    phone: str | None = None


def _integrity_conflict(exc: IntegrityError) -> str:
    """Classify a unique violation as a seat conflict, a code collision or other."""
    message = str(exc.orig).lower()
    if "uq_booking_seat_active" in message or "booking_seats.performance_id" in message:
        return "seat"
    for marker in (
        "uq_booking_reference",
        "bookings.reference",
        "uq_ticket_code",
        "tickets.ticket_code",
    ):
        if marker in message:
            return "code"
    return "other"


def build_confirmation_payload(
    booking: Booking,
    performance: Performance,
    seats: dict[str, Seat],
) -> dict:
    """What the artifact/notification service needs to render and mail tickets."""
    tickets = []
    for ticket in booking.tickets:
        seat = seats[ticket.seat_id]
        tickets.append(
            {
                "ticket_code": ticket.ticket_code,
                "barcode_data": ticket.barcode_data,
                "seat_row": seat.row_label,
                "seat_number": seat.seat_number,
                "price": str(ticket.booking_seat.price),
            }
        )
    return {
        "booking_id": booking.id,
        "booking_reference": booking.reference,
        "customer_name": booking.customer_name,
        "customer_email": booking.customer_email,
        "play_title": performance.play.title if performance.play else "",
        "play_subtitle": (performance.play.subtitle or "") if performance.play else "",
        "performance_starts_at": performance.starts_at.isoformat(),
        "venue_name": performance.venue.name if performance.venue else "",
        "venue_address": performance.venue.address if performance.venue else "",
        "total_amount": str(booking.total_amount),
        "booking_fee": str(booking.booking_fee),
        "tickets": tickets,
    }


class BookingService:
    """
    Booking commit orchestrator plus the post-commit lifecycle
    (check-in, cancellation, refund).

    commit() owns its transaction: it either persists the Booking with all
    of its seats and tickets and drops the superseded holds, or leaves no
    trace at all.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        codes: CodeGenerator | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock
        self.codes = codes or CodeGenerator(
            clock=clock,
            max_attempts=self.settings.code_max_attempts,
        )
        self.booking_repository = BookingRepository(db)
        self.hold_repository = HoldRepository(db)
        self.seat_repository = SeatRepository(db)
        self.outbox_repository = OutboxRepository(db)
        self.payment_repository = PaymentRepository(db)
        self.availability = AvailabilityService(db, clock=clock)

    def _validate_selection(self, seat_ids: list[str]) -> list[str]:
        if not seat_ids:
            raise InvalidSeatSelection("At least one seat must be selected")
        if len(set(seat_ids)) != len(seat_ids):
            raise InvalidSeatSelection("Duplicate seats in selection")
        if len(seat_ids) > self.settings.max_party_size:
            raise PartySizeExceeded(self.settings.max_party_size)
        return list(seat_ids)

    def commit(
        self,
        performance_id: str,
        session_id: str | None,
        seat_ids: list[str],
        buyer: BuyerInfo,
        method: BookingMethod = BookingMethod.ONLINE,
        user_id: str | None = None,
        booked_by_user_id: str | None = None,
    ) -> Booking:
        seat_ids = self._validate_selection(seat_ids)
        method = BookingMethod(method)
        if method == BookingMethod.ONLINE and not session_id:
            raise InvalidSeatSelection("session_id is required for online bookings")

        for attempt in range(1, self.codes.max_attempts + 1):
            try:
                booking = self._commit_once(
                    performance_id=performance_id,
                    session_id=session_id,
                    seat_ids=seat_ids,
                    buyer=buyer,
                    method=method,
                    user_id=user_id,
                    booked_by_user_id=booked_by_user_id,
                )
                self.db.commit()
            except (SeatAlreadyBooked, SeatNotHeld):
                self.db.rollback()
                self._drop_session_holds(performance_id, session_id, seat_ids, method)
                raise
            except BoxOfficeError:
                self.db.rollback()
                raise
            except IntegrityError as exc:
                self.db.rollback()
                conflict = _integrity_conflict(exc)
                if conflict == "seat":
                    lost = sorted(
                        self.booking_repository.booked_seat_ids(performance_id, seat_ids)
                    )
                    self.db.rollback()
                    logger.info(
                        "Commit lost a seat race. performance_id=%s seats=%s",
                        performance_id,
                        lost or seat_ids,
                    )
                    self._drop_session_holds(performance_id, session_id, seat_ids, method)
                    raise SeatAlreadyBooked(lost or seat_ids) from exc
                if conflict == "code":
                    logger.warning(
                        "Booking code collision on commit, retrying (attempt %s/%s).",
                        attempt,
                        self.codes.max_attempts,
                    )
                    continue
                logger.exception(
                    "Commit failed on constraint. performance_id=%s", performance_id
                )
                raise CommitFailed("Booking could not be persisted") from exc
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Commit failed. performance_id=%s", performance_id)
                raise CommitFailed("Booking could not be persisted") from exc

            logger.info(
                "Booking committed. reference=%s performance_id=%s seats=%s total=%s",
                booking.reference,
                performance_id,
                len(seat_ids),
                booking.total_amount,
            )
            return booking

        raise CodeGenerationFailed(kind="booking codes", attempts=self.codes.max_attempts)

    def _drop_session_holds(
        self,
        performance_id: str,
        session_id: str | None,
        seat_ids: list[str],
        method: BookingMethod,
    ) -> None:
        """
        A conflicting commit ends the checkout; the session's surviving
        holds on the requested seats go back to other buyers right away.
        """
        if method != BookingMethod.ONLINE or not session_id:
            return
        try:
            dropped = self.hold_repository.delete_for_session(
                performance_id,
                session_id,
                seat_ids,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Could not drop holds after failed commit. performance_id=%s session_id=%s",
                performance_id,
                session_id,
            )
            return
        if dropped:
            logger.info(
                "Dropped %d hold(s) after failed commit. performance_id=%s session_id=%s",
                dropped,
                performance_id,
                session_id,
            )

    def _commit_once(
        self,
        performance_id: str,
        session_id: str | None,
        seat_ids: list[str],
        buyer: BuyerInfo,
        method: BookingMethod,
        user_id: str | None,
        booked_by_user_id: str | None,
    ) -> Booking:
        now = self.clock()

        performance = self.seat_repository.get_performance(performance_id)
        if performance.status != PerformanceStatus.SCHEDULED:
            raise PerformanceNotBookable(performance_id, performance.status.value)

        seats = self.seat_repository.get_seats(performance.venue_id, seat_ids)
        unknown = [seat_id for seat_id in seat_ids if seat_id not in seats]
        if unknown:
            raise InvalidSeatSelection(
                "Seats do not belong to this performance's venue", unknown
            )
        for seat_id in seat_ids:
            if not seats[seat_id].is_available:
                raise SeatUnavailable(seat_id, "disabled")

        # Lock the contended keys before re-checking them.
        holds = self.hold_repository.lock_holds(performance_id, seat_ids)

        booked = self.booking_repository.booked_seat_ids(performance_id, seat_ids)
        if booked:
            raise SeatAlreadyBooked(sorted(booked))

        if method == BookingMethod.ONLINE:
            not_held = [
                seat_id
                for seat_id in seat_ids
                if not (
                    is_live(holds.get(seat_id), now)
                    and holds[seat_id].session_id == session_id
                )
            ]
            if not_held:
                raise SeatNotHeld(not_held)
        else:
            for seat_id in seat_ids:
                hold = holds.get(seat_id)
                if is_live(hold, now) and hold.session_id != session_id:
                    raise SeatHeldByOther(seat_id)

        totals = compute_totals(
            len(seat_ids),
            performance.base_price,
            self.settings.booking_fee_rate,
        )
        reference = self.codes.generate_unique(
            self.codes.new_booking_reference,
            self.booking_repository.reference_exists,
            kind="booking reference",
        )

        booking = Booking(
            reference=reference,
            performance_id=performance_id,
            session_id=session_id,
            user_id=user_id,
            booked_by_user_id=booked_by_user_id or user_id,
            customer_name=buyer.name,
            customer_email=buyer.email,
            customer_phone=buyer.phone,
            total_seats=len(seat_ids),
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            booking_fee=totals.booking_fee,
            total_amount=totals.total_amount,
            status=BookingStatus.CONFIRMED,
            method=method,
            notification_status="pending",
            payment_status="pending",
            created_at=now,
        )
        self.booking_repository.add(booking)

        # Captured now; later price edits never touch this booking.
        price = to_money(performance.base_price)
        issued: set[str] = set()
        for seat_id in seat_ids:
            booking_seat = BookingSeat(
                performance_id=performance_id,
                seat_id=seat_id,
                price=price,
                released=False,
            )
            booking.seats.append(booking_seat)

            ticket_code = self.codes.generate_unique(
                self.codes.new_ticket_code,
                lambda code: code in issued or self.booking_repository.ticket_code_exists(code),
                kind="ticket code",
            )
            issued.add(ticket_code)
            booking.tickets.append(
                Ticket(
                    booking_seat=booking_seat,
                    seat_id=seat_id,
                    ticket_code=ticket_code,
                    barcode_data=self.codes.barcode_data(reference, seat_id),
                    is_checked_in=False,
                )
            )

        self.db.flush()

        self.hold_repository.delete_for_seats(performance_id, seat_ids)
        self.availability.refresh_sold_out(performance)

        self.outbox_repository.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type=BOOKING_CONFIRMED,
            payload=build_confirmation_payload(booking, performance, seats),
            dedupe_key=f"booking:{booking.id}:confirmed",
        )
        self.db.flush()
        return booking

    def get_by_reference(self, reference: str) -> Booking:
        return self.booking_repository.get_by_reference(reference)

    def list_for_user(self, user_id: str, limit: int = 50) -> list[Booking]:
        return self.booking_repository.list_for_user(user_id, limit)

    def list_for_performance(
        self,
        performance_id: str,
        method: BookingMethod | None = None,
        limit: int = 50,
    ) -> list[Booking]:
        self.seat_repository.get_performance(performance_id)
        return self.booking_repository.list_for_performance(performance_id, method, limit)

    def check_in(
        self,
        reference: str,
        agent_id: str | None = None,
    ) -> tuple[Booking, bool]:
        """
        Box-office check-in. Returns (booking, already_checked_in).
        Re-checking a checked-in booking is a no-op.
        """
        booking = self.booking_repository.get_by_reference(reference, for_update=True)

        if booking.status == BookingStatus.CHECKED_IN:
            self.db.rollback()
            return booking, True

        self._transition(booking, BookingStatus.CHECKED_IN)
        now = self.clock()
        for ticket in booking.tickets:
            if not ticket.is_checked_in:
                ticket.is_checked_in = True
                ticket.checked_in_at = now
                ticket.checked_in_by = agent_id

        self.db.commit()
        logger.info(
            "Booking checked in. reference=%s tickets=%s agent_id=%s",
            reference,
            len(booking.tickets),
            agent_id,
        )
        return booking, False

    def cancel(self, reference: str) -> Booking:
        booking = self.booking_repository.get_by_reference(reference, for_update=True)
        self._transition(booking, BookingStatus.CANCELLED)
        self.db.commit()
        logger.info("Booking cancelled. reference=%s", reference)
        return booking

    def refund(self, reference: str) -> Booking:
        booking = self.booking_repository.get_by_reference(reference, for_update=True)
        self._transition(booking, BookingStatus.REFUNDED)
        refunded = self.payment_repository.mark_refunded(booking.id)
        self.db.commit()
        logger.info(
            "Booking refunded. reference=%s payments_refunded=%s", reference, refunded
        )
        return booking

    def _release(self, booking: Booking) -> None:
        self.booking_repository.release_seats(booking)
        performance = self.seat_repository.get_performance(booking.performance_id)
        self.availability.refresh_sold_out(performance)

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)
        if to_status in RELEASING_STATUSES:
            self._release(booking)
