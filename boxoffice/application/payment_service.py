from dataclasses import dataclass
from decimal import Decimal
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from boxoffice.domain.clock import Clock, utc_now
from boxoffice.domain.state_machine import BookingMethod
from boxoffice.infrastructure.db.models import Booking, Payment
from boxoffice.infrastructure.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChargeResult:
    transaction_id: str
    status: str
    gateway: str


class StubPaymentGateway:
    """Completes every charge. No real gateway is integrated."""

    name = "stub"

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    def charge(self, amount: Decimal, reference: str) -> ChargeResult:
        millis = int(self.clock().timestamp() * 1000)
        return ChargeResult(
            transaction_id=f"TXN-{millis}",
            status="completed",
            gateway=self.name,
        )


class PaymentRecorder:
    """
    Records the payment for an already committed booking.

    Best-effort: a failure here never rolls the booking back, since the
    seats must stay with a customer who has paid. The booking is flagged
    for reconciliation instead.
    """

    def __init__(
        self,
        db: Session,
        gateway: StubPaymentGateway | None = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.clock = clock
        self.gateway = gateway or StubPaymentGateway(clock=clock)
        self.payment_repository = PaymentRepository(db)

    def record(self, booking: Booking) -> Payment | None:
        reference = booking.reference
        payment_method = (
            "cash" if booking.method == BookingMethod.BOX_OFFICE else "credit_card"
        )
        try:
            charge = self.gateway.charge(booking.total_amount, reference)
            payment = self.payment_repository.add(
                Payment(
                    booking_id=booking.id,
                    amount=booking.total_amount,
                    payment_method=payment_method,
                    payment_status=charge.status,
                    transaction_id=charge.transaction_id,
                    payment_gateway=charge.gateway,
                    processed_at=self.clock(),
                )
            )
            booking.payment_status = "recorded"
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Payment not recorded, flagged for reconciliation. reference=%s",
                reference,
            )
            self._flag_for_reconciliation(booking, reference)
            return None

        logger.info(
            "Payment recorded. reference=%s transaction_id=%s amount=%s",
            booking.reference,
            payment.transaction_id,
            payment.amount,
        )
        return payment

    def _flag_for_reconciliation(self, booking: Booking, reference: str) -> None:
        try:
            booking.payment_status = "reconcile"
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Could not flag booking for payment reconciliation. reference=%s",
                reference,
            )
