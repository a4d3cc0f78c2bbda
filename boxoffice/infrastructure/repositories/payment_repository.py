# boxoffice/infrastructure/repositories/payment_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import update

from boxoffice.infrastructure.db.models import Payment


class PaymentRepository:

    def __init__(self, db: Session):
        self.db = db

    def add(self, payment: Payment) -> Payment:
        self.db.add(payment)
        return payment

    def mark_refunded(self, booking_id: str) -> int:
        stmt = (
            update(Payment)
            .where(Payment.booking_id == booking_id)
            .where(Payment.payment_status == "completed")
            .values(payment_status="refunded")
            .execution_options(synchronize_session="fetch")
        )
        return self.db.execute(stmt).rowcount or 0
