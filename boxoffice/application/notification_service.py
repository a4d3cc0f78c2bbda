import json
import logging

from sqlalchemy.orm import Session

from boxoffice.application.booking_service import BOOKING_CONFIRMED
from boxoffice.domain.clock import Clock, utc_now
from boxoffice.domain.exceptions import NotificationFailed
from boxoffice.infrastructure.db.models import Booking, OutboxEvent
from boxoffice.infrastructure.notifications.gateways import NotificationGateway
from boxoffice.infrastructure.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Delivers BOOKING_CONFIRMED outbox events to the notification gateway.

    Runs after the booking transaction committed. A delivery failure is
    recorded on the outbox event and the booking, then left for retry.
    """

    def __init__(
        self,
        db: Session,
        gateway: NotificationGateway,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.outbox_repository = OutboxRepository(db)

    def dispatch_for_booking(self, booking_id: str) -> bool:
        events = [
            event
            for event in self.outbox_repository.pending_for_aggregate(booking_id)
            if event.event_type == BOOKING_CONFIRMED
        ]
        delivered = True
        for event in events:
            delivered = self._deliver(event) and delivered
        return delivered

    def dispatch_event(self, event_id: str) -> OutboxEvent | None:
        event = self.outbox_repository.get(event_id, for_update=True)
        if not event:
            return None
        if event.status != "PUBLISHED":
            self._deliver(event)
        return event

    def dispatch_pending(self, limit: int = 50) -> int:
        delivered = 0
        for status in ("PENDING", "FAILED"):
            for event in self.outbox_repository.list_by_status(status, limit):
                if event.event_type == BOOKING_CONFIRMED and self._deliver(event):
                    delivered += 1
        return delivered

    def _deliver(self, event: OutboxEvent) -> bool:
        booking = self.db.get(Booking, event.aggregate_id)
        event.attempts += 1
        try:
            self.gateway.send_booking_confirmation(json.loads(event.payload))
        except NotificationFailed as exc:
            logger.warning(
                "Notification failed. booking_id=%s attempts=%s error=%s",
                event.aggregate_id,
                event.attempts,
                exc.message,
            )
            event.status = "FAILED"
            event.last_error = exc.message
            if booking:
                booking.notification_status = "failed"
            self.db.commit()
            return False

        event.status = "PUBLISHED"
        event.published_at = self.clock()
        event.last_error = None
        if booking:
            booking.notification_status = "sent"
        self.db.commit()
        return True
