# tests/integration/test_notifications.py

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from boxoffice.application.notification_service import NotificationDispatcher
from boxoffice.application.payment_service import PaymentRecorder, StubPaymentGateway
from boxoffice.domain.exceptions import NotificationFailed
from boxoffice.domain.state_machine import BookingMethod, BookingStatus
from boxoffice.infrastructure.db.models import Booking, OutboxEvent, Payment
from boxoffice.infrastructure.notifications.gateways import (
    LoggingNotificationGateway,
    NotificationGateway,
    WebhookNotificationGateway,
)


class FailingGateway(NotificationGateway):
    def send_booking_confirmation(self, payload: dict) -> None:
        raise NotificationFailed("mail relay unreachable")


class BrokenPaymentGateway(StubPaymentGateway):
    def charge(self, amount, reference):
        raise OperationalError("INSERT INTO payments", {}, Exception("disk I/O error"))


@pytest.fixture
def booking(catalog, make_bookings, buyer):
    return make_bookings().commit(
        catalog["performance_id"],
        None,
        [catalog["seats"]["A1"], catalog["seats"]["A2"]],
        buyer,
        method=BookingMethod.BOX_OFFICE,
    )


def test_dispatch_publishes_confirmation(booking, session_factory, clock, db):
    gateway = LoggingNotificationGateway()

    delivered = NotificationDispatcher(session_factory(), gateway, clock=clock).dispatch_for_booking(
        booking.id
    )

    assert delivered is True
    assert len(gateway.sent) == 1
    assert gateway.sent[0]["booking_reference"] == booking.reference
    assert len(gateway.sent[0]["tickets"]) == 2

    event = db.query(OutboxEvent).filter_by(aggregate_id=booking.id).one()
    assert event.status == "PUBLISHED"
    assert event.attempts == 1
    assert db.get(Booking, booking.id).notification_status == "sent"


def test_failed_delivery_keeps_booking(booking, session_factory, clock, db):
    delivered = NotificationDispatcher(
        session_factory(), FailingGateway(), clock=clock
    ).dispatch_for_booking(booking.id)

    assert delivered is False
    event = db.query(OutboxEvent).filter_by(aggregate_id=booking.id).one()
    assert event.status == "FAILED"
    assert event.last_error == "mail relay unreachable"

    stored = db.get(Booking, booking.id)
    assert stored.status == BookingStatus.CONFIRMED
    assert stored.notification_status == "failed"


def test_failed_event_can_be_retried(booking, session_factory, clock, db):
    NotificationDispatcher(session_factory(), FailingGateway(), clock=clock).dispatch_for_booking(
        booking.id
    )
    event_id = db.query(OutboxEvent).filter_by(aggregate_id=booking.id).one().id

    gateway = LoggingNotificationGateway()
    retried = NotificationDispatcher(session_factory(), gateway, clock=clock).dispatch_event(
        event_id
    )

    assert retried.status == "PUBLISHED"
    assert retried.attempts == 2
    assert retried.last_error is None
    assert len(gateway.sent) == 1


def test_dispatch_pending_sweeps_failed_events(booking, session_factory, clock):
    NotificationDispatcher(session_factory(), FailingGateway(), clock=clock).dispatch_for_booking(
        booking.id
    )

    gateway = LoggingNotificationGateway()
    assert NotificationDispatcher(session_factory(), gateway, clock=clock).dispatch_pending() == 1
    assert NotificationDispatcher(session_factory(), gateway, clock=clock).dispatch_pending() == 0


def test_unknown_event_retry(session_factory, clock):
    dispatcher = NotificationDispatcher(session_factory(), LoggingNotificationGateway(), clock=clock)
    assert dispatcher.dispatch_event("no-such-event") is None


def test_webhook_gateway_posts_payload():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    gateway = WebhookNotificationGateway("http://tickets.local/confirm", client=client)

    gateway.send_booking_confirmation({"booking_reference": "TB-ABCDEFGH", "tickets": []})

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert b"TB-ABCDEFGH" in seen[0].content


def test_webhook_gateway_raises_on_error_status():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    gateway = WebhookNotificationGateway("http://tickets.local/confirm", client=client)

    with pytest.raises(NotificationFailed) as exc_info:
        gateway.send_booking_confirmation({"booking_reference": "TB-ABCDEFGH"})
    assert "TB-ABCDEFGH" in exc_info.value.message


def test_payment_recorded_for_box_office_sale(catalog, make_bookings, buyer, clock, db):
    service = make_bookings()
    sold = service.commit(
        catalog["performance_id"],
        None,
        [catalog["seats"]["B1"]],
        buyer,
        method=BookingMethod.BOX_OFFICE,
    )

    payment = PaymentRecorder(service.db, clock=clock).record(sold)

    assert payment.payment_method == "cash"
    assert payment.payment_status == "completed"
    assert payment.amount == sold.total_amount
    assert payment.transaction_id.startswith("TXN-")
    assert db.get(Booking, sold.id).payment_status == "recorded"


def test_payment_failure_flags_reconciliation(catalog, make_bookings, buyer, clock, db):
    service = make_bookings()
    sold = service.commit(
        catalog["performance_id"],
        None,
        [catalog["seats"]["B2"]],
        buyer,
        method=BookingMethod.BOX_OFFICE,
    )

    recorder = PaymentRecorder(service.db, gateway=BrokenPaymentGateway(clock=clock), clock=clock)
    assert recorder.record(sold) is None

    stored = db.get(Booking, sold.id)
    assert stored.status == BookingStatus.CONFIRMED
    assert stored.payment_status == "reconcile"
    assert db.query(Payment).count() == 0
