# boxoffice/infrastructure/notifications/gateways.py

from abc import ABC, abstractmethod
import logging

import httpx

from boxoffice.config import Settings
from boxoffice.domain.exceptions import NotificationFailed

logger = logging.getLogger(__name__)


class NotificationGateway(ABC):
    """
    Seam to the artifact/notification service that renders ticket PDFs
    and sends the confirmation email for a committed booking.
    """

    @abstractmethod
    def send_booking_confirmation(self, payload: dict) -> None:
        """Raise NotificationFailed if the collaborator rejects the payload."""
        ...


class LoggingNotificationGateway(NotificationGateway):
    """Used when no webhook is configured. Keeps what it 'sent' for inspection."""

    def __init__(self):
        self.sent: list[dict] = []

    def send_booking_confirmation(self, payload: dict) -> None:
        self.sent.append(payload)
        logger.info(
            "Booking confirmation ready. reference=%s email=%s tickets=%s",
            payload.get("booking_reference"),
            payload.get("customer_email"),
            len(payload.get("tickets", [])),
        )


class WebhookNotificationGateway(NotificationGateway):

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        client: httpx.Client | None = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    def send_booking_confirmation(self, payload: dict) -> None:
        try:
            if self._client is not None:
                response = self._client.post(self.url, json=payload)
            else:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    response = client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationFailed(
                f"Notification webhook failed for booking "
                f"{payload.get('booking_reference')}: {exc}"
            ) from exc


def build_gateway(settings: Settings) -> NotificationGateway:
    if settings.notification_webhook_url:
        return WebhookNotificationGateway(
            url=settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds,
        )
    return LoggingNotificationGateway()
