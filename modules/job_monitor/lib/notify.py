from __future__ import annotations

from collections.abc import Sequence

from .errors import DeliveryError
from .models import NotificationPayload


class EmailNotifier:
    """Deliver a digest through service.emailer; any send failure is a DeliveryError."""

    def __init__(self, recipients: Sequence[str]) -> None:
        self.recipients = list(recipients)

    def send_notification(self, payload: NotificationPayload) -> str:
        from service import emailer

        try:
            return emailer.send_email(
                subject=payload.subject,
                text=payload.body,
                html=payload.html,
                to=self.recipients,
            )
        except emailer.EmailSendError as e:
            raise DeliveryError(f"digest {payload.subject!r} not delivered: {e}") from e
