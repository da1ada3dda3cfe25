"""Notification dispatch port (abstract interface).

Push, email and SMS delivery belong to an external service. The marketplace
hands it an event and moves on; delivery is never part of the transaction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class NotificationDeliveryError(Exception):
    """The notification service rejected or could not accept the event."""


@dataclass(frozen=True)
class NotificationEvent:
    """What happened, to whom it should be reported, and the display context."""

    kind: str
    recipients: tuple[str, ...]
    context: dict = field(default_factory=dict)


class Notifier(ABC):
    """Abstract fire-and-forget notification interface."""

    @abstractmethod
    def notify(self, event: NotificationEvent) -> None:
        """Hand ``event`` to the notification service.

        Raises:
            NotificationDeliveryError: when the service cannot take the event.
        """
        ...
