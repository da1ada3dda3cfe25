"""Notifier registry and the best-effort send helper used by handlers."""

import structlog

from marketplace.notify.fake_adapter import FakeNotifier
from marketplace.notify.port import NotificationDeliveryError, NotificationEvent, Notifier

logger = structlog.get_logger(__name__)

_current_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    """Return the configured notifier. Defaults to FakeNotifier."""
    global _current_notifier
    if _current_notifier is None:
        _current_notifier = FakeNotifier()
    return _current_notifier


def set_notifier(notifier: Notifier) -> None:
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    global _current_notifier
    _current_notifier = None


def send_notification(kind: str, recipients, **context) -> bool:
    """Send a notification without letting a delivery failure escape.

    Returns False when the notification service refused the event or the
    adapter failed, so the caller can flag the affected aggregate as degraded.
    """
    event = NotificationEvent(kind=kind, recipients=tuple(str(r) for r in recipients if r), context=context)
    try:
        get_notifier().notify(event)
    except NotificationDeliveryError as exc:
        logger.warning("Notification not delivered", kind=kind, recipients=list(event.recipients), error=str(exc))
        return False
    except Exception:
        # Adapters for real services fail in their own ways (timeouts, HTTP errors)
        logger.exception("Notifier failed", kind=kind, recipients=list(event.recipients))
        return False
    return True
