"""Fake notifier: records events in memory for test assertions."""

from marketplace.notify.port import NotificationDeliveryError, NotificationEvent, Notifier


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent: list[NotificationEvent] = []
        self.should_succeed = True
        self.failure_reason = "Notification service unavailable"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Notification service unavailable"):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def notify(self, event: NotificationEvent) -> None:
        if not self.should_succeed:
            raise NotificationDeliveryError(self.failure_reason)
        self.sent.append(event)

    def kinds(self) -> list[str]:
        return [event.kind for event in self.sent]

    def reset(self):
        self.sent.clear()
        self.should_succeed = True
        self.failure_reason = "Notification service unavailable"
