"""Delivery agent matcher factory."""

from marketplace.geo.fake_adapter import FakeAgentMatcher
from marketplace.geo.port import DeliveryAgentMatcher

_current_matcher: DeliveryAgentMatcher | None = None


def get_matcher() -> DeliveryAgentMatcher:
    """Return the current matcher. Defaults to FakeAgentMatcher."""
    global _current_matcher
    if _current_matcher is None:
        _current_matcher = FakeAgentMatcher()
    return _current_matcher


def set_matcher(matcher: DeliveryAgentMatcher) -> None:
    global _current_matcher
    _current_matcher = matcher


def reset_matcher() -> None:
    global _current_matcher
    _current_matcher = None
