"""Fake matcher returning a configured agent."""

from marketplace.geo.port import DeliveryAgentMatcher


class FakeAgentMatcher(DeliveryAgentMatcher):
    def __init__(self) -> None:
        self.agent_id: str | None = None
        self.calls: list[dict] = []

    def configure(self, agent_id: str | None) -> None:
        self.agent_id = agent_id

    def match(self, vendor_id: str, location: str | None) -> str | None:
        self.calls.append({"vendor_id": vendor_id, "location": location})
        return self.agent_id
