"""Delivery agent matching port.

Finding the nearest free agent is a geospatial service concern; the order
state machine only needs an agent id, or None when nobody is available.
"""

from abc import ABC, abstractmethod


class DeliveryAgentMatcher(ABC):
    @abstractmethod
    def match(self, vendor_id: str, location: str | None) -> str | None:
        """Return the id of an agent who can collect from ``vendor_id``, or None."""
        ...
