"""DeliveryAgent aggregate: a courier the platform can assign to orders."""

from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from marketplace.domain import marketplace

logger = structlog.get_logger(__name__)


@marketplace.aggregate
class DeliveryAgent:
    user_id = Identifier(required=True, unique=True)
    name = String(max_length=200)
    is_available = Boolean(default=True)
    completed_deliveries = Integer(default=0, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def register(cls, user_id, name=None):
        now = datetime.now(UTC)
        return cls(
            user_id=user_id,
            name=name,
            is_available=True,
            completed_deliveries=0,
            created_at=now,
            updated_at=now,
        )

    def set_availability(self, is_available: bool):
        self.is_available = is_available
        self.updated_at = datetime.now(UTC)

    def record_completed_delivery(self):
        self.completed_deliveries = (self.completed_deliveries or 0) + 1
        self.updated_at = datetime.now(UTC)


def find_agent(user_id) -> DeliveryAgent | None:
    repo = current_domain.repository_for(DeliveryAgent)
    matches = repo._dao.query.filter(user_id=str(user_id)).all().items
    return matches[0] if matches else None


@marketplace.command(part_of="DeliveryAgent")
class RegisterDeliveryAgent:
    user_id = Identifier(required=True)
    name = String(max_length=200)


@marketplace.command(part_of="DeliveryAgent")
class SetAgentAvailability:
    user_id = Identifier(required=True)
    is_available = Boolean(required=True)


@marketplace.command_handler(part_of=DeliveryAgent)
class DeliveryAgentHandler:
    @handle(RegisterDeliveryAgent)
    def register_delivery_agent(self, command):
        if find_agent(command.user_id):
            raise ValidationError({"user_id": ["User is already a delivery agent"]})
        agent = DeliveryAgent.register(user_id=command.user_id, name=command.name)
        current_domain.repository_for(DeliveryAgent).add(agent)
        logger.info("Delivery agent registered", user_id=str(command.user_id))
        return str(agent.id)

    @handle(SetAgentAvailability)
    def set_agent_availability(self, command):
        agent = find_agent(command.user_id)
        if agent is None:
            raise ValidationError({"user_id": ["Unknown delivery agent"]})
        agent.set_availability(command.is_available)
        current_domain.repository_for(DeliveryAgent).add(agent)
