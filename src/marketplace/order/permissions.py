"""Who may move an order, and where to.

Authorization is scoped to the transition: each role has its own set of
target statuses, and the actor must also stand in the right relation to the
order (its customer, a member of its vendor, its courier).
"""

from marketplace.order.order import OrderStatus
from marketplace.shared.auth import AuthContext, Role
from marketplace.shared.errors import NotAuthorized

CUSTOMER_TARGETS = frozenset({OrderStatus.CANCELLED})
VENDOR_TARGETS = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.FAILED,
        OrderStatus.DELIVERED,  # Pickup orders only
    }
)
ADMIN_TARGETS = CUSTOMER_TARGETS | VENDOR_TARGETS | {OrderStatus.OUT_FOR_DELIVERY, OrderStatus.RETURNED}

_TARGETS_BY_ROLE = {
    Role.CUSTOMER: CUSTOMER_TARGETS,
    Role.VENDOR: VENDOR_TARGETS,
    Role.DELIVERY_AGENT: frozenset(),  # Couriers move orders through the delivery sub-status
    Role.ADMIN: ADMIN_TARGETS,
    Role.SYSTEM: ADMIN_TARGETS,
}


def allowed_targets(role: Role) -> frozenset:
    return _TARGETS_BY_ROLE.get(role, frozenset())


def _is_party(order, vendor, actor: AuthContext) -> bool:
    if actor.is_privileged:
        return True
    if actor.role == Role.CUSTOMER:
        return bool(order.customer_id) and str(order.customer_id) == actor.user_id
    if actor.role == Role.VENDOR:
        return vendor is not None and vendor.is_member(actor.user_id)
    if actor.role == Role.DELIVERY_AGENT:
        return bool(order.delivery_agent_id) and str(order.delivery_agent_id) == actor.user_id
    return False


def authorize_status_change(order, vendor, actor: AuthContext, target: OrderStatus) -> None:
    """Raise ``NotAuthorized`` unless ``actor`` may move ``order`` to ``target``."""
    if not _is_party(order, vendor, actor):
        raise NotAuthorized("You are not a party to this order", role=actor.role.value)
    if target not in allowed_targets(actor.role):
        raise NotAuthorized(
            f"{actor.role.value} cannot move an order to {target.value}",
            role=actor.role.value,
            target=target.value,
        )
    if target == OrderStatus.DELIVERED and actor.role == Role.VENDOR and not order.is_pickup:
        raise NotAuthorized("Vendors can only mark pickup orders as delivered", role=actor.role.value)


def authorize_delivery_assignment(order, vendor, actor: AuthContext) -> None:
    if actor.is_privileged:
        return
    if actor.role == Role.VENDOR and vendor is not None and vendor.is_member(actor.user_id):
        return
    raise NotAuthorized("Only the vendor or an admin can assign delivery agents", role=actor.role.value)


def authorize_delivery_update(order, actor: AuthContext) -> None:
    if actor.is_privileged:
        return
    if actor.role == Role.DELIVERY_AGENT and _is_party(order, None, actor):
        return
    raise NotAuthorized("Only the assigned delivery agent can update delivery status", role=actor.role.value)


def authorize_refund(vendor, actor: AuthContext) -> None:
    if actor.is_privileged:
        return
    if actor.role == Role.VENDOR and vendor is not None and vendor.is_member(actor.user_id):
        return
    raise NotAuthorized("Only an admin or the vendor's staff can issue refunds", role=actor.role.value)
