"""Order status transition table.

Every status change in the service is decided here. ``NORMAL`` edges are the
guarded customer/admin actions, ``GATEWAY`` edges are what a payment-gateway
notification may move an order along, and ``PRIVILEGED`` is the admin override
that may force any pair of recognised statuses.
"""
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Tuple

from orderflow.core.errors import InvalidStateError
from orderflow.domain import OrderStatus

S = OrderStatus


class EdgeKind(str, Enum):
    NORMAL = "normal"
    GATEWAY = "gateway"
    PRIVILEGED = "privileged"


class Action(str, Enum):
    SUBMIT_PAYMENT = "submit_payment"
    APPROVE_PAYMENT = "approve_payment"
    REJECT_PAYMENT = "reject_payment"
    SHIP = "ship"
    DELIVER = "deliver"
    CANCEL = "cancel"


# action -> (allowed source statuses, target)
ACTIONS: Dict[Action, Tuple[FrozenSet[OrderStatus], OrderStatus]] = {
    Action.SUBMIT_PAYMENT: (frozenset({S.PENDING_PAYMENT, S.PAYMENT_REJECTED}), S.PAYMENT_SUBMITTED),
    Action.APPROVE_PAYMENT: (frozenset({S.PAYMENT_SUBMITTED}), S.PAYMENT_APPROVED),
    Action.REJECT_PAYMENT: (frozenset({S.PAYMENT_SUBMITTED}), S.PAYMENT_REJECTED),
    Action.SHIP: (frozenset({S.PAYMENT_APPROVED}), S.SHIPPED),
    Action.DELIVER: (frozenset({S.SHIPPED}), S.DELIVERED),
    Action.CANCEL: (frozenset({S.PENDING_PAYMENT, S.PAYMENT_SUBMITTED}), S.CANCELLED),
}


def _edges(pairs: Iterable[Tuple[OrderStatus, OrderStatus]]) -> FrozenSet[Tuple[OrderStatus, OrderStatus]]:
    return frozenset(pairs)


NORMAL_EDGES = _edges((src, target) for sources, target in ACTIONS.values() for src in sources)

GATEWAY_EDGES = _edges([
    (S.PENDING_PAYMENT, S.PAYMENT_SUBMITTED),
    (S.PENDING_PAYMENT, S.PAYMENT_APPROVED),
    (S.PENDING_PAYMENT, S.PAYMENT_REJECTED),
    (S.PAYMENT_SUBMITTED, S.PAYMENT_APPROVED),
    (S.PAYMENT_SUBMITTED, S.PAYMENT_REJECTED),
    (S.PAYMENT_REJECTED, S.PAYMENT_SUBMITTED),
    (S.PAYMENT_REJECTED, S.PAYMENT_APPROVED),
    (S.PAYMENT_APPROVED, S.REFUNDED),
    (S.SHIPPED, S.REFUNDED),
])

TERMINAL_STATUSES = frozenset({S.DELIVERED, S.CANCELLED, S.REFUNDED})


def is_allowed(source: OrderStatus, target: OrderStatus, kind: EdgeKind = EdgeKind.NORMAL) -> bool:
    if kind is EdgeKind.PRIVILEGED:
        return isinstance(source, OrderStatus) and isinstance(target, OrderStatus)
    if kind is EdgeKind.GATEWAY:
        return (source, target) in GATEWAY_EDGES
    return (source, target) in NORMAL_EDGES


def target_for(action: Action, current: OrderStatus) -> OrderStatus:
    """Target status of ``action`` from ``current``; InvalidStateError when the guard fails."""
    sources, target = ACTIONS[action]
    if current not in sources:
        allowed = ", ".join(sorted(s.value for s in sources))
        raise InvalidStateError(
            f"Cannot {action.value.replace('_', ' ')} an order in status '{current.value}' (allowed from: {allowed})"
        )
    return target
