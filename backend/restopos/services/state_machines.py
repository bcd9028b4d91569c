"""Transition tables for every forward-only status field.

Each machine lists, per state, the states it may move to. Any edge missing
from the table (self-edges included) is rejected with InvalidTransitionError.
"""

from enum import Enum
from typing import Dict, FrozenSet, Generic, Mapping, TypeVar

from restopos.core.exceptions import InvalidTransitionError
from restopos.models.order import OrderItemStatus, OrderStatus
from restopos.models.payment import PaymentStatus
from restopos.models.reservation import ReservationStatus
from restopos.models.staff_action import ActionStatus
from restopos.models.table import SessionStatus

S = TypeVar("S", bound=Enum)


class StateMachine(Generic[S]):
    """A finite-state machine defined by an explicit transition table."""

    def __init__(self, name: str, transitions: Mapping[S, FrozenSet[S]]):
        self.name = name
        self._transitions: Dict[S, FrozenSet[S]] = dict(transitions)

    def allowed(self, current: S) -> FrozenSet[S]:
        return self._transitions.get(current, frozenset())

    def can_transition(self, current: S, target: S) -> bool:
        return target in self.allowed(current)

    def ensure_transition(self, current: S, target: S) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransitionError(self.name, current, target)

    def is_terminal(self, state: S) -> bool:
        return not self.allowed(state)


SESSION_MACHINE: StateMachine[SessionStatus] = StateMachine("session", {
    SessionStatus.OPEN: frozenset({SessionStatus.CLOSED}),
    SessionStatus.CLOSED: frozenset(),
})

ORDER_MACHINE: StateMachine[OrderStatus] = StateMachine("order", {
    OrderStatus.PENDING: frozenset({
        OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY,
        OrderStatus.SERVED, OrderStatus.CANCELLED,
    }),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.SERVED, OrderStatus.CANCELLED,
    }),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.SERVED, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.SERVED, OrderStatus.CANCELLED}),
    OrderStatus.SERVED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
})

ORDER_ITEM_MACHINE: StateMachine[OrderItemStatus] = StateMachine("order item", {
    OrderItemStatus.PENDING: frozenset({
        OrderItemStatus.PREPARING, OrderItemStatus.READY, OrderItemStatus.SERVED,
        OrderItemStatus.CANCELLED,
    }),
    OrderItemStatus.PREPARING: frozenset({
        OrderItemStatus.READY, OrderItemStatus.SERVED, OrderItemStatus.CANCELLED,
    }),
    OrderItemStatus.READY: frozenset({OrderItemStatus.SERVED, OrderItemStatus.CANCELLED}),
    OrderItemStatus.SERVED: frozenset(),
    OrderItemStatus.CANCELLED: frozenset(),
})

# The kitchen display only steps one stage at a time
KITCHEN_MACHINE: StateMachine[OrderItemStatus] = StateMachine("kitchen item", {
    OrderItemStatus.PENDING: frozenset({OrderItemStatus.PREPARING, OrderItemStatus.CANCELLED}),
    OrderItemStatus.PREPARING: frozenset({OrderItemStatus.READY, OrderItemStatus.CANCELLED}),
    OrderItemStatus.READY: frozenset({OrderItemStatus.SERVED}),
    OrderItemStatus.SERVED: frozenset(),
    OrderItemStatus.CANCELLED: frozenset(),
})

PAYMENT_MACHINE: StateMachine[PaymentStatus] = StateMachine("payment", {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
})

RESERVATION_MACHINE: StateMachine[ReservationStatus] = StateMachine("reservation", {
    ReservationStatus.PENDING: frozenset({
        ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW,
    }),
    ReservationStatus.CONFIRMED: frozenset({
        ReservationStatus.COMPLETED, ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW,
    }),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
})

ACTION_MACHINE: StateMachine[ActionStatus] = StateMachine("action", {
    ActionStatus.PENDING: frozenset({ActionStatus.IN_PROGRESS, ActionStatus.COMPLETED}),
    ActionStatus.IN_PROGRESS: frozenset({ActionStatus.COMPLETED}),
    ActionStatus.COMPLETED: frozenset(),
})
