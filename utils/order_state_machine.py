"""
Order State Machine for validating order status transitions.

Every status change of an order goes through this table. An event is legal only
from the statuses listed for it, and only for the listed actor roles.
"""

import logging
from typing import Dict, List, Tuple

from enums.actor_role import ActorRole
from enums.order_event import OrderEvent
from enums.order_status import OrderStatus
from exceptions.order import IllegalTransitionError, TransitionNotPermittedError

logger = logging.getLogger(__name__)


class OrderStatusTransition:
    """Represents a valid status transition with metadata"""

    def __init__(self, event: OrderEvent, from_status: OrderStatus, to_status: OrderStatus,
                 allowed_roles: Tuple[ActorRole, ...], description: str = ""):
        self.event = event
        self.from_status = from_status
        self.to_status = to_status
        self.allowed_roles = allowed_roles
        self.description = description

    def __repr__(self):
        roles = ",".join(role.value for role in self.allowed_roles)
        return f"{self.from_status.value} -[{self.event.value}]-> {self.to_status.value} ({roles})"


_USER = (ActorRole.USER,)
_ADMIN = (ActorRole.ADMIN,)
_SYSTEM = (ActorRole.SYSTEM,)
_USER_OR_ADMIN = (ActorRole.USER, ActorRole.ADMIN)


class OrderStateMachine:
    """
    Finite state machine for order status transitions.

    Happy path:
    - DRAFT -> PENDING (submit, price frozen)
    - PENDING -> PAID (gateway confirmed capture)
    - PAID -> PROCESSING -> SHIPPED -> COMPLETED (admin)

    Side paths:
    - DRAFT -> DRAFT (save overwrites the snapshot)
    - PENDING -> PAYMENT_FAILED -> PENDING (retry)
    - PAYMENT_FAILED -> PAID (late gateway confirmation of a capture)
    - any non-terminal -> CANCELLED (admin only once paid)

    COMPLETED and CANCELLED are terminal.
    """

    VALID_TRANSITIONS: List[OrderStatusTransition] = [
        OrderStatusTransition(
            OrderEvent.SAVE_DRAFT, OrderStatus.DRAFT, OrderStatus.DRAFT, _USER,
            description="Draft snapshot replaced"
        ),
        OrderStatusTransition(
            OrderEvent.SUBMIT, OrderStatus.DRAFT, OrderStatus.PENDING, _USER_OR_ADMIN,
            description="Draft submitted for payment, price frozen"
        ),
        OrderStatusTransition(
            OrderEvent.PAYMENT_CONFIRMED, OrderStatus.PENDING, OrderStatus.PAID, _SYSTEM,
            description="Payment captured and verified with the gateway"
        ),
        OrderStatusTransition(
            OrderEvent.PAYMENT_FAILED, OrderStatus.PENDING, OrderStatus.PAYMENT_FAILED, _SYSTEM,
            description="Payment declined or captured amount mismatched"
        ),
        OrderStatusTransition(
            OrderEvent.PAYMENT_CONFIRMED, OrderStatus.PAYMENT_FAILED, OrderStatus.PAID, _SYSTEM,
            description="Capture confirmed by the gateway after a failed attempt"
        ),
        OrderStatusTransition(
            OrderEvent.PAYMENT_FAILED, OrderStatus.PAYMENT_FAILED, OrderStatus.PAYMENT_FAILED, _SYSTEM,
            description="Another payment attempt declined"
        ),
        OrderStatusTransition(
            OrderEvent.RETRY_PAYMENT, OrderStatus.PAYMENT_FAILED, OrderStatus.PENDING,
            (ActorRole.USER, ActorRole.SYSTEM),
            description="New payment attempt started"
        ),
        OrderStatusTransition(
            OrderEvent.START_PROCESSING, OrderStatus.PAID, OrderStatus.PROCESSING, _ADMIN,
            description="Production started"
        ),
        OrderStatusTransition(
            OrderEvent.SHIP, OrderStatus.PROCESSING, OrderStatus.SHIPPED, _ADMIN,
            description="Handed to carrier"
        ),
        OrderStatusTransition(
            OrderEvent.COMPLETE, OrderStatus.SHIPPED, OrderStatus.COMPLETED, _ADMIN,
            description="Delivered"
        ),

        # Cancellation: users may cancel until money has moved, admins always
        OrderStatusTransition(
            OrderEvent.CANCEL, OrderStatus.DRAFT, OrderStatus.CANCELLED, _USER_OR_ADMIN,
            description="Draft discarded"
        ),
        OrderStatusTransition(
            OrderEvent.CANCEL, OrderStatus.PENDING, OrderStatus.CANCELLED, _USER_OR_ADMIN,
            description="Cancelled before payment"
        ),
        OrderStatusTransition(
            OrderEvent.CANCEL, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED, _USER_OR_ADMIN,
            description="Cancelled after failed payment"
        ),
        OrderStatusTransition(
            OrderEvent.CANCEL, OrderStatus.PAID, OrderStatus.CANCELLED, _ADMIN,
            description="Paid order cancelled by admin"
        ),
        OrderStatusTransition(
            OrderEvent.CANCEL, OrderStatus.PROCESSING, OrderStatus.CANCELLED, _ADMIN,
            description="Order cancelled during production"
        ),
        OrderStatusTransition(
            OrderEvent.CANCEL, OrderStatus.SHIPPED, OrderStatus.CANCELLED, _ADMIN,
            description="Shipped order cancelled by admin (return)"
        ),
    ]

    TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

    _transition_map: Dict[Tuple[OrderEvent, OrderStatus], OrderStatusTransition] = {}

    @classmethod
    def _build_transition_map(cls):
        if cls._transition_map:
            return
        for transition in cls.VALID_TRANSITIONS:
            cls._transition_map[(transition.event, transition.from_status)] = transition

    @classmethod
    def get_transition(cls, from_status: OrderStatus, event: OrderEvent) -> OrderStatusTransition | None:
        cls._build_transition_map()
        return cls._transition_map.get((event, from_status))

    @classmethod
    def is_valid_transition(cls, from_status: OrderStatus, event: OrderEvent) -> bool:
        return cls.get_transition(from_status, event) is not None

    @classmethod
    def resolve(cls, order_id: int | None, from_status: OrderStatus, event: OrderEvent,
                role: ActorRole) -> OrderStatusTransition:
        """
        Return the transition for event from from_status, checking the actor role.

        Raises:
            IllegalTransitionError: No such edge from the current status
            TransitionNotPermittedError: Edge exists but the role may not trigger it
        """
        transition = cls.get_transition(from_status, event)
        if transition is None:
            logger.warning(f"Illegal transition for order {order_id}: {from_status.value} -[{event.value}]")
            raise IllegalTransitionError(order_id, from_status.value, event.value)
        if role not in transition.allowed_roles:
            logger.warning(f"Role {role.value} not permitted to {event.value} order {order_id} in {from_status.value}")
            raise TransitionNotPermittedError(order_id, event.value, role.value)
        return transition

    @classmethod
    def get_available_events(cls, from_status: OrderStatus, role: ActorRole | None = None) -> List[OrderEvent]:
        cls._build_transition_map()
        return [
            t.event for t in cls.VALID_TRANSITIONS
            if t.from_status == from_status and (role is None or role in t.allowed_roles)
        ]

    @classmethod
    def is_final_status(cls, status: OrderStatus) -> bool:
        return status in cls.TERMINAL_STATUSES

    @classmethod
    def log_transition(cls, order_id: int, transition: OrderStatusTransition, role: ActorRole,
                       actor_id: str | None = None):
        performer = f"{role.value} {actor_id}" if actor_id else role.value
        logger.info(
            f"ORDER_STATUS_TRANSITION: Order {order_id} {transition.from_status.value} -> "
            f"{transition.to_status.value} by {performer}: {transition.description}"
        )
