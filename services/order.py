import asyncio
import json
from datetime import datetime
import logging
from typing import Any, Awaitable, Callable

import aiohttp
from sqlalchemy import func

import config
import db
from enums.actor_role import ActorRole
from enums.notification_event import NotificationEvent
from enums.order_event import OrderEvent
from enums.order_status import OrderStatus
from enums.payment_verification_status import PaymentVerificationStatus
from exceptions.cart import EmptyCartException
from exceptions.order import (
    IllegalTransitionError,
    OrderNotFoundException,
    OrderOwnershipException,
    PersistenceConflictError,
    TransitionNotPermittedError,
)
from exceptions.payment import PaymentNotConfirmedException, PaymentVerificationTimeoutError
from models.actor import ActorDTO
from models.cart import CartDTO, CartInput
from models.order import OrderDTO
from models.order_notification import OrderNotificationDTO
from models.payment import PaymentVerificationDTO
from models.price import PriceBreakdownDTO, PricingConfigDTO
from repositories.order import OrderRepository
from repositories.order_notification import OrderNotificationRepository
from services.cart import CartNormalizer
from services.notification import NotificationDispatcher
from services.payment import PaymentGateway
from services.pricing import PricingService
from services.reconciliation import PriceReconciler
from services.subscription import DatabaseSubscriptionResolver, SubscriptionResolver
from utils.order_state_machine import OrderStateMachine, OrderStatusTransition
from utils.transaction_manager import TransactionManager

logger = logging.getLogger(__name__)

# Values computed from the current row before the compare-and-set write
PrepareFn = Callable[[OrderDTO], Awaitable[dict[str, Any]]]


class OrderLifecycleService:
    """
    Owns every write to the orders table.

    Each status change is a compare-and-set on (status, version): the row is read,
    the edge is checked against OrderStateMachine, and the update only applies if
    nobody else changed the row in between. A lost race re-reads the row; if the
    requested edge is no longer legal the caller gets IllegalTransitionError,
    otherwise the write is retried up to max_attempts times.

    Collaborators are injected so the service can run against fakes in tests:
        lifecycle = OrderLifecycleService(
            payment_gateway=StripePaymentGateway(),
            notification_dispatcher=NotificationDispatcher(),
        )
    """

    # Timestamp column stamped when an event is applied
    EVENT_TIMESTAMPS = {
        OrderEvent.SUBMIT: "submitted_at",
        OrderEvent.PAYMENT_CONFIRMED: "paid_at",
        OrderEvent.START_PROCESSING: "processing_at",
        OrderEvent.SHIP: "shipped_at",
        OrderEvent.COMPLETE: "completed_at",
        OrderEvent.CANCEL: "cancelled_at",
    }

    FULFILLMENT_EVENTS = (OrderEvent.START_PROCESSING, OrderEvent.SHIP, OrderEvent.COMPLETE)

    def __init__(
        self,
        payment_gateway: PaymentGateway,
        notification_dispatcher: NotificationDispatcher | None = None,
        subscription_resolver: SubscriptionResolver | None = None,
        cart_normalizer: CartNormalizer | None = None,
        pricing_config: PricingConfigDTO | None = None,
        reconciler: PriceReconciler | None = None,
        max_attempts: int | None = None,
        verification_timeout_seconds: float | None = None,
        verification_max_retries: int | None = None,
        verification_retry_delay_seconds: float = 0.5,
    ):
        self.payment_gateway = payment_gateway
        self.notification_dispatcher = notification_dispatcher or NotificationDispatcher()
        self.subscription_resolver = subscription_resolver or DatabaseSubscriptionResolver()
        self.cart_normalizer = cart_normalizer or CartNormalizer()
        self.pricing_config = pricing_config or PricingConfigDTO.from_settings()
        self.reconciler = reconciler or PriceReconciler()
        self.max_attempts = max_attempts or config.TRANSITION_MAX_ATTEMPTS
        self.verification_timeout_seconds = (
            verification_timeout_seconds or config.PAYMENT_VERIFICATION_TIMEOUT_SECONDS
        )
        self.verification_max_retries = (
            config.PAYMENT_VERIFICATION_MAX_RETRIES if verification_max_retries is None else verification_max_retries
        )
        self.verification_retry_delay_seconds = verification_retry_delay_seconds

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int, actor: ActorDTO) -> OrderDTO:
        order = await self._load(order_id)
        self._check_ownership(order, actor)
        return order

    async def list_orders(self, user_id: str) -> list[OrderDTO]:
        async with db.get_db_session() as session:
            return await OrderRepository.get_by_user_id(user_id, session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def save_draft(self, user_id: str, cart_input: CartInput, design_reference: str | None = None,
                         order_id: int | None = None) -> OrderDTO:
        """
        Create a draft, or replace an existing draft's snapshot wholesale.

        Saving the same cart twice leaves the draft with identical contents.
        """
        cart, breakdown = await self._price_input(user_id, cart_input)

        if order_id is None:
            order_dto = OrderDTO(
                user_id=user_id,
                design_reference=design_reference,
                status=OrderStatus.DRAFT,
                total_amount_minor=breakdown.grand_total_minor,
                currency=config.CURRENCY,
                version=1,
                cart_snapshot_json=cart.model_dump_json(),
                breakdown_json=breakdown.model_dump_json(),
            )
            async with TransactionManager.atomic_transaction(f"draft for {user_id}") as session:
                order_id = await OrderRepository.create(order_dto, session)
            logger.info(f"ORDER_CREATED: Draft order {order_id} for user {user_id} ({breakdown.grand_total_minor})")
            return await self._load(order_id)

        async def prepare(order: OrderDTO) -> dict[str, Any]:
            values = {
                "cart_snapshot_json": cart.model_dump_json(),
                "breakdown_json": breakdown.model_dump_json(),
                "total_amount_minor": breakdown.grand_total_minor,
            }
            if design_reference is not None:
                values["design_reference"] = design_reference
            return values

        return await self._apply_transition(order_id, OrderEvent.SAVE_DRAFT, ActorDTO.user(user_id), prepare)

    async def checkout(self, user_id: str, cart_input: CartInput, client_total_minor: int,
                       design_reference: str | None = None) -> OrderDTO:
        """
        Price a cart and create a pending order in one step.

        The stored total is the server's grand total; client_total_minor is only
        reconciled against it.

        Raises:
            EmptyCartException: Cart has no lines
            AmountMismatchError: client_total_minor outside tolerance
        """
        cart, breakdown = await self._price_input(user_id, cart_input)
        if cart.is_empty:
            raise EmptyCartException(user_id)
        reconciled = self.reconciler.reconcile(client_total_minor, breakdown)

        order_dto = OrderDTO(
            user_id=user_id,
            design_reference=design_reference,
            status=OrderStatus.PENDING,
            total_amount_minor=reconciled.final_amount_minor,
            currency=config.CURRENCY,
            version=1,
            cart_snapshot_json=cart.model_dump_json(),
            breakdown_json=breakdown.model_dump_json(),
            submitted_at=datetime.now(),
        )
        async with TransactionManager.atomic_transaction(f"checkout for {user_id}") as session:
            order_id = await OrderRepository.create(order_dto, session)
        logger.info(
            f"ORDER_CREATED: Pending order {order_id} for user {user_id} "
            f"(total {reconciled.final_amount_minor}, client {client_total_minor})"
        )
        return await self._load(order_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def transition(self, order_id: int, event: OrderEvent, actor: ActorDTO, **details) -> OrderDTO:
        """
        Generic entry point: apply event to the order on behalf of actor.

        details carries event-specific arguments: cart_input and design_reference
        (SAVE_DRAFT), client_total_minor (SUBMIT), payment_ref (PAYMENT_CONFIRMED),
        reason (PAYMENT_FAILED, CANCEL), tracking_id (SHIP).
        """
        if event == OrderEvent.SAVE_DRAFT:
            if actor.role != ActorRole.USER:
                raise TransitionNotPermittedError(order_id, event.value, actor.role.value)
            return await self.save_draft(
                actor.user_id, details["cart_input"], details.get("design_reference"), order_id=order_id
            )
        if event == OrderEvent.SUBMIT:
            return await self.submit_draft(order_id, actor, details.get("client_total_minor"))
        if event in (OrderEvent.PAYMENT_CONFIRMED, OrderEvent.PAYMENT_FAILED):
            if actor.role != ActorRole.SYSTEM:
                raise TransitionNotPermittedError(order_id, event.value, actor.role.value)
            if event == OrderEvent.PAYMENT_CONFIRMED:
                return await self.confirm_payment(order_id, details["payment_ref"])
            return await self.record_payment_failure(order_id, details.get("reason", "payment failed"),
                                                     details.get("payment_ref"))
        if event == OrderEvent.RETRY_PAYMENT:
            return await self.retry_payment(order_id, actor)
        if event in self.FULFILLMENT_EVENTS:
            return await self.advance_fulfillment(order_id, event, actor, details.get("tracking_id"))
        if event == OrderEvent.CANCEL:
            return await self.cancel(order_id, actor, details.get("reason"))
        raise IllegalTransitionError(order_id, None, str(event))

    async def submit_draft(self, order_id: int, actor: ActorDTO, client_total_minor: int | None = None) -> OrderDTO:
        """
        draft -> pending.

        Unit prices are re-read from the catalog and subscriber status is
        re-resolved, so a stale draft is always charged current prices.
        """
        async def prepare(order: OrderDTO) -> dict[str, Any]:
            cart = order.cart
            if cart is None or cart.is_empty:
                raise EmptyCartException(order.user_id, order.id)
            is_subscriber = await self.subscription_resolver.is_subscriber(order.user_id)
            cart = self.cart_normalizer.refresh_prices(cart).model_copy(update={"is_subscriber": is_subscriber})
            breakdown = PricingService.price(cart, self.pricing_config)
            if client_total_minor is not None:
                self.reconciler.reconcile(client_total_minor, breakdown)
            return {
                "cart_snapshot_json": cart.model_dump_json(),
                "breakdown_json": breakdown.model_dump_json(),
                "total_amount_minor": breakdown.grand_total_minor,
            }

        return await self._apply_transition(order_id, OrderEvent.SUBMIT, actor, prepare)

    async def confirm_payment(self, order_id: int, payment_ref: str) -> OrderDTO:
        """
        pending (or payment_failed) -> paid, after the gateway confirms capture of
        the frozen total.

        A gateway FAILED answer (including a captured amount that differs from the
        order total) moves the order to payment_failed instead. Errors of the
        gateway API itself (rate limits, rejected keys) are retried and never count
        as a failed payment.

        Raises:
            IllegalTransitionError: Order is neither pending nor payment_failed
            PaymentNotConfirmedException: Gateway still processing; order unchanged
            PaymentVerificationTimeoutError: Gateway unreachable or erroring; order unchanged
        """
        order = await self._load(order_id)
        OrderStateMachine.resolve(order.id, order.status, OrderEvent.PAYMENT_CONFIRMED, ActorRole.SYSTEM)

        verification = await self._verify_with_gateway(order, payment_ref)

        if verification.status == PaymentVerificationStatus.PENDING:
            logger.info(f"Payment {payment_ref} for order {order_id} still processing")
            raise PaymentNotConfirmedException(order_id, payment_ref)

        if verification.status == PaymentVerificationStatus.FAILED:
            return await self.record_payment_failure(
                order_id, verification.failure_reason or "payment failed", payment_ref
            )

        if verification.amount_minor is not None and verification.amount_minor != order.total_amount_minor:
            return await self.record_payment_failure(
                order_id,
                f"captured amount {verification.amount_minor} does not match order total {order.total_amount_minor}",
                payment_ref,
            )

        async def prepare(current: OrderDTO) -> dict[str, Any]:
            return {"payment_ref": payment_ref, "payment_failure_reason": None}

        return await self._apply_transition(
            order_id, OrderEvent.PAYMENT_CONFIRMED, ActorDTO.system(), prepare,
            notification_event=NotificationEvent.ORDER_PAID,
        )

    async def record_payment_failure(self, order_id: int, reason: str, payment_ref: str | None = None) -> OrderDTO:
        async def prepare(order: OrderDTO) -> dict[str, Any]:
            values = {"payment_failure_reason": reason}
            if payment_ref is not None:
                values["payment_ref"] = payment_ref
            return values

        logger.warning(f"Payment failed for order {order_id}: {reason}")
        return await self._apply_transition(order_id, OrderEvent.PAYMENT_FAILED, ActorDTO.system(), prepare)

    async def retry_payment(self, order_id: int, actor: ActorDTO) -> OrderDTO:
        async def prepare(order: OrderDTO) -> dict[str, Any]:
            return {"payment_ref": None, "payment_failure_reason": None}

        return await self._apply_transition(order_id, OrderEvent.RETRY_PAYMENT, actor, prepare)

    async def advance_fulfillment(self, order_id: int, event: OrderEvent, actor: ActorDTO,
                                  tracking_id: str | None = None) -> OrderDTO:
        if event not in self.FULFILLMENT_EVENTS:
            raise IllegalTransitionError(order_id, None, event.value)

        async def prepare(order: OrderDTO) -> dict[str, Any]:
            if event == OrderEvent.SHIP and tracking_id:
                return {"tracking_id": tracking_id}
            return {}

        notification_event = NotificationEvent.ORDER_SHIPPED if event == OrderEvent.SHIP else None
        return await self._apply_transition(order_id, event, actor, prepare, notification_event=notification_event)

    async def cancel(self, order_id: int, actor: ActorDTO, reason: str | None = None) -> OrderDTO:
        """Cancel from any non-terminal status. Paid and later orders need an admin."""
        async def prepare(order: OrderDTO) -> dict[str, Any]:
            return {"cancellation_reason": reason}

        def notify_on(transition: OrderStatusTransition) -> NotificationEvent | None:
            # Money has moved: the document service issues the refund paperwork
            if transition.from_status in (OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED):
                return NotificationEvent.ORDER_CANCELLED
            return None

        return await self._apply_transition(order_id, OrderEvent.CANCEL, actor, prepare, notification_event=notify_on)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _apply_transition(
        self,
        order_id: int,
        event: OrderEvent,
        actor: ActorDTO,
        prepare: PrepareFn | None = None,
        notification_event: NotificationEvent | Callable[[OrderStatusTransition], NotificationEvent | None] | None = None,
    ) -> OrderDTO:
        for attempt in range(1, self.max_attempts + 1):
            order = await self._load(order_id)
            self._check_ownership(order, actor)
            transition = OrderStateMachine.resolve(order.id, order.status, event, actor.role)

            values = await prepare(order) if prepare else {}
            values["status"] = transition.to_status
            timestamp_column = self.EVENT_TIMESTAMPS.get(event)
            if timestamp_column:
                values[timestamp_column] = func.now()

            notify = notification_event(transition) if callable(notification_event) else notification_event
            notification_id = None

            async with TransactionManager.atomic_transaction(f"order {order.id} {event.value}") as session:
                applied = await OrderRepository.compare_and_set(order.id, order.status, order.version, values, session)
                if applied and notify is not None:
                    notification_id = await OrderNotificationRepository.create(
                        OrderNotificationDTO(
                            order_id=order.id,
                            event=notify,
                            payload_json=json.dumps(self._notification_payload(order, transition, values)),
                        ),
                        session,
                    )

            if applied:
                OrderStateMachine.log_transition(order.id, transition, actor.role, actor.user_id)
                if notification_id is not None:
                    self.notification_dispatcher.dispatch(notification_id)
                return await self._load(order_id)

            logger.warning(
                f"Order {order_id} changed concurrently during {event.value} "
                f"(attempt {attempt}/{self.max_attempts}), re-reading"
            )

        raise PersistenceConflictError(order_id, self.max_attempts)

    async def _verify_with_gateway(self, order: OrderDTO, payment_ref: str) -> PaymentVerificationDTO:
        async def verify_once() -> PaymentVerificationDTO:
            return await asyncio.wait_for(
                self.payment_gateway.verify(order.total_amount_minor, payment_ref),
                timeout=self.verification_timeout_seconds,
            )

        verify = TransactionManager.with_retry(
            max_retries=self.verification_max_retries,
            delay_base=self.verification_retry_delay_seconds,
            retry_on=(asyncio.TimeoutError, aiohttp.ClientError),
        )(verify_once)

        try:
            return await verify()
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            attempts = self.verification_max_retries + 1
            logger.error(f"Payment verification for order {order.id} gave up after {attempts} attempt(s): {e!r}")
            raise PaymentVerificationTimeoutError(order.id, payment_ref, attempts)

    async def _price_input(self, user_id: str, cart_input: CartInput) -> tuple[CartDTO, PriceBreakdownDTO]:
        cart_input = CartInput.model_validate(cart_input)
        is_subscriber = await self.subscription_resolver.is_subscriber(user_id)
        cart = self.cart_normalizer.normalize(
            cart_input.items, cart_input.add_ons, cart_input.team_roster, is_subscriber=is_subscriber
        )
        return cart, PricingService.price(cart, self.pricing_config)

    async def _load(self, order_id: int) -> OrderDTO:
        async with db.get_db_session() as session:
            order = await OrderRepository.get_by_id(order_id, session)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order

    @staticmethod
    def _check_ownership(order: OrderDTO, actor: ActorDTO) -> None:
        if actor.role == ActorRole.USER and order.user_id != actor.user_id:
            logger.warning(f"User {actor.user_id} tried to access order {order.id} owned by {order.user_id}")
            raise OrderOwnershipException(order.id, actor.user_id)

    @staticmethod
    def _notification_payload(order: OrderDTO, transition: OrderStatusTransition, values: dict[str, Any]) -> dict:
        return {
            "order_id": order.id,
            "user_id": order.user_id,
            "design_reference": order.design_reference,
            "status": transition.to_status.value,
            "total_amount_minor": order.total_amount_minor,
            "currency": order.currency.value if order.currency else None,
            "payment_ref": values.get("payment_ref", order.payment_ref),
            "tracking_id": values.get("tracking_id", order.tracking_id),
            "cancellation_reason": values.get("cancellation_reason"),
            "breakdown": json.loads(order.breakdown_json) if order.breakdown_json else None,
        }
