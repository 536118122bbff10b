"""
Payment orchestration.

Opening a session is split into two short transactions around the gateway
call: the first consumes an attempt, the second records the session. No
database transaction is held open while the gateway is being called, and an
attempt stays consumed even when the gateway fails.

Reconciliation is the single place where the gateway's view of a payment is
applied to an order. It is idempotent: re-delivering the same status leaves
the order untouched, and `charged` is never downgraded.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock
from app.core.config import settings
from app.core.enums import CallbackOutcome, OrderStatus, PaymentStatus, TransitionTrigger
from app.core.errors import DomainStateError, ExternalGatewayError, NotFoundError, ValidationError
from app.core.metrics import payment_reconciliations, payment_sessions
from app.core.optimistic_lock import commit_or_raise, with_optimistic_retry
from app.models.order import Order
from app.services.notifications import NotificationDispatcher
from app.services.order_service import load_order
from app.services.order_state import (
    MAX_PAYMENT_ATTEMPTS,
    PAYABLE_STATUSES,
    PAYMENT_TRANSITIONS,
    can_retry_payment,
    ensure_mutable,
    is_corporate,
    transition_order,
    transition_payment,
)
from app.services.payment_gateway import GatewaySession, PaymentGatewayClient

logger = logging.getLogger(__name__)

# Progress reports that may arrive late, after the payment has moved on.
PROGRESS_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.AUTHORIZED})


@dataclass
class PaymentInfo:
    order_id: int
    payment_status: str
    order_status: OrderStatus
    amount: Decimal
    amount_charged: Decimal
    amount_refunded: Decimal
    attempts: int
    can_retry: bool
    payment_url: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


def _ensure_payable(order: Order) -> None:
    if OrderStatus(order.status) not in PAYABLE_STATUSES:
        raise DomainStateError(
            f"Order {order.id} cannot be paid in status {order.status}",
            details={"status": str(order.status)},
        )
    if is_corporate(order):
        raise DomainStateError("Corporate orders are paid by invoice, not online")
    if order.payment_status in (PaymentStatus.CHARGED, PaymentStatus.AUTHORIZED):
        raise DomainStateError(
            f"Order {order.id} already has a {order.payment_status} payment",
            details={"payment_status": str(order.payment_status)},
        )


@with_optimistic_retry("create_payment")
async def _consume_attempt(db: AsyncSession, order_id: int) -> Order:
    order = await load_order(db, order_id)
    _ensure_payable(order)
    if (order.payment_attempts or 0) >= MAX_PAYMENT_ATTEMPTS:
        raise DomainStateError(
            f"Maximum payment attempts ({MAX_PAYMENT_ATTEMPTS}) reached for order {order.id}",
            details={"attempts": order.payment_attempts},
        )
    order.payment_attempts = (order.payment_attempts or 0) + 1
    await commit_or_raise(db, "create_payment")
    return order


@with_optimistic_retry("create_payment")
async def _record_session(db: AsyncSession, order_id: int, session: GatewaySession, clock: Clock):
    order = await load_order(db, order_id)
    _ensure_payable(order)
    transition_payment(order, PaymentStatus.PENDING)
    order.gateway_order_id = session.session_id
    order.payment_url = session.payment_url
    order.payment_created_at = clock.now()
    previous = transition_order(order, OrderStatus.PENDING_PAYMENT, TransitionTrigger.PAYMENT_SESSION)
    await commit_or_raise(db, "create_payment")
    return order, previous


async def create_payment(
    db: AsyncSession,
    order_id: int,
    gateway: PaymentGatewayClient,
    notifier: NotificationDispatcher,
    clock: Clock,
) -> Order:
    """Open a hosted payment session for an order and store its URL."""
    order = await _consume_attempt(db, order_id)
    attempt = order.payment_attempts
    client = order.client

    try:
        session = await gateway.create_session(
            amount=order.final_amount,
            currency=settings.PAYMENT_CURRENCY,
            merchant_order_id=str(order.id),
            return_url=settings.PAYMENT_RETURN_URL.format(order_id=order.id),
            customer={
                "name": client.name if client else None,
                "email": client.email if client else None,
                "phone": client.phone if client else None,
            },
        )
    except ExternalGatewayError:
        payment_sessions.labels(status="failed").inc()
        logger.error(f"Payment session for order {order_id} failed on attempt {attempt}/{MAX_PAYMENT_ATTEMPTS}")
        raise

    order, previous = await _record_session(db, order_id, session, clock)
    payment_sessions.labels(status="created").inc()
    logger.info(f"Payment session {session.session_id} opened for order {order_id} (attempt {attempt})")

    if previous != order.status:
        notifier.on_order_status_changed(order, previous)
    return order


def _parse_payment_status(gateway_status) -> PaymentStatus:
    try:
        target = PaymentStatus(str(gateway_status).lower())
    except ValueError:
        target = None
    if target is None or target == PaymentStatus.NONE:
        payment_reconciliations.labels(result="rejected").inc()
        logger.warning(f"Unrecognised gateway payment status {gateway_status!r}")
        raise ValidationError(
            f"Unrecognised payment status {gateway_status!r}",
            details={"payment_status": str(gateway_status)},
        )
    return target


@with_optimistic_retry("reconcile_payment")
async def _apply_reconciliation(db: AsyncSession, order_id: int, target: PaymentStatus, clock: Clock):
    order = await load_order(db, order_id)
    current = PaymentStatus(order.payment_status)

    if current == PaymentStatus.CHARGED:
        if target != PaymentStatus.CHARGED:
            logger.warning(f"Ignoring {target} for order {order.id}: payment already charged")
        return order, None, False
    if current == target:
        return order, None, False

    ensure_mutable(order)

    if target not in PAYMENT_TRANSITIONS[current]:
        if target in PROGRESS_STATUSES:
            logger.info(f"Ignoring stale {target} for order {order.id} (payment is {current})")
            return order, None, False
        raise DomainStateError(
            f"Cannot move payment of order {order.id} from {current} to {target}",
            details={"from": str(current), "to": str(target)},
        )

    transition_payment(order, target)
    previous = None
    if target == PaymentStatus.CHARGED:
        order.payment_completed_at = clock.now()
        if order.status == OrderStatus.PENDING_PAYMENT:
            previous = transition_order(order, OrderStatus.PAID, TransitionTrigger.PAYMENT_CHARGED)

    await commit_or_raise(db, "reconcile_payment")
    return order, previous, True


async def reconcile_payment(
    db: AsyncSession,
    order_id: int,
    gateway_status,
    notifier: NotificationDispatcher,
    clock: Clock,
) -> Order:
    """Apply a gateway-reported payment status to the order."""
    target = _parse_payment_status(gateway_status)
    order, previous, changed = await _apply_reconciliation(db, order_id, target, clock)

    if not changed:
        payment_reconciliations.labels(result="noop").inc()
        return order

    payment_reconciliations.labels(result=str(target)).inc()
    logger.info(f"Order {order.id} payment reconciled to {target}")
    if target == PaymentStatus.CHARGED:
        notifier.on_payment_success(order)
    if previous is not None:
        notifier.on_order_status_changed(order, previous)
    return order


async def handle_payment_callback(
    db: AsyncSession,
    order_id: int,
    outcome: CallbackOutcome,
    gateway: PaymentGatewayClient,
    notifier: NotificationDispatcher,
    clock: Clock,
) -> Order:
    """
    Return-page callback. The outcome reported by the browser is only a hint;
    the gateway is asked for the authoritative status.
    """
    order = await load_order(db, order_id)
    if not order.gateway_order_id:
        raise NotFoundError("Payment session for order", order_id)

    try:
        status = await gateway.check_status(order.gateway_order_id)
    except ExternalGatewayError:
        if CallbackOutcome(outcome) == CallbackOutcome.FAILURE:
            logger.warning(f"Gateway unreachable on failure callback for order {order_id}; marking failed")
            return await reconcile_payment(db, order_id, PaymentStatus.FAILED, notifier, clock)
        raise

    return await reconcile_payment(db, order_id, status.payment_status, notifier, clock)


async def get_payment_info(db: AsyncSession, order_id: int, gateway: PaymentGatewayClient) -> PaymentInfo:
    order = await load_order(db, order_id)
    payment_status = str(order.payment_status)
    amount_charged = Decimal("0.00")
    amount_refunded = Decimal("0.00")

    if order.gateway_order_id:
        status = await gateway.check_status(order.gateway_order_id)
        payment_status = status.payment_status
        amount_charged = status.amount_charged
        amount_refunded = status.amount_refunded

    return PaymentInfo(
        order_id=order.id,
        payment_status=payment_status,
        order_status=order.status,
        amount=order.final_amount,
        amount_charged=amount_charged,
        amount_refunded=amount_refunded,
        attempts=order.payment_attempts,
        can_retry=can_retry_payment(order),
        payment_url=order.payment_url,
        created_at=order.payment_created_at,
        completed_at=order.payment_completed_at,
    )
