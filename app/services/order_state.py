"""Order status and payment status state machines.

Every status write in the service goes through `transition_order` or
`transition_payment`; totals go through `apply_pricing`. Nothing else assigns
`Order.status`, `Order.payment_status` or the derived money columns.
"""
import logging
from typing import Dict, FrozenSet, Optional, Tuple

from app.core.enums import OrderStatus, PaymentStatus, TransitionTrigger
from app.core.errors import DomainStateError, ValidationError
from app.core.metrics import order_transitions
from app.models.order import Order
from app.schemas.pricing import PriceBreakdown
from app.services.pricing import calculate

logger = logging.getLogger(__name__)

MAX_PAYMENT_ATTEMPTS = 3

PAYABLE_STATUSES = frozenset({OrderStatus.SUBMITTED, OrderStatus.PENDING_PAYMENT})
NON_TERMINAL_STATUSES = frozenset(s for s in OrderStatus if not s.is_terminal)

_T = TransitionTrigger

ORDER_TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], FrozenSet[TransitionTrigger]] = {
    (OrderStatus.DRAFT, OrderStatus.SUBMITTED): frozenset({_T.SUBMIT}),
    (OrderStatus.SUBMITTED, OrderStatus.PENDING_PAYMENT): frozenset({_T.PAYMENT_SESSION}),
    (OrderStatus.SUBMITTED, OrderStatus.PROCESSING): frozenset({_T.INVOICE_APPROVAL}),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID): frozenset({_T.PAYMENT_CHARGED}),
    (OrderStatus.PENDING_PAYMENT, OrderStatus.PENDING_PAYMENT): frozenset({_T.PAYMENT_SESSION}),
    (OrderStatus.PAID, OrderStatus.PROCESSING): frozenset({_T.SCHEDULER, _T.MANUAL}),
    (OrderStatus.PROCESSING, OrderStatus.COMPLETED): frozenset({_T.SCHEDULER, _T.MANUAL}),
}
for _status in NON_TERMINAL_STATUSES:
    ORDER_TRANSITIONS[(_status, OrderStatus.CANCELLED)] = frozenset({_T.CANCEL})

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.NONE: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, PaymentStatus.CHARGED, PaymentStatus.FAILED,
    }),
    PaymentStatus.AUTHORIZED: frozenset({PaymentStatus.CHARGED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.CHARGED}),
    PaymentStatus.CHARGED: frozenset(),
}

# Commercial fields can only change while no payment session may reference the amount.
PRICE_EDITABLE_STATUSES = frozenset({OrderStatus.DRAFT, OrderStatus.SUBMITTED})


def is_corporate(order: Order) -> bool:
    return bool(order.client is not None and order.client.is_corporate)


def ensure_mutable(order: Order) -> None:
    if OrderStatus(order.status).is_terminal:
        raise DomainStateError(
            f"Order {order.id} is {order.status} and can no longer be changed",
            details={"status": str(order.status)},
        )


def can_transition(current: OrderStatus, target: OrderStatus, trigger: TransitionTrigger) -> bool:
    return trigger in ORDER_TRANSITIONS.get((current, target), frozenset())


def manual_trigger_for(order: Order, target: OrderStatus) -> TransitionTrigger:
    """Pick the trigger a staff-initiated status change stands for."""
    if target == OrderStatus.CANCELLED:
        return _T.CANCEL
    if target == OrderStatus.SUBMITTED:
        return _T.SUBMIT
    if order.status == OrderStatus.SUBMITTED and target == OrderStatus.PROCESSING:
        return _T.INVOICE_APPROVAL
    return _T.MANUAL


def transition_order(order: Order, target: OrderStatus, trigger: TransitionTrigger) -> OrderStatus:
    """Validate and apply a status change in memory. Returns the previous status."""
    current = OrderStatus(order.status)
    target = OrderStatus(target)

    if not can_transition(current, target, trigger):
        raise DomainStateError(
            f"Cannot move order {order.id} from {current} to {target} ({trigger})",
            details={"from": str(current), "to": str(target), "trigger": str(trigger)},
        )

    if trigger == _T.INVOICE_APPROVAL and not is_corporate(order):
        raise DomainStateError(
            "Only invoice-billed (corporate) orders can be approved without payment",
            details={"from": str(current), "to": str(target)},
        )
    if trigger == _T.PAYMENT_SESSION and is_corporate(order):
        raise DomainStateError("Corporate orders are paid by invoice, not online")
    if trigger == _T.SUBMIT and not order.menu_items:
        raise ValidationError("An order needs at least one menu item before it is submitted")

    order.status = target
    order_transitions.labels(from_status=str(current), to_status=str(target), trigger=str(trigger)).inc()
    if current != target:
        logger.info(f"Order {order.id} status {current} -> {target} ({trigger})")
    return current


def ensure_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if target not in PAYMENT_TRANSITIONS[PaymentStatus(current)]:
        raise DomainStateError(
            f"Cannot move payment from {current} to {target}",
            details={"from": str(current), "to": str(target)},
        )


def transition_payment(order: Order, target: PaymentStatus) -> PaymentStatus:
    current = PaymentStatus(order.payment_status)
    target = PaymentStatus(target)
    ensure_payment_transition(current, target)
    if target != PaymentStatus.NONE and is_corporate(order):
        raise DomainStateError("Corporate orders are paid by invoice, not online")
    order.payment_status = target
    return current


def can_retry_payment(order: Order) -> bool:
    return (
        OrderStatus(order.status) in PAYABLE_STATUSES
        and not is_corporate(order)
        and order.payment_status not in (PaymentStatus.CHARGED, PaymentStatus.AUTHORIZED)
        and (order.payment_attempts or 0) < MAX_PAYMENT_ATTEMPTS
    )


def apply_pricing(order: Order, breakdown: PriceBreakdown) -> None:
    """Write line items and every derived money column together."""
    order.menu_items = [item.to_json() for item in breakdown.resolved_items]
    order.items_total = breakdown.items_total
    order.discount_fixed = breakdown.discount_fixed
    order.discount_percent = breakdown.discount_percent
    order.discount_amount = breakdown.discount_amount
    order.delivery_cost = breakdown.delivery_cost
    order.final_amount = breakdown.final_amount


def reprice(
    order: Order,
    *,
    menu_items=None,
    discount_fixed=None,
    discount_percent=None,
    delivery_cost=None,
) -> PriceBreakdown:
    """Recompute totals, falling back to the stored value for every omitted input."""
    breakdown = calculate(
        menu_items if menu_items is not None else (order.menu_items or []),
        discount_fixed if discount_fixed is not None else order.discount_fixed,
        discount_percent if discount_percent is not None else order.discount_percent,
        delivery_cost if delivery_cost is not None else order.delivery_cost,
    )
    apply_pricing(order, breakdown)
    return breakdown


def describe(order: Order, previous: Optional[OrderStatus] = None) -> dict:
    return {
        "order_id": order.id,
        "status": str(order.status),
        "previous_status": str(previous) if previous is not None else None,
        "payment_status": str(order.payment_status),
        "final_amount": str(order.final_amount),
    }
