"""Order lifecycle operations used by the orders API."""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.enums import OrderStatus
from app.core.errors import DomainStateError, NotFoundError, ValidationError
from app.core.metrics import track_db_operation
from app.core.optimistic_lock import commit_or_raise, with_optimistic_retry
from app.models.order import Order
from app.models.user import User
from app.schemas.order import OrderCreate, OrderUpdate
from app.services.clients import get_client
from app.services.notifications import NotificationDispatcher
from app.services.order_state import (
    PRICE_EDITABLE_STATUSES,
    apply_pricing,
    ensure_mutable,
    manual_trigger_for,
    reprice,
    transition_order,
)
from app.services.pricing import calculate

logger = logging.getLogger(__name__)

COMMERCIAL_FIELDS = ("menu_items", "discount_fixed", "discount_percent", "delivery_cost")
FULFILLMENT_FIELDS = (
    "delivery_date", "delivery_time", "delivery_type", "delivery_address", "comment", "special_instructions",
)


@dataclass
class OrderStatistics:
    total: int
    by_status: dict
    total_amount: Decimal


async def load_order(db: AsyncSession, order_id: int) -> Order:
    """Fresh read; overwrites whatever the identity map holds for this row."""
    res = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = res.scalars().first()
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


@track_db_operation("insert", "orders")
async def create_order(
    db: AsyncSession,
    payload: OrderCreate,
    actor: User,
    notifier: NotificationDispatcher,
) -> Order:
    if actor.is_client:
        if payload.client_id is not None and payload.client_id != actor.id:
            raise ValidationError("Clients can only place orders for themselves", details={"field": "client_id"})
        client = actor
    else:
        if payload.client_id is None:
            raise ValidationError("client_id is required", details={"field": "client_id"})
        client = await get_client(db, payload.client_id)

    breakdown = calculate(
        payload.menu_items,
        payload.discount_fixed,
        payload.discount_percent,
        payload.delivery_cost,
    )
    if payload.status == OrderStatus.SUBMITTED and not breakdown.resolved_items:
        raise ValidationError("A submitted order needs at least one menu item", details={"field": "menu_items"})

    order = Order(
        client=client,
        coordinator_id=actor.id if actor.is_staff else None,
        delivery_date=payload.delivery_date,
        delivery_time=payload.delivery_time,
        delivery_type=payload.delivery_type,
        delivery_address=payload.delivery_address,
        comment=payload.comment,
        special_instructions=payload.special_instructions,
        status=payload.status,
    )
    apply_pricing(order, breakdown)
    db.add(order)
    await commit_or_raise(db, "create_order")

    logger.info(f"Order {order.id} created for client {client.id} ({order.status}, {order.final_amount})")
    notifier.on_new_order(order)
    return order


@with_optimistic_retry("update_order")
async def _apply_update(db: AsyncSession, order_id: int, changes: dict):
    order = await load_order(db, order_id)
    ensure_mutable(order)

    commercial = {k: changes[k] for k in COMMERCIAL_FIELDS if k in changes}
    if commercial:
        if OrderStatus(order.status) not in PRICE_EDITABLE_STATUSES:
            raise DomainStateError(
                f"Prices of order {order.id} are locked in status {order.status}",
                details={"status": str(order.status)},
            )
        reprice(order, **commercial)

    for field in FULFILLMENT_FIELDS:
        if field in changes:
            setattr(order, field, changes[field])

    previous = None
    target = changes.get("status")
    if target is not None and OrderStatus(target) != order.status:
        previous = transition_order(order, target, manual_trigger_for(order, OrderStatus(target)))

    await commit_or_raise(db, "update_order")
    return order, previous


async def update_order(
    db: AsyncSession,
    order_id: int,
    payload: OrderUpdate,
    notifier: NotificationDispatcher,
) -> Order:
    """Apply a partial update. Omitted fields keep their stored values."""
    changes = payload.model_dump(exclude_unset=True)
    for field in ("menu_items", "discount_fixed", "discount_percent", "delivery_cost", "delivery_type", "status"):
        if field in changes and changes[field] is None:
            changes.pop(field)

    order, previous = await _apply_update(db, order_id, changes)
    if previous is not None:
        notifier.on_order_status_changed(order, previous)
    return order


@with_optimistic_retry("update_order_status")
async def _apply_status(db: AsyncSession, order_id: int, new_status: OrderStatus, comment: Optional[str]):
    order = await load_order(db, order_id)
    ensure_mutable(order)
    if order.status == new_status:
        raise DomainStateError(f"Order {order.id} is already {new_status}")

    previous = transition_order(order, new_status, manual_trigger_for(order, new_status))
    if comment:
        order.comment = comment
    await commit_or_raise(db, "update_order_status")
    return order, previous


async def update_order_status(
    db: AsyncSession,
    order_id: int,
    new_status: OrderStatus,
    comment: Optional[str],
    notifier: NotificationDispatcher,
) -> Order:
    order, previous = await _apply_status(db, order_id, OrderStatus(new_status), comment)
    notifier.on_order_status_changed(order, previous)
    return order


async def list_orders(
    db: AsyncSession,
    actor: User,
    status: Optional[OrderStatus] = None,
    limit: int = 20,
    offset: int = 0,
) -> List[Order]:
    q = select(Order)
    if actor.is_client:
        q = q.where(Order.client_id == actor.id)
    if status:
        q = q.where(Order.status == status)
    q = q.order_by(Order.id.desc()).limit(limit).offset(offset)
    res = await db.execute(q)
    return list(res.scalars().all())


async def order_statistics(db: AsyncSession, actor: User) -> OrderStatistics:
    q = select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.final_amount), 0))
    if actor.is_client:
        q = q.where(Order.client_id == actor.id)
    res = await db.execute(q.group_by(Order.status))

    by_status = {str(s): 0 for s in OrderStatus}
    total = 0
    total_amount = Decimal("0.00")
    for status, count, amount in res.all():
        by_status[str(status)] = count
        total += count
        if status != OrderStatus.CANCELLED:
            total_amount += Decimal(str(amount))
    return OrderStatistics(total=total, by_status=by_status, total_amount=total_amount.quantize(Decimal("0.01")))
