from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List

from app.db.session import get_db
from app.schemas.order import (
    OrderCreate,
    OrderUpdate,
    OrderOut,
    OrderStatusUpdate,
    OrderStatistics,
    PaymentCallbackIn,
    PaymentInfoOut,
    PaymentSessionOut,
    SweepOut,
)
from app.core.security import get_current_user, require_staff
from app.core.clock import Clock, get_clock
from app.core.enums import OrderStatus, AuditAction
from app.core.audit_log import log_audit
from app.core.rate_limit import check_rate_limit
from app.core.auth_utils import check_order_access
from app.core.response_builders import (
    build_order_response,
    build_order_response_list,
    build_payment_info_response,
    build_payment_session_response,
    build_statistics_response,
    build_sweep_response,
)
from app.utils.idempotency import get_idempotent, set_idempotent
from app.services import order_service, payments
from app.services.notifications import NotificationDispatcher, get_notifier
from app.services.payment_gateway import PaymentGatewayClient, get_payment_gateway
from app.services.scheduler import run_scheduled_sweep

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/", response_model=OrderOut)
async def create_order(
    payload: OrderCreate,
    idempotency_key: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    await check_rate_limit(int(current_user.id))

    scope = f"orders:create:{current_user.id}"
    if idempotency_key:
        prev = await get_idempotent(idempotency_key, scope)
        if prev:
            return prev

    order = await order_service.create_order(db, payload, current_user, notifier)
    out = build_order_response(order)

    await log_audit(db, current_user.id, AuditAction.CREATE_ORDER, payload, out.id)
    if idempotency_key:
        await set_idempotent(idempotency_key, out.model_dump(mode="json"), scope)
    return out


@router.get("/", response_model=List[OrderOut])
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user)
):
    orders = await order_service.list_orders(db, current_user, status, limit, offset)
    return build_order_response_list(orders)


@router.get("/statistics", response_model=OrderStatistics)
async def order_statistics(
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user)
):
    stats = await order_service.order_statistics(db, current_user)
    return build_statistics_response(stats)


@router.post("/sweep", response_model=SweepOut)
async def run_sweep(
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_staff),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Run the daily status sweep now instead of waiting for the beat schedule"""
    user_id = current_user.id
    result = await run_scheduled_sweep(db, clock, notifier)
    out = build_sweep_response(result)
    await log_audit(db, user_id, AuditAction.RUN_SWEEP, out)
    return out


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user)
):
    order = await order_service.load_order(db, order_id)
    check_order_access(order, current_user)
    return build_order_response(order)


@router.put("/{order_id}", response_model=OrderOut)
async def update_order(
    order_id: int,
    payload: OrderUpdate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_staff),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Update an order"""
    user_id = current_user.id
    await check_rate_limit(user_id)

    order = await order_service.update_order(db, order_id, payload, notifier)
    out = build_order_response(order)
    await log_audit(db, user_id, AuditAction.UPDATE_ORDER, payload, order_id)
    return out


@router.patch("/{order_id}/status", response_model=OrderOut)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_staff),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    user_id = current_user.id
    await check_rate_limit(user_id)

    order = await order_service.update_order_status(db, order_id, payload.status, payload.comment, notifier)
    out = build_order_response(order)
    await log_audit(db, user_id, AuditAction.UPDATE_ORDER_STATUS, payload, order_id)
    return out


@router.post("/{order_id}/payment", response_model=PaymentSessionOut)
async def create_payment(
    order_id: int,
    idempotency_key: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    user_id = current_user.id
    await check_rate_limit(user_id)

    order = await order_service.load_order(db, order_id)
    check_order_access(order, current_user)

    scope = f"orders:{order_id}:payment"
    if idempotency_key:
        prev = await get_idempotent(idempotency_key, scope)
        if prev:
            return prev

    order = await payments.create_payment(db, order_id, gateway, notifier, clock)
    out = build_payment_session_response(order)

    await log_audit(db, user_id, AuditAction.CREATE_PAYMENT, {"attempt": out.attempts}, order_id)
    if idempotency_key:
        await set_idempotent(idempotency_key, out.model_dump(mode="json"), scope)
    return out


@router.post("/{order_id}/payment/callback", response_model=OrderOut)
async def payment_callback(
    order_id: int,
    payload: PaymentCallbackIn,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    user_id = current_user.id
    order = await order_service.load_order(db, order_id)
    check_order_access(order, current_user)

    order = await payments.handle_payment_callback(db, order_id, payload.outcome, gateway, notifier, clock)
    out = build_order_response(order)
    await log_audit(db, user_id, AuditAction.PAYMENT_CALLBACK, payload, order_id)
    return out


@router.get("/{order_id}/payment", response_model=PaymentInfoOut)
async def get_payment_info(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
):
    order = await order_service.load_order(db, order_id)
    check_order_access(order, current_user)

    info = await payments.get_payment_info(db, order_id, gateway)
    return build_payment_info_response(info)
