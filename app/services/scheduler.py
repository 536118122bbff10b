"""
Daily status sweep.

Paid orders move to processing two days before delivery and are completed on
the delivery day. Each order is advanced in its own short transaction with a
fresh re-check, so a concurrent cancellation or a failure on one order never
blocks the rest of the sweep.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.clock import Clock
from app.core.enums import OrderStatus, TransitionTrigger
from app.core.errors import DomainError
from app.core.metrics import scheduler_failures, scheduler_transitions
from app.core.optimistic_lock import commit_or_raise, with_optimistic_retry
from app.models.order import Order
from app.services.notifications import NotificationDispatcher
from app.services.order_service import load_order
from app.services.order_state import transition_order

logger = logging.getLogger(__name__)

PROCESSING_LEAD_DAYS = 2

RULE_PROCESSING = "processing"
RULE_COMPLETION = "completion"


@dataclass
class SweepResult:
    processing_count: int = 0
    completed_count: int = 0
    failed_count: int = 0


async def _candidate_ids(db: AsyncSession, statuses, delivery_date) -> List[int]:
    res = await db.execute(
        select(Order.id)
        .where(Order.status.in_(statuses), Order.delivery_date == delivery_date)
        .order_by(Order.id)
    )
    return list(res.scalars().all())


@with_optimistic_retry("scheduler_processing")
async def _start_processing(db: AsyncSession, order_id: int, target_date):
    order = await load_order(db, order_id)
    if order.status != OrderStatus.PAID or order.delivery_date != target_date:
        return order, []
    previous = transition_order(order, OrderStatus.PROCESSING, TransitionTrigger.SCHEDULER)
    await commit_or_raise(db, "scheduler_processing")
    return order, [previous]


@with_optimistic_retry("scheduler_completion")
async def _complete(db: AsyncSession, order_id: int, target_date):
    order = await load_order(db, order_id)
    if order.status not in (OrderStatus.PAID, OrderStatus.PROCESSING) or order.delivery_date != target_date:
        return order, []
    previous = []
    if order.status == OrderStatus.PAID:
        previous.append(transition_order(order, OrderStatus.PROCESSING, TransitionTrigger.SCHEDULER))
    previous.append(transition_order(order, OrderStatus.COMPLETED, TransitionTrigger.SCHEDULER))
    await commit_or_raise(db, "scheduler_completion")
    return order, previous


async def _run_rule(db, rule, step, order_ids, target_date, notifier, result: SweepResult) -> int:
    advanced = 0
    for order_id in order_ids:
        try:
            order, previous = await step(db, order_id, target_date)
        except (DomainError, SQLAlchemyError):
            await db.rollback()
            result.failed_count += 1
            scheduler_failures.labels(rule=rule).inc()
            logger.exception(f"Scheduler rule {rule} failed for order {order_id}")
            continue
        if not previous:
            continue
        advanced += 1
        scheduler_transitions.labels(rule=rule).inc()
        notifier.on_order_status_changed(order, previous[0])
    return advanced


async def run_scheduled_sweep(db: AsyncSession, clock: Clock, notifier: NotificationDispatcher) -> SweepResult:
    today = clock.today()
    processing_date = today + timedelta(days=PROCESSING_LEAD_DAYS)
    result = SweepResult()

    processing_ids = await _candidate_ids(db, [OrderStatus.PAID], processing_date)
    result.processing_count = await _run_rule(
        db, RULE_PROCESSING, _start_processing, processing_ids, processing_date, notifier, result,
    )

    completion_ids = await _candidate_ids(db, [OrderStatus.PAID, OrderStatus.PROCESSING], today)
    result.completed_count = await _run_rule(
        db, RULE_COMPLETION, _complete, completion_ids, today, notifier, result,
    )

    logger.info(
        f"Status sweep for {today}: {result.processing_count} to processing, "
        f"{result.completed_count} completed, {result.failed_count} failed"
    )
    return result
