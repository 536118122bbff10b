"""Turn an approved application into a submitted order in one commit."""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.clock import Clock
from app.core.enums import ApplicationStatus, OrderStatus
from app.core.errors import DomainError, DomainStateError, ValidationError
from app.core.metrics import track_db_operation
from app.core.optimistic_lock import commit_or_raise, flush_or_raise
from app.models.application import Application
from app.models.order import Order
from app.models.user import User
from app.schemas.application import ApplicationConvert
from app.services.applications import CONVERTIBLE_STATUSES, get_application
from app.services.clients import ResolvedClient, find_or_create_client, get_client
from app.services.notifications import NotificationDispatcher
from app.services.order_state import apply_pricing
from app.services.pricing import calculate

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    order: Order
    application: Application
    client_created: bool = False


async def _resolve_client(
    db: AsyncSession, application: Application, overrides: ApplicationConvert
) -> ResolvedClient:
    if application.client_id is not None:
        return ResolvedClient(client=await get_client(db, application.client_id))
    if overrides.client_id is not None:
        return ResolvedClient(client=await get_client(db, overrides.client_id))
    return await find_or_create_client(
        db,
        email=application.email,
        first_name=application.first_name,
        last_name=application.last_name,
        phone=application.phone,
    )


async def _existing_order_id(db: AsyncSession, application_id: int) -> Optional[int]:
    res = await db.execute(select(Order.id).where(Order.application_id == application_id))
    return res.scalars().first()


@track_db_operation("insert", "orders")
async def convert_application(
    db: AsyncSession,
    application_id: int,
    acting_user: User,
    overrides: Optional[ApplicationConvert],
    notifier: NotificationDispatcher,
    clock: Clock,
) -> ConversionResult:
    overrides = overrides or ApplicationConvert()
    application = await get_application(db, application_id)

    if application.status not in CONVERTIBLE_STATUSES:
        raise DomainStateError(
            f"Application {application.id} is {application.status} and cannot be converted",
            details={"status": str(application.status)},
        )
    existing = await _existing_order_id(db, application.id)
    if existing is not None:
        raise DomainStateError(
            f"Application {application.id} was already converted to order {existing}",
            details={"order_id": existing},
        )

    items = overrides.menu_items if overrides.menu_items is not None else application.cart_items
    breakdown = calculate(items, overrides.discount_fixed, overrides.discount_percent, overrides.delivery_cost)
    if not breakdown.resolved_items:
        raise ValidationError("An order needs at least one menu item", details={"field": "menu_items"})

    try:
        resolved = await _resolve_client(db, application, overrides)

        order = Order(
            client=resolved.client,
            coordinator_id=acting_user.id,
            application_id=application.id,
            delivery_date=overrides.delivery_date or application.event_date,
            delivery_time=overrides.delivery_time or application.event_time,
            delivery_type=overrides.delivery_type,
            delivery_address=overrides.delivery_address or application.event_address,
            comment=overrides.comment or application.message,
            special_instructions=overrides.special_instructions,
            status=OrderStatus.SUBMITTED,
        )
        apply_pricing(order, breakdown)
        db.add(order)
        # orders.application_id is unique: a concurrent conversion of the same application loses here
        await flush_or_raise(db, "convert_application", f"Application {application_id} was already converted")

        application.status = ApplicationStatus.APPROVED
        application.coordinator_id = acting_user.id
        application.client_id = resolved.client.id
        application.processed_at = clock.now()

        await commit_or_raise(db, "convert_application")
    except (DomainError, SQLAlchemyError):
        await db.rollback()
        raise

    logger.info(
        f"Application {application.id} converted to order {order.id} "
        f"for client {resolved.client.id} (new client: {resolved.created})"
    )
    if resolved.created:
        notifier.on_client_created(resolved.client, resolved.temporary_password)
    notifier.on_new_order(order)
    return ConversionResult(order=order, application=application, client_created=resolved.created)
