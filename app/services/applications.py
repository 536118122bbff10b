"""Customer applications submitted from the public cart."""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.clock import Clock
from app.core.enums import ApplicationStatus
from app.core.errors import DomainStateError, NotFoundError
from app.core.metrics import track_db_operation
from app.core.optimistic_lock import commit_or_raise
from app.models.application import Application
from app.models.user import User
from app.schemas.application import ApplicationCreate
from app.services.pricing import normalize_items

logger = logging.getLogger(__name__)

APPLICATION_TRANSITIONS = {
    ApplicationStatus.NEW: frozenset({ApplicationStatus.PROCESSING, ApplicationStatus.REJECTED}),
    ApplicationStatus.PROCESSING: frozenset({ApplicationStatus.APPROVED, ApplicationStatus.REJECTED}),
    ApplicationStatus.APPROVED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
}

CONVERTIBLE_STATUSES = frozenset({ApplicationStatus.NEW, ApplicationStatus.PROCESSING})


async def get_application(db: AsyncSession, application_id: int) -> Application:
    res = await db.execute(
        select(Application)
        .where(Application.id == application_id)
        .execution_options(populate_existing=True)
    )
    application = res.scalars().first()
    if application is None:
        raise NotFoundError("Application", application_id)
    return application


async def list_applications(
    db: AsyncSession,
    status: Optional[ApplicationStatus] = None,
    limit: int = 20,
    offset: int = 0,
) -> List[Application]:
    q = select(Application)
    if status:
        q = q.where(Application.status == status)
    res = await db.execute(q.order_by(Application.id.desc()).limit(limit).offset(offset))
    return list(res.scalars().all())


@track_db_operation("insert", "applications")
async def submit_application(db: AsyncSession, payload: ApplicationCreate) -> Application:
    items = normalize_items(payload.cart_items)
    application = Application(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email.strip().lower(),
        phone=payload.phone,
        message=payload.message,
        cart_items=[item.to_json() for item in items],
        event_date=payload.event_date,
        event_time=payload.event_time,
        event_address=payload.event_address,
        status=ApplicationStatus.NEW,
    )
    db.add(application)
    await commit_or_raise(db, "create_application")
    logger.info(f"Application {application.id} received from {application.email} ({len(items)} items)")
    return application


async def update_application_status(
    db: AsyncSession,
    application_id: int,
    new_status: ApplicationStatus,
    comment: Optional[str],
    actor: User,
    clock: Clock,
) -> Application:
    application = await get_application(db, application_id)
    current = ApplicationStatus(application.status)
    new_status = ApplicationStatus(new_status)

    if new_status not in APPLICATION_TRANSITIONS[current]:
        raise DomainStateError(
            f"Cannot move application {application.id} from {current} to {new_status}",
            details={"from": str(current), "to": str(new_status)},
        )

    application.status = new_status
    application.coordinator_id = actor.id
    if comment:
        application.coordinator_comment = comment
    if new_status in (ApplicationStatus.APPROVED, ApplicationStatus.REJECTED):
        application.processed_at = clock.now()

    await commit_or_raise(db, "update_application_status")
    logger.info(f"Application {application.id} status {current} -> {new_status} by user {actor.id}")
    return application
