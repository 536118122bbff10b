from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, List

from app.db.session import get_db
from app.schemas.application import (
    ApplicationCreate,
    ApplicationConvert,
    ApplicationOut,
    ApplicationStatusUpdate,
    ConversionOut,
)
from app.core.security import require_staff
from app.core.clock import Clock, get_clock
from app.core.enums import ApplicationStatus, AuditAction
from app.core.audit_log import log_audit
from app.core.rate_limit import check_rate_limit
from app.core.response_builders import (
    build_application_response,
    build_application_response_list,
    build_conversion_response,
)
from app.utils.idempotency import get_idempotent, set_idempotent
from app.services import applications
from app.services.converter import convert_application
from app.services.notifications import NotificationDispatcher, get_notifier

router = APIRouter(prefix="/applications", tags=["applications"])


@router.post("/", response_model=ApplicationOut)
async def submit_application(
    payload: ApplicationCreate,
    idempotency_key: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """Public endpoint behind the storefront cart; no account needed"""
    scope = "applications:create"
    if idempotency_key:
        prev = await get_idempotent(idempotency_key, scope)
        if prev:
            return prev

    application = await applications.submit_application(db, payload)
    out = build_application_response(application)

    await log_audit(db, None, AuditAction.CREATE_APPLICATION, payload, out.id)
    if idempotency_key:
        await set_idempotent(idempotency_key, out.model_dump(mode="json"), scope)
    return out


@router.get("/", response_model=List[ApplicationOut])
async def list_applications(
    status: Optional[ApplicationStatus] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_staff)
):
    items = await applications.list_applications(db, status, limit, offset)
    return build_application_response_list(items)


@router.get("/{application_id}", response_model=ApplicationOut)
async def get_application(
    application_id: int,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_staff)
):
    application = await applications.get_application(db, application_id)
    return build_application_response(application)


@router.patch("/{application_id}/status", response_model=ApplicationOut)
async def update_application_status(
    application_id: int,
    payload: ApplicationStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_staff),
    clock: Clock = Depends(get_clock),
):
    user_id = current_user.id
    await check_rate_limit(user_id)

    application = await applications.update_application_status(
        db, application_id, payload.status, payload.coordinator_comment, current_user, clock,
    )
    out = build_application_response(application)
    await log_audit(db, user_id, AuditAction.UPDATE_APPLICATION_STATUS, payload, application_id)
    return out


@router.post("/{application_id}/convert", response_model=ConversionOut)
async def convert(
    application_id: int,
    payload: Optional[ApplicationConvert] = None,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(require_staff),
    notifier: NotificationDispatcher = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
):
    """Create a submitted order from the application and approve it"""
    user_id = current_user.id
    await check_rate_limit(user_id)

    result = await convert_application(db, application_id, current_user, payload, notifier, clock)
    out = build_conversion_response(result)
    await log_audit(db, user_id, AuditAction.CONVERT_APPLICATION, payload, application_id)
    return out
