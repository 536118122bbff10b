"""Audit trail for state-changing API calls"""
import logging
from typing import Any, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.audit import Audit
from app.core.enums import AuditAction
from app.utils.hashing import payload_hash

logger = logging.getLogger(__name__)


async def log_audit(
    db: AsyncSession,
    user_id: Optional[int],
    action: AuditAction,
    payload: Any = None,
    resource_id: Optional[Any] = None,
) -> None:
    """Write one audit row in its own commit. Failures are logged, never raised."""
    try:
        audit_record = Audit(
            user_id=int(user_id) if user_id is not None else None,
            action=str(action),
            resource_id=str(resource_id) if resource_id is not None else None,
            payload_hash=payload_hash(payload),
        )
        db.add(audit_record)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Audit logging failed for action {action}: {e}", exc_info=True)


async def log_login(
    db: AsyncSession,
    user_id: int,
    username: str
) -> None:
    await log_audit(db, user_id, AuditAction.LOGIN, {"username": username})
