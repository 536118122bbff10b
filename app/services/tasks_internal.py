from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from app.core.clock import system_clock
from app.core.config import settings
from app.services.notifications import CeleryNotificationDispatcher
from app.services.scheduler import run_scheduled_sweep


async def run_status_sweep_async() -> dict:
    """Background sweep; a fresh engine per run since each task owns its event loop"""
    engine_worker = create_async_engine(settings.DATABASE_URL, future=True, echo=False)
    AsyncSessionWorker = async_sessionmaker(engine_worker, class_=AsyncSession, expire_on_commit=False)
    try:
        async with AsyncSessionWorker() as db:
            result = await run_scheduled_sweep(db, system_clock, CeleryNotificationDispatcher())
        return {
            "processing_count": result.processing_count,
            "completed_count": result.completed_count,
            "failed_count": result.failed_count,
        }
    finally:
        await engine_worker.dispose()
