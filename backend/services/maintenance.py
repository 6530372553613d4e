# backend/services/maintenance.py
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import settings
from database import SessionLocal
from services.reservations import release_expired_reservations
from utils.idempotency import IdempotencyStore

logger = logging.getLogger(__name__)


# Periodic job: strip expired reservations from every inventory record
def cleanup_expired_reservations(session_factory=SessionLocal) -> dict:
    db = session_factory()
    try:
        result = release_expired_reservations(db)
        logger.info("[Maintenance] Released %s expired reservations", result["reservations_released"])
        return result
    except Exception:
        logger.exception("[Maintenance] Error cleaning up expired reservations")
        raise
    finally:
        db.close()


def create_scheduler(idempotency_store: Optional[IdempotencyStore] = None) -> AsyncIOScheduler:
    """Scheduler with the reservation sweep and, when given, the idempotency sweep."""
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        cleanup_expired_reservations,
        "interval",
        minutes=settings.RESERVATION_SWEEP_MINUTES,
        id="reservation_cleanup_job",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    if idempotency_store is not None:
        scheduler.add_job(
            idempotency_store.sweep,
            "interval",
            seconds=settings.IDEMPOTENCY_RETENTION_SECONDS,
            id="idempotency_sweep_job",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
    return scheduler
