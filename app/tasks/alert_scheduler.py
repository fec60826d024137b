"""Daily Alert Scheduler - inactivity and satisfaction-drop alerts per tenant.

Runs once a day (ALERTS_DAILY_HOUR, UTC) for every tenant that owns surveys:
- No response in the last 24 hours -> SYSTEM inactivity notification
- Last-7-day average rating at least 1.0 below the previous 7 days
  -> CRISIS satisfaction-drop notification

Each alert is raised at most once per 24 hours per tenant.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.database import async_session_maker
from app.schemas.analytics import AnalyticsFilter
from app.schemas.notification import NotificationType
from app.services.feedback.metrics_aggregator import RatingTotals
from app.services.feedback.repository import FeedbackRepository
from app.services.feedback.signal_extractor import extract_rating

logger = logging.getLogger(__name__)

INACTIVITY_WINDOW = timedelta(hours=24)
TREND_WINDOW = timedelta(days=7)
SATISFACTION_DROP_THRESHOLD = 1.0

INACTIVITY_TITLE = "📉 Alerta de Inactividad (24h)"
INACTIVITY_MESSAGE = (
    "No hemos recibido ninguna encuesta en las últimas 24 horas. Verifica que los códigos QR "
    "estén visibles o que el staff esté solicitando feedback."
)
DROP_TITLE = "📉 Caída Crítica de Satisfacción"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def _average_rating(repository: FeedbackRepository, flt: AnalyticsFilter, since: datetime, until: datetime) -> float:
    totals = RatingTotals()
    for response in await repository.fetch_responses(flt, since=since, until=until):
        totals.add(extract_rating(response.answers or []))
    return totals.rating_sum / totals.rated if totals.rated else 0.0


async def check_tenant_alerts(repository: FeedbackRepository, tenant_id: str, now: datetime) -> list[str]:
    """
    Raise the daily alerts for one tenant.

    Returns the titles of the notifications created.
    """
    created = []
    flt = AnalyticsFilter(tenant_ids=[tenant_id])
    day_ago = now - INACTIVITY_WINDOW

    recent = await repository.count_responses(flt, since=day_ago)
    if recent == 0 and not await repository.has_recent_notification(
        tenant_id, NotificationType.SYSTEM.value, "Alerta de Inactividad", since=day_ago
    ):
        await repository.create_notification(
            tenant_id=tenant_id,
            type=NotificationType.SYSTEM.value,
            title=INACTIVITY_TITLE,
            message=INACTIVITY_MESSAGE,
            meta={"tenant_id": tenant_id},
        )
        created.append(INACTIVITY_TITLE)

    week_ago = now - TREND_WINDOW
    current = await _average_rating(repository, flt, since=week_ago, until=now)
    previous = await _average_rating(repository, flt, since=week_ago - TREND_WINDOW, until=week_ago)

    if previous > 0 and (previous - current) >= SATISFACTION_DROP_THRESHOLD and not await repository.has_recent_notification(
        tenant_id, NotificationType.CRISIS.value, "Caída Crítica", since=day_ago
    ):
        await repository.create_notification(
            tenant_id=tenant_id,
            type=NotificationType.CRISIS.value,
            title=DROP_TITLE,
            message=(
                f"Tu calificación promedio semanal ha caído de {previous:.1f} a {current:.1f}. "
                "Revisa los comentarios recientes."
            ),
            meta={"tenant_id": tenant_id, "previous": round(previous, 2), "current": round(current, 2)},
        )
        created.append(DROP_TITLE)

    return created


async def check_daily_alerts(
    session_factory: Callable = async_session_maker,
    now: Optional[datetime] = None,
) -> dict:
    """
    Main job: run the daily alert checks for every tenant with surveys.

    A failure for one tenant is logged and the run continues with the next.
    """
    now = now or datetime.utcnow()
    logger.info("Starting daily alerts check...")
    tenants = 0
    notifications = 0
    errors = 0

    async with session_factory() as db:
        repository = FeedbackRepository(db)
        for tenant_id in await repository.list_tenant_ids():
            tenants += 1
            try:
                notifications += len(await check_tenant_alerts(repository, tenant_id, now))
            except Exception as e:
                errors += 1
                logger.error(f"Error processing daily alerts for tenant {tenant_id}: {e}", exc_info=True)
                await db.rollback()

    logger.info(f"Daily alerts complete. Tenants: {tenants}, Notifications: {notifications}, Errors: {errors}")
    return {"tenants": tenants, "notifications": notifications, "errors": errors}


def start_alert_scheduler():
    """Start the scheduler with the daily alerts job."""
    global scheduler

    scheduler = get_scheduler()

    scheduler.add_job(
        check_daily_alerts,
        CronTrigger(hour=settings.ALERTS_DAILY_HOUR, minute=0),
        id="daily_alerts",
        name="Daily inactivity and satisfaction alerts",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info("Alert scheduler started")
        for job in scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")


def stop_alert_scheduler():
    """Stop the alert scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Alert scheduler stopped")
