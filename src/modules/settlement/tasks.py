"""Scheduled settlement jobs (Celery beat)."""

import structlog
from celery import shared_task

logger = structlog.get_logger(__name__)


@shared_task(name="modules.settlement.tasks.lock_previous_week")
def lock_previous_week():
    """Monday 09:00: lock last week's settlement for every branch."""
    from modules.settlement.providers import build_settlement_scheduler

    summary = build_settlement_scheduler().lock_previous_week()
    logger.info("settlement.weekly_lock_completed", **summary)
    return summary


@shared_task(name="modules.settlement.tasks.unlock_for_adjustments")
def unlock_for_adjustments():
    """Friday 17:00: lift the settlement markers for final adjustments."""
    from modules.settlement.providers import build_settlement_scheduler

    summary = build_settlement_scheduler().unlock_for_adjustments()
    logger.info("settlement.weekly_unlock_completed", **summary)
    return summary
