"""Celery tasks of the pre-order module."""

import structlog
from celery import shared_task

from modules.preorders.factories import build_pre_order_service

logger = structlog.get_logger(__name__)


@shared_task(name="preorders.cancel_overdue")
def cancel_overdue_pre_orders():
    """Daily sweep cancelling allocated commitments left unpaid."""
    result = build_pre_order_service().cancel_overdue_pre_orders()
    logger.info(
        "preorder.cancel_overdue_task_finished",
        cancelled=len(result["cancelled"]),
        skipped=len(result["skipped_fruit_types"]),
    )
    return result
