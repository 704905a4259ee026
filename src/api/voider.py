# voider.py
#
# Cancels a subscription's upcoming jobs and detaches them from their routes.
# Work already in progress or finished is never touched.

import logging
import sqlite3
from datetime import date

from src import db
from src.errors import StorageError
from src.models import VOIDABLE_JOB_STATUSES

logger = logging.getLogger(__name__)


def void_future_jobs(subscription_id: str, reason: str, today: date) -> int:
    """
    Cancel the subscription's SCHEDULED / EN_ROUTE jobs dated today or later.

    Each voided job gets status CANCELED, skip_reason = reason, and loses its
    route_id / route_order, so routes never keep canceled stops.

    Returns:
        int: number of jobs voided
    Raises:
        StorageError: the update failed; nothing was voided
    """
    try:
        voided_ids = db.cancel_future_jobs(subscription_id, today, reason, VOIDABLE_JOB_STATUSES)
    except sqlite3.Error as e:
        logger.error(f"Failed to void future jobs for subscription {subscription_id}: {e}")
        raise StorageError(f"Could not void jobs for subscription {subscription_id}") from e

    if voided_ids:
        logger.info(f"Voided {len(voided_ids)} future jobs for subscription {subscription_id} ({reason})")
    return len(voided_ids)
