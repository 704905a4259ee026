# job_status.py
#
# Field progress for a single job: SCHEDULED -> EN_ROUTE -> IN_PROGRESS ->
# COMPLETED, or SKIPPED before work starts. CANCELED is owned by the voider.

import logging

from src import db
from src.errors import InvalidTransitionError, NotFoundError, ValidationError
from src.models import JOB_TRANSITIONS, JobStatus, parse_enum

logger = logging.getLogger(__name__)


def advance_job_status(job_id: int, new_status, reason: str = None,
                       actor: str = "tech", org_id: str = None) -> dict:
    """
    Move a job one step forward.

    Completing a job flagged as the initial cleanup marks the subscription's
    initial_cleanup_completed, which clears it from the unassigned-work list.

    Returns:
        dict: the updated job row
    """
    target = parse_enum(JobStatus, new_status, "status")
    if target is JobStatus.CANCELED:
        raise ValidationError("Jobs are canceled through their subscription, not directly")
    if target is JobStatus.SKIPPED and not reason:
        raise ValidationError("A reason is required to skip a job")

    job = db.get_job(job_id, org_id=org_id)
    if not job:
        raise NotFoundError(f"Job {job_id} not found")

    current = JobStatus(job["status"])
    if target not in JOB_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Job {job_id} cannot move from {current.value} to {target.value}")

    if not db.set_job_status(job_id, target.value, current.value,
                             skip_reason=reason if target is JobStatus.SKIPPED else None):
        # Someone else moved the job between the read and the write
        raise InvalidTransitionError(f"Job {job_id} changed status concurrently; reload and retry")

    if target is JobStatus.COMPLETED and job["metadata"].get("is_initial_cleanup") and job["subscription_id"]:
        db.update_subscription_fields(job["subscription_id"], {"initial_cleanup_completed": True})
        logger.info(f"Initial cleanup completed for subscription {job['subscription_id']}")

    db.record_activity(
        f"job_{target.value.lower()}", "job", job_id, actor=actor,
        before={"status": current.value},
        after={"status": target.value},
        metadata={"reason": reason} if reason else None,
        org_id=job["org_id"],
    )
    logger.info(f"Job {job_id}: {current.value} -> {target.value}")
    return db.get_job(job_id)
