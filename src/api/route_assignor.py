# route_assignor.py
#
# Binds jobs to technician routes. One route per (technician, date); this is
# the only module that creates route rows. Stops are appended in assignment
# order; sequencing within a route is left to dispatch.

import logging
import sqlite3
from datetime import date
from typing import Optional

from config.settings import DEFAULT_ORG_ID
from src import db
from src.errors import ConflictError, NotFoundError, StorageError, ValidationError
from src.models import JobStatus, RouteStatus
from src.timezone_utils import parse_date

logger = logging.getLogger(__name__)

ASSIGNABLE_JOB_STATUSES = {JobStatus.SCHEDULED, JobStatus.EN_ROUTE}


def route_display_name(tech_id: str, route_date: date) -> str:
    """'<First Last> - YYYY-MM-DD', or 'Tech - YYYY-MM-DD' for unknown technicians."""
    tech = db.get_technician(tech_id)
    tech_name = ""
    if tech:
        tech_name = f"{tech.get('first_name') or ''} {tech.get('last_name') or ''}".strip()
    return f"{tech_name or 'Tech'} - {route_date.isoformat()}"


def parse_route_date(value) -> Optional[date]:
    """parse_date for caller-supplied dates; a malformed value is a ValidationError."""
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationError(f"Invalid route date {value!r}")


def find_or_create_route(tech_id: str, route_date, org_id: str = DEFAULT_ORG_ID) -> int:
    """
    Return the id of the technician's route for route_date, creating a
    PLANNED route if none exists yet.
    """
    if not tech_id:
        raise ValidationError("Technician id is required")
    route_date = parse_route_date(route_date)
    if route_date is None:
        raise ValidationError("Route date is required")

    try:
        existing = db.find_route(tech_id, route_date)
        if existing:
            return existing['id']
        route = db.insert_route_if_absent(
            tech_id, route_date, route_display_name(tech_id, route_date),
            status=RouteStatus.PLANNED.value, org_id=org_id,
        )
    except sqlite3.Error as e:
        logger.error(f"Failed to find or create route for {tech_id} on {route_date}: {e}")
        raise StorageError(f"Could not resolve route for {tech_id} on {route_date}") from e

    logger.info(f"Using route {route['id']} ({route['name']}) for {tech_id} on {route_date}")
    return route['id']


def assign_job_to_route(job_id: int, tech_id: str, route_date=None, org_id: str = None) -> int:
    """
    Assign a job to the technician's route for its date.

    Args:
        job_id: job to assign
        tech_id: technician receiving the job
        route_date: optional; must equal the job's scheduled date when given
        org_id: restrict the lookup to one organization

    Returns:
        int: route id the job now belongs to
    """
    job = db.get_job(job_id, org_id=org_id)
    if not job:
        raise NotFoundError(f"Job {job_id} not found")
    if job['status'] not in ASSIGNABLE_JOB_STATUSES:
        raise ConflictError(f"Job {job_id} is {job['status']} and cannot be assigned")

    scheduled = parse_date(job['scheduled_date'])
    if route_date is not None and parse_route_date(route_date) != scheduled:
        raise ValidationError(
            f"Route date {route_date} does not match job {job_id} date {scheduled.isoformat()}"
        )

    route_id = find_or_create_route(tech_id, scheduled, org_id=job['org_id'])
    try:
        db.set_job_route(job_id, tech_id, route_id)
    except sqlite3.Error as e:
        logger.error(f"Failed to assign job {job_id} to route {route_id}: {e}")
        raise StorageError(f"Could not assign job {job_id}") from e
    return route_id


def assign_future_unassigned_jobs(subscription_id: str, tech_id: str, today: date) -> int:
    """
    Put every SCHEDULED job of the subscription dated today or later that is
    not already on this technician's routes onto the technician's route for
    that job's date. Jobs sitting on another technician's route are moved.

    Returns:
        int: number of jobs assigned
    """
    jobs = db.list_jobs(
        subscription_id=subscription_id,
        statuses=[JobStatus.SCHEDULED],
        from_date=today,
        not_assigned_to=tech_id,
    )
    assigned = 0
    for job in jobs:
        assign_job_to_route(job['id'], tech_id)
        assigned += 1

    if assigned:
        logger.info(f"Assigned {assigned} jobs of subscription {subscription_id} to {tech_id}")
    return assigned


def unassign_job(job_id: int, org_id: Optional[str] = None, actor: str = "staff") -> Optional[int]:
    """
    Detach a job from its route; the route itself is kept.

    Returns:
        the route id the job was removed from, or None if it had none
    """
    job = db.get_job(job_id, org_id=org_id)
    if not job:
        raise NotFoundError(f"Job {job_id} not found")
    if job['route_id'] is None:
        return None

    try:
        db.clear_job_route(job_id)
    except sqlite3.Error as e:
        raise StorageError(f"Could not unassign job {job_id}") from e

    db.record_activity(
        "job_unassigned", "job", job_id, actor=actor,
        before={"route_id": job['route_id'], "assigned_to": job['assigned_to']},
        after={"route_id": None, "assigned_to": job['assigned_to']},
        org_id=job['org_id'],
    )
    logger.info(f"Job {job_id} removed from route {job['route_id']} by {actor}")
    return job['route_id']
