# lifecycle.py
#
# Subscription lifecycle controller. Every subscription mutation (staff edit,
# billing event, accepted suggestion, manual assignment) comes through here
# and decides whether future jobs are voided, regenerated, or both.
#
# Ordering: void always runs before materialize in one call, so the
# (subscription, date) check never sees an old live job next to a new one.

import logging
from datetime import date
from typing import Iterable, Optional

from config.settings import DEFAULT_ORG_ID
from src import db
from src.api import materializer, route_assignor, voider
from src.errors import NotFoundError, StorageError, ValidationError
from src.models import ClientStatus, Frequency, SubscriptionStatus, parse_enum, parse_weekday
from src.timezone_utils import parse_date, today as business_today, utc_now_iso

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    "status", "frequency", "preferred_day", "price_cents", "cancel_reason",
    "next_service_date", "pause_start_date", "pause_end_date",
    "initial_cleanup_required", "initial_cleanup_completed",
}

VOID_REASONS = {
    SubscriptionStatus.PAUSED: "paused",
    SubscriptionStatus.CANCELED: "canceled",
}


def _load_subscription(subscription_id: str, org_id: Optional[str]) -> dict:
    subscription = db.get_subscription(subscription_id, org_id=org_id)
    if not subscription:
        raise NotFoundError(f"Subscription {subscription_id} not found")
    return subscription


def _validate_changes(changes: dict) -> dict:
    """Normalize a change set; raises ValidationError before anything is written."""
    if not isinstance(changes, dict):
        raise ValidationError("Changes must be an object")
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown subscription fields: {', '.join(sorted(unknown))}")

    clean = dict(changes)
    if "status" in clean:
        clean["status"] = parse_enum(SubscriptionStatus, clean["status"], "status").value
    if "frequency" in clean:
        clean["frequency"] = parse_enum(Frequency, clean["frequency"], "frequency").value
    if "preferred_day" in clean:
        day = parse_weekday(clean["preferred_day"])
        clean["preferred_day"] = day.value if day else None
    if "price_cents" in clean:
        price = clean["price_cents"]
        if isinstance(price, bool) or not isinstance(price, int) or price < 0:
            raise ValidationError(f"Invalid price_cents {price!r}")
    for field in ("next_service_date", "pause_start_date", "pause_end_date"):
        if field in clean:
            try:
                clean[field] = parse_date(clean[field])
            except ValueError:
                raise ValidationError(f"Invalid {field} {clean[field]!r}")
    return clean


def _summary(voided: int, generated: int) -> str:
    return f"{voided} jobs voided / {generated} jobs generated"


def update_subscription(subscription_id: str, changes: dict, actor: str = "staff",
                        org_id: str = None, today: date = None,
                        look_ahead_days: int = None, source: str = "staff_edit") -> dict:
    """
    Apply a change set to a subscription and keep its jobs consistent.

    Transitions and side effects:
        any -> PAUSED                    void future jobs ("paused")
        any -> CANCELED                  void future jobs ("canceled"), deactivate
                                         the client if nothing else is ACTIVE
        non-ACTIVE -> ACTIVE             materialize the look-ahead window
        frequency / preferred_day change void, then materialize while ACTIVE
        price only                       nothing; existing jobs keep their price

    Returns:
        dict: {
            'subscription': updated row,
            'jobs_voided': int,
            'jobs_generated': int,
            'failed_dates': list of dates that could not be generated,
            'warnings': list of str,
            'client_deactivated': bool,
            'summary': 'N jobs voided / M jobs generated'
        }
    """
    today = today or business_today()
    clean = _validate_changes(changes)
    existing = _load_subscription(subscription_id, org_id)

    updates = {k: v for k, v in clean.items() if v != existing.get(k) and not (
        isinstance(v, date) and v.isoformat() == existing.get(k))}
    old_status = existing["status"]
    new_status = updates.get("status", old_status)
    status_changed = "status" in updates

    void_reason = None
    regenerate = False
    schedule_fields = [k for k in ("frequency", "preferred_day") if k in updates]
    if clean.get("status") in VOID_REASONS:
        # Re-requesting PAUSED / CANCELED voids again, so a failed void can be retried
        void_reason = VOID_REASONS[clean["status"]]
    elif "frequency" in updates:
        void_reason = "frequency changed"
    elif "preferred_day" in updates:
        void_reason = "preferred day changed"

    if new_status == SubscriptionStatus.ACTIVE and (status_changed or schedule_fields):
        regenerate = True

    if status_changed and new_status == SubscriptionStatus.CANCELED:
        updates["canceled_at"] = utc_now_iso()

    result = {
        "subscription": existing,
        "jobs_voided": 0,
        "jobs_generated": 0,
        "failed_dates": [],
        "warnings": [],
        "client_deactivated": False,
    }

    void_failed = False
    if void_reason:
        try:
            result["jobs_voided"] = voider.void_future_jobs(subscription_id, void_reason, today)
        except StorageError as e:
            logger.error(f"Subscription {subscription_id}: {e}")
            result["warnings"].append(f"Future jobs could not be voided ({void_reason}); retry the change")
            void_failed = True
            # Old jobs are still live: keep the old schedule so the retry sees a change
            for field in schedule_fields:
                updates.pop(field)
                result["warnings"].append(f"{field} was not changed")

    subscription = db.update_subscription_fields(subscription_id, updates) if updates else existing
    result["subscription"] = subscription

    if regenerate and void_failed:
        result["warnings"].append("Jobs were not regenerated because voiding failed")
    elif regenerate:
        generated = materializer.materialize(subscription, today, look_ahead_days, trigger=source)
        result["jobs_generated"] = generated["created"]
        result["failed_dates"] = generated["failed_dates"]
        if generated["failed_dates"]:
            result["warnings"].append(
                f"{len(generated['failed_dates'])} jobs could not be generated; regeneration is safe to retry"
            )

    if status_changed and new_status == SubscriptionStatus.CANCELED:
        if db.count_active_subscriptions(existing["client_id"], exclude_id=subscription_id) == 0:
            db.set_client_status(existing["client_id"], ClientStatus.INACTIVE.value)
            result["client_deactivated"] = True
            logger.info(f"Client {existing['client_id']} has no active subscriptions left; marked inactive")

    result["summary"] = _summary(result["jobs_voided"], result["jobs_generated"])

    action = f"subscription_{new_status.lower()}" if status_changed else "subscription_updated"
    db.record_activity(
        action, "subscription", subscription_id, actor=actor,
        before={k: existing.get(k) for k in updates},
        after={k: subscription.get(k) for k in updates},
        metadata={
            "source": source,
            "reason": void_reason,
            "jobs_voided": result["jobs_voided"],
            "jobs_generated": result["jobs_generated"],
            "warnings": result["warnings"],
        },
        org_id=existing["org_id"],
    )

    logger.info(f"Subscription {subscription_id} updated by {actor}: {result['summary']}")
    return result


def change_status(subscription_id: str, new_status, actor: str = "staff", org_id: str = None,
                  today: date = None, source: str = "staff_edit", **extra) -> dict:
    """Status-only convenience wrapper around update_subscription."""
    changes = dict(extra, status=new_status)
    return update_subscription(subscription_id, changes, actor=actor, org_id=org_id,
                               today=today, source=source)


def create_subscription(client_id: str, location_id: str, frequency, price_cents: int,
                        preferred_day=None, status=SubscriptionStatus.ACTIVE,
                        created_at=None, initial_cleanup_required: bool = False,
                        next_service_date=None, billing_subscription_id: str = None,
                        subscription_id: str = None, actor: str = "signup",
                        org_id: str = DEFAULT_ORG_ID, today: date = None,
                        look_ahead_days: int = None) -> dict:
    """
    Create a subscription (signup) and materialize its first window when ACTIVE.

    created_at is the scheduling anchor; it defaults to today.
    """
    today = today or business_today()
    clean = _validate_changes({
        "frequency": frequency,
        "preferred_day": preferred_day,
        "status": status,
        "price_cents": price_cents,
        "next_service_date": next_service_date,
    })
    try:
        anchor = parse_date(created_at) if created_at else today
    except ValueError:
        raise ValidationError(f"Invalid created_at {created_at!r}")

    if not db.get_client(client_id):
        raise NotFoundError(f"Client {client_id} not found")

    new_id = db.insert_subscription(
        client_id, location_id, clean["frequency"], clean["status"], clean["price_cents"],
        anchor, preferred_day=clean["preferred_day"],
        initial_cleanup_required=initial_cleanup_required,
        billing_subscription_id=billing_subscription_id,
        next_service_date=clean["next_service_date"],
        subscription_id=subscription_id, org_id=org_id,
    )
    subscription = db.get_subscription(new_id)

    if subscription["frequency"] == Frequency.ONETIME:
        generated = materializer.materialize_one_time(subscription, trigger="signup")
    else:
        generated = materializer.materialize(subscription, today, look_ahead_days, trigger="signup")

    db.record_activity(
        "subscription_created", "subscription", new_id, actor=actor,
        after={k: subscription[k] for k in ("frequency", "preferred_day", "status", "price_cents")},
        metadata={"jobs_generated": generated["created"], "failed_dates": generated["failed_dates"]},
        org_id=org_id,
    )
    return {
        "subscription": subscription,
        "jobs_generated": generated["created"],
        "failed_dates": generated["failed_dates"],
    }


def apply_schedule_change(subscription_id: str, preferred_day=None, tech_id: str = None,
                          actor: str = "staff", org_id: str = None, today: date = None,
                          look_ahead_days: int = None, source: str = "schedule_change") -> dict:
    """
    The preferred-day / technician mutation path.

    A new preferred day voids and regenerates through update_subscription;
    a technician moves every future SCHEDULED job onto that technician's
    routes, including jobs already routed to someone else.
    """
    today = today or business_today()
    subscription = _load_subscription(subscription_id, org_id)

    result = {
        "subscription": subscription,
        "jobs_voided": 0,
        "jobs_generated": 0,
        "jobs_assigned": 0,
        "failed_dates": [],
        "warnings": [],
    }

    if preferred_day is not None:
        changed = update_subscription(
            subscription_id, {"preferred_day": preferred_day}, actor=actor, org_id=org_id,
            today=today, look_ahead_days=look_ahead_days, source=source,
        )
        for key in ("subscription", "jobs_voided", "jobs_generated", "failed_dates", "warnings"):
            result[key] = changed[key]

    if tech_id:
        try:
            result["jobs_assigned"] = route_assignor.assign_future_unassigned_jobs(
                subscription_id, tech_id, today
            )
        except StorageError as e:
            logger.error(f"Subscription {subscription_id}: {e}")
            result["warnings"].append("Some jobs could not be assigned to routes; retry the assignment")

    result["summary"] = _summary(result["jobs_voided"], result["jobs_generated"])
    return result


def assign_subscription(subscription_id: str, tech_id: str, service_days: Iterable[str],
                        initial_cleanup: dict = None, actor: str = "staff",
                        org_id: str = None, today: date = None) -> dict:
    """
    Staff "assign tech + route" command.

    Args:
        service_days: weekday names; the first becomes the preferred day
        initial_cleanup: optional {'date': 'YYYY-MM-DD', 'tech_id': str} for a
                         one-off first visit placed on that tech's route
    """
    today = today or business_today()
    if not tech_id:
        raise ValidationError("Technician is required for recurring service")
    days = [parse_weekday(day) for day in (service_days or [])]
    days = [day for day in days if day is not None]
    if not days:
        raise ValidationError("At least one service day is required")

    cleanup_date = cleanup_tech = None
    if initial_cleanup:
        cleanup_tech = initial_cleanup.get("tech_id")
        if not cleanup_tech:
            raise ValidationError("Technician is required for initial cleanup")
        try:
            cleanup_date = parse_date(initial_cleanup.get("date"))
        except ValueError:
            cleanup_date = None
        if cleanup_date is None:
            raise ValidationError("A valid date is required for initial cleanup")

    subscription = _load_subscription(subscription_id, org_id)

    # Schedule first: the day change voids future jobs and must not take the cleanup with it
    result = apply_schedule_change(
        subscription_id, preferred_day=days[0].value, tech_id=tech_id, actor=actor,
        org_id=org_id, today=today, source="assignment",
    )

    cleanup_job_id = None
    if cleanup_date:
        cleanup_job_id = materializer.create_initial_cleanup_job(subscription, cleanup_date)
        route_assignor.assign_job_to_route(cleanup_job_id, cleanup_tech)
    result["initial_cleanup_job_id"] = cleanup_job_id

    db.record_activity(
        "subscription_assigned", "subscription", subscription_id, actor=actor,
        metadata={
            "tech_id": tech_id,
            "preferred_day": days[0].value,
            "initial_cleanup_created": cleanup_job_id is not None,
            "recurring_jobs_updated": result["jobs_assigned"],
        },
        org_id=subscription["org_id"],
    )
    return result
