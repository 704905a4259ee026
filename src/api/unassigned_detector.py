# unassigned_detector.py
#
# Read-only scan for work that needs a human: subscriptions that still need a
# technician/route, and client locations that were never signed up.

import logging
from datetime import date
from typing import List

from src import db
from src.models import ClientStatus, JobStatus, SubscriptionStatus

logger = logging.getLogger(__name__)

REASON_INITIAL_CLEANUP = "initial_cleanup"
REASON_UNROUTED_JOBS = "unrouted_jobs"
REASON_NO_JOBS = "no_jobs"
REASON_AWAITING_ONBOARDING = "awaiting_onboarding"


def client_display_name(row: dict) -> str:
    """Company name if present, else 'First Last'."""
    if row.get("client_company_name"):
        return row["client_company_name"]
    return f"{row.get('client_first_name') or ''} {row.get('client_last_name') or ''}".strip()


def _subscription_reasons(subscription: dict, has_jobs: bool, has_unrouted: bool) -> List[str]:
    reasons = []
    if subscription["initial_cleanup_required"] and not subscription["initial_cleanup_completed"]:
        reasons.append(REASON_INITIAL_CLEANUP)
    if has_unrouted:
        reasons.append(REASON_UNROUTED_JOBS)
    if not has_jobs:
        reasons.append(REASON_NO_JOBS)
    return reasons


def find_unassigned_work(today: date, org_id: str = None) -> List[dict]:
    """
    Flag ACTIVE subscriptions that need initial cleanup, have SCHEDULED jobs
    dated today or later without a route, or have no jobs at all; and active
    locations of ACTIVE clients with no ACTIVE subscription.

    Returns:
        list of dict: {
            'id': subscription id, or 'loc-<location id>' for orphaned locations,
            'kind': 'subscription' | 'location',
            'client_id', 'client_name', 'location_id', 'address', 'city', 'zip_code',
            'frequency': str or None,
            'signup_date': str,
            'has_payment_method': bool,
            'needs_initial_cleanup': bool,
            'needs_route_assignment': bool,
            'reasons': list of str
        }
    """
    subscriptions = db.list_subscriptions(status=SubscriptionStatus.ACTIVE.value, org_id=org_id)
    jobs = db.list_jobs(subscription_ids=[s["id"] for s in subscriptions])

    with_jobs = set()
    with_unrouted = set()
    today_str = today.isoformat()
    for job in jobs:
        with_jobs.add(job["subscription_id"])
        if job["status"] == JobStatus.SCHEDULED and job["scheduled_date"] >= today_str and job["route_id"] is None:
            with_unrouted.add(job["subscription_id"])

    results = []
    for subscription in subscriptions:
        reasons = _subscription_reasons(
            subscription, subscription["id"] in with_jobs, subscription["id"] in with_unrouted
        )
        if not reasons:
            continue
        results.append({
            "id": subscription["id"],
            "kind": "subscription",
            "client_id": subscription["client_id"],
            "client_name": client_display_name(subscription),
            "location_id": subscription["location_id"],
            "address": subscription["address_line1"],
            "city": subscription["city"],
            "zip_code": subscription["zip_code"],
            "frequency": subscription["frequency"],
            "signup_date": subscription["created_at"],
            "has_payment_method": bool(subscription["client_billing_customer_id"]),
            "needs_initial_cleanup": REASON_INITIAL_CLEANUP in reasons,
            "needs_route_assignment": REASON_UNROUTED_JOBS in reasons or REASON_NO_JOBS in reasons,
            "reasons": reasons,
        })

    subscribed_locations = {s["location_id"] for s in subscriptions}
    for location in db.list_active_locations(org_id=org_id):
        if location["id"] in subscribed_locations or location["client_status"] != ClientStatus.ACTIVE:
            continue
        results.append({
            "id": f"loc-{location['id']}",
            "kind": "location",
            "client_id": location["client_id"],
            "client_name": client_display_name(location),
            "location_id": location["id"],
            "address": location["address_line1"],
            "city": location["city"],
            "zip_code": location["zip_code"],
            "frequency": None,
            "signup_date": location["created_at"],
            "has_payment_method": bool(location["client_billing_customer_id"]),
            "needs_initial_cleanup": True,
            "needs_route_assignment": True,
            "reasons": [REASON_AWAITING_ONBOARDING],
        })

    logger.info(f"Unassigned work scan: {len(results)} items")
    return results
