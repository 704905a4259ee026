# billing_events.py
#
# Maps payment-processor subscription events onto the lifecycle controller.
# The payment processor is an event source only: nothing here calls out to it.

import logging
from datetime import date

from src import db
from src.api import lifecycle
from src.errors import ValidationError
from src.models import SubscriptionStatus

logger = logging.getLogger(__name__)

# Payment-processor status -> local subscription status
STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "paused": SubscriptionStatus.PAUSED,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
}

SUBSCRIPTION_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
}


def map_billing_status(billing_status: str, cancel_at_period_end: bool = False) -> SubscriptionStatus:
    """
    Translate a payment-processor status. An active subscription that is set
    to cancel at period end becomes PENDING_CANCEL.
    """
    status = STATUS_MAP.get((billing_status or "").lower())
    if status is None:
        raise ValidationError(f"Unknown billing status {billing_status!r}")
    if status is SubscriptionStatus.ACTIVE and cancel_at_period_end:
        return SubscriptionStatus.PENDING_CANCEL
    return status


def _find_local_subscription(billing_object: dict):
    local_id = (billing_object.get("metadata") or {}).get("subscription_id")
    if local_id:
        subscription = db.get_subscription(local_id)
        if subscription:
            return subscription
    if billing_object.get("id"):
        return db.get_subscription_by_billing_id(billing_object["id"])
    return None


def _target_status(event_type: str, billing_object: dict) -> SubscriptionStatus:
    if event_type == "customer.subscription.deleted":
        return SubscriptionStatus.CANCELED
    if event_type == "customer.subscription.paused":
        return SubscriptionStatus.PAUSED
    if event_type == "customer.subscription.resumed":
        return SubscriptionStatus.ACTIVE
    return map_billing_status(billing_object.get("status"),
                              bool(billing_object.get("cancel_at_period_end")))


def handle_billing_event(event: dict, today: date = None) -> dict:
    """
    Apply one webhook event.

    Returns:
        dict: {
            'handled': bool,
            'event_type': str,
            'subscription_id': local id or None,
            'status': new local status or None,
            'result': lifecycle result or None,
        }
    """
    if not isinstance(event, dict):
        raise ValidationError("Webhook payload must be an object")

    event_type = event.get("type")
    billing_object = (event.get("data") or {}).get("object") or {}
    outcome = {
        "handled": False,
        "event_type": event_type,
        "subscription_id": None,
        "status": None,
        "result": None,
    }

    if event_type not in SUBSCRIPTION_EVENTS:
        logger.info(f"Ignoring billing event type {event_type}")
        return outcome

    target = _target_status(event_type, billing_object)

    subscription = _find_local_subscription(billing_object)
    if not subscription:
        logger.warning(f"Billing event {event_type} for unknown subscription {billing_object.get('id')}")
        return outcome

    outcome["subscription_id"] = subscription["id"]
    outcome["status"] = target.value

    if billing_object.get("id") and not subscription.get("billing_subscription_id"):
        db.update_subscription_fields(subscription["id"], {"billing_subscription_id": billing_object["id"]})

    if subscription["status"] == target:
        logger.info(f"Subscription {subscription['id']} already {target.value}; nothing to apply")
        outcome["handled"] = True
        return outcome

    changes = {"status": target.value}
    if target is SubscriptionStatus.CANCELED:
        reason = (billing_object.get("cancellation_details") or {}).get("reason")
        changes["cancel_reason"] = reason or "billing"

    outcome["result"] = lifecycle.update_subscription(
        subscription["id"], changes, actor="billing", today=today, source=event_type,
    )
    outcome["handled"] = True
    return outcome
