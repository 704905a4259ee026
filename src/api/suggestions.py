# suggestions.py
#
# Ledger for schedule changes proposed by the external route advisor.
# Suggestions are only recorded here; accepting one applies it through the
# lifecycle controller, never by writing jobs directly.

import logging
import sqlite3
from datetime import date

from config.settings import DEFAULT_ORG_ID
from src import db
from src.api import lifecycle
from src.errors import (AlreadyProcessedError, NotFoundError, SchedulingError, StorageError,
                        ValidationError)
from src.models import SuggestionStatus, parse_enum, parse_weekday

logger = logging.getLogger(__name__)


def _suggested_changes(suggested_state: dict) -> dict:
    """Pull the day / technician out of a suggested_state snapshot."""
    day = suggested_state.get("day") or suggested_state.get("preferred_day")
    tech_id = suggested_state.get("tech_id") or suggested_state.get("techId")
    return {
        "preferred_day": parse_weekday(day).value if day else None,
        "tech_id": tech_id,
    }


def record_suggestion(suggestion_type: str, subscription_id: str = None,
                      current_state: dict = None, suggested_state: dict = None,
                      reasoning: str = None, time_impact_minutes: int = None,
                      org_id: str = DEFAULT_ORG_ID) -> dict:
    """Store an advisor proposal as PENDING and return it."""
    if not suggestion_type:
        raise ValidationError("suggestion_type is required")
    if suggested_state is not None and not isinstance(suggested_state, dict):
        raise ValidationError("suggested_state must be an object")
    _suggested_changes(suggested_state or {})

    if subscription_id and not db.get_subscription(subscription_id, org_id=org_id):
        raise NotFoundError(f"Subscription {subscription_id} not found")

    suggestion_id = db.insert_suggestion(
        suggestion_type, subscription_id=subscription_id, current_state=current_state,
        suggested_state=suggested_state, reasoning=reasoning,
        time_impact_minutes=time_impact_minutes, org_id=org_id,
    )
    logger.info(f"Recorded {suggestion_type} suggestion {suggestion_id} for subscription {subscription_id}")
    return db.get_suggestion(suggestion_id)


def list_suggestions(status=None, org_id: str = None) -> list:
    if status is not None:
        status = parse_enum(SuggestionStatus, status, "status").value
    return db.list_suggestions(status=status, org_id=org_id)


def _load_pending(suggestion_id: int, org_id: str = None) -> dict:
    suggestion = db.get_suggestion(suggestion_id, org_id=org_id)
    if not suggestion:
        raise NotFoundError(f"Suggestion {suggestion_id} not found")
    if suggestion["status"] != SuggestionStatus.PENDING:
        raise AlreadyProcessedError(f"Suggestion {suggestion_id} is already {suggestion['status']}")
    return suggestion


def accept_suggestion(suggestion_id: int, actor: str = "staff", org_id: str = None,
                      today: date = None) -> dict:
    """
    Accept a PENDING suggestion and apply its day / technician change.

    The PENDING -> ACCEPTED claim is a conditional update, so of two
    concurrent accepts exactly one applies the change and the other gets
    AlreadyProcessedError. If applying the change fails the claim is released
    and the error propagates, leaving the suggestion PENDING for a retry.

    Returns:
        dict: {'suggestion': row, 'applied': lifecycle result or None}
    """
    suggestion = _load_pending(suggestion_id, org_id)
    changes = _suggested_changes(suggestion["suggested_state"])

    if not db.claim_suggestion(suggestion_id, SuggestionStatus.ACCEPTED.value, actor):
        raise AlreadyProcessedError(f"Suggestion {suggestion_id} was already processed")

    applied = None
    if suggestion["subscription_id"] and (changes["preferred_day"] or changes["tech_id"]):
        try:
            applied = lifecycle.apply_schedule_change(
                suggestion["subscription_id"],
                preferred_day=changes["preferred_day"],
                tech_id=changes["tech_id"],
                actor=actor, today=today, source="suggestion",
            )
        except (SchedulingError, sqlite3.Error) as e:
            logger.error(f"Suggestion {suggestion_id}: change not applied, back to PENDING: {e}")
            db.release_suggestion(suggestion_id)
            db.record_activity(
                "suggestion_accept_failed", "optimization_suggestion", suggestion_id, actor=actor,
                metadata={"subscription_id": suggestion["subscription_id"], "error": str(e)},
                org_id=suggestion["org_id"],
            )
            if isinstance(e, sqlite3.Error):
                raise StorageError(f"Could not apply suggestion {suggestion_id}") from e
            raise

    db.record_activity(
        "suggestion_accepted", "optimization_suggestion", suggestion_id, actor=actor,
        before=suggestion["current_state"],
        after=suggestion["suggested_state"],
        metadata={
            "subscription_id": suggestion["subscription_id"],
            "suggestion_type": suggestion["suggestion_type"],
            "summary": applied["summary"] if applied else None,
        },
        org_id=suggestion["org_id"],
    )
    logger.info(f"Suggestion {suggestion_id} accepted by {actor}")
    return {"suggestion": db.get_suggestion(suggestion_id), "applied": applied}


def dismiss_suggestion(suggestion_id: int, actor: str = "staff", org_id: str = None) -> dict:
    suggestion = _load_pending(suggestion_id, org_id)
    if not db.claim_suggestion(suggestion_id, SuggestionStatus.DISMISSED.value, actor):
        raise AlreadyProcessedError(f"Suggestion {suggestion_id} was already processed")

    db.record_activity(
        "suggestion_dismissed", "optimization_suggestion", suggestion_id, actor=actor,
        metadata={"subscription_id": suggestion["subscription_id"]},
        org_id=suggestion["org_id"],
    )
    return db.get_suggestion(suggestion_id)
