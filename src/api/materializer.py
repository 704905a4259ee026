# materializer.py
#
# Turns subscriptions into dated job rows for a look-ahead window.
# Generation is idempotent: a date that already holds a live (non-CANCELED)
# job is skipped, so the same window can be materialized any number of times.

import logging
import sqlite3
from datetime import date, timedelta

from config.settings import DEFAULT_ORG_ID, LOOKAHEAD_DAYS
from src import db
from src.api.calendar_rules import service_dates
from src.models import ClientStatus, Frequency, SubscriptionStatus
from src.timezone_utils import parse_date, utc_now_iso

logger = logging.getLogger(__name__)


def _empty_result(subscription_id) -> dict:
    return {
        'subscription_id': subscription_id,
        'created': 0,
        'skipped_existing': 0,
        'failed_dates': [],
        'jobs': [],
    }


def materialize(subscription: dict, today: date, look_ahead_days: int = None,
                trigger: str = "subscription_change") -> dict:
    """
    Create the missing jobs for a subscription from tomorrow through
    today + look_ahead_days.

    Args:
        subscription: subscription row (dict from src.db)
        today: the business date; tomorrow is the first candidate
        look_ahead_days: window length (default: SCHEDULE_LOOKAHEAD_DAYS)
        trigger: recorded as metadata.generated_by on every created job

    Returns:
        dict: {
            'subscription_id': str,
            'created': int,
            'skipped_existing': int,
            'failed_dates': list of 'YYYY-MM-DD' that could not be written,
            'jobs': list of {'id', 'scheduled_date'}
        }

    Partial failure is normal: a date whose insert fails is logged and left
    for the next (idempotent) run instead of aborting the remaining dates.
    """
    result = _empty_result(subscription['id'])

    if subscription['status'] != SubscriptionStatus.ACTIVE:
        return result
    if subscription['frequency'] == Frequency.ONETIME:
        return result

    window = LOOKAHEAD_DAYS if look_ahead_days is None else look_ahead_days
    anchor = parse_date(subscription['created_at'])
    start = today + timedelta(days=1)
    end = today + timedelta(days=window)

    for job_date in service_dates(subscription['frequency'], anchor,
                                  subscription.get('preferred_day'), start, end):
        job_date_str = job_date.isoformat()
        try:
            if db.has_live_job(subscription['id'], job_date):
                result['skipped_existing'] += 1
                continue

            job_id = db.insert_job(
                subscription['id'],
                subscription['client_id'],
                subscription['location_id'],
                job_date,
                subscription['price_cents'],
                metadata={
                    'generated_by': trigger,
                    'generated_at': utc_now_iso(),
                    'frequency': subscription['frequency'],
                },
                org_id=subscription['org_id'],
            )
        except sqlite3.IntegrityError:
            # Another writer created the job between the check and the insert
            logger.info(f"Job for subscription {subscription['id']} on {job_date_str} already exists")
            result['skipped_existing'] += 1
        except sqlite3.Error as e:
            logger.error(f"Failed to create job for subscription {subscription['id']} on {job_date_str}: {e}")
            result['failed_dates'].append(job_date_str)
        else:
            result['created'] += 1
            result['jobs'].append({'id': job_id, 'scheduled_date': job_date_str})

    if result['created'] or result['failed_dates']:
        logger.info(
            f"Materialized subscription {subscription['id']}: {result['created']} created, "
            f"{result['skipped_existing']} already present, {len(result['failed_dates'])} failed"
        )
    return result


def materialize_one_time(subscription: dict, trigger: str = "cron") -> dict:
    """
    Create the single job of an ACTIVE one-time subscription on its
    next_service_date, unless the subscription already has any job.
    """
    result = _empty_result(subscription['id'])

    if subscription['status'] != SubscriptionStatus.ACTIVE:
        return result
    if subscription['frequency'] != Frequency.ONETIME or not subscription.get('next_service_date'):
        return result

    service_date = parse_date(subscription['next_service_date'])
    try:
        if db.has_any_job(subscription['id']):
            result['skipped_existing'] += 1
            return result
        job_id = db.insert_job(
            subscription['id'],
            subscription['client_id'],
            subscription['location_id'],
            service_date,
            subscription['price_cents'],
            metadata={
                'generated_by': trigger,
                'generated_at': utc_now_iso(),
                'frequency': Frequency.ONETIME.value,
            },
            org_id=subscription['org_id'],
        )
    except sqlite3.IntegrityError:
        result['skipped_existing'] += 1
    except sqlite3.Error as e:
        logger.error(f"Failed to create one-time job for subscription {subscription['id']}: {e}")
        result['failed_dates'].append(service_date.isoformat())
    else:
        result['created'] = 1
        result['jobs'].append({'id': job_id, 'scheduled_date': service_date.isoformat()})
    return result


def create_initial_cleanup_job(subscription: dict, scheduled_date: date,
                               trigger: str = "assignment") -> int:
    """
    Insert the one-off initial cleanup visit for a subscription. A regular
    visit already holding that date becomes the cleanup instead.
    Storage errors propagate: the caller asked for this specific job.
    """
    try:
        return db.insert_job(
            subscription['id'],
            subscription['client_id'],
            subscription['location_id'],
            scheduled_date,
            subscription['price_cents'],
            metadata={
                'generated_by': trigger,
                'generated_at': utc_now_iso(),
                'is_initial_cleanup': True,
            },
            org_id=subscription['org_id'],
        )
    except sqlite3.IntegrityError:
        existing = db.find_live_job(subscription['id'], scheduled_date)
        if not existing:
            raise
        db.update_job_metadata(existing['id'], {'is_initial_cleanup': True})
        logger.info(f"Job {existing['id']} on {scheduled_date} is now the initial cleanup for {subscription['id']}")
        return existing['id']


def generate_jobs_for_active_subscriptions(today: date, look_ahead_days: int = None,
                                           org_id: str = None, actor: str = "cron") -> dict:
    """
    Nightly batch: materialize every ACTIVE subscription whose client is
    ACTIVE and whose location is still active.

    Returns:
        dict: {
            'subscriptions_processed': int,
            'generated': int,
            'skipped': int,      # subscriptions passed over (inactive client/location)
            'errors': int,       # dates that failed to write
        }
    """
    subscriptions = db.list_subscriptions(status=SubscriptionStatus.ACTIVE.value, org_id=org_id)
    totals = {'subscriptions_processed': len(subscriptions), 'generated': 0, 'skipped': 0, 'errors': 0}

    for subscription in subscriptions:
        if subscription['client_status'] != ClientStatus.ACTIVE or not subscription['location_is_active']:
            totals['skipped'] += 1
            continue

        if subscription['frequency'] == Frequency.ONETIME:
            result = materialize_one_time(subscription, trigger="cron")
        else:
            result = materialize(subscription, today, look_ahead_days, trigger="cron")
        totals['generated'] += result['created']
        totals['errors'] += len(result['failed_dates'])

    logger.info(
        f"Job generation complete: {totals['generated']} created, "
        f"{totals['skipped']} skipped, {totals['errors']} errors"
    )
    db.record_activity(
        "jobs_generated", "schedule", None, actor=actor,
        metadata=dict(totals, today=today.isoformat(), look_ahead_days=look_ahead_days or LOOKAHEAD_DAYS),
        org_id=org_id or DEFAULT_ORG_ID,
    )
    return totals
