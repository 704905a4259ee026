# testing/helpers.py
#
# Constants and lookups shared by the test modules.

from datetime import date

from src import db

TODAY = date(2024, 3, 4)  # a Monday


def live_jobs(subscription_id, from_date=None):
    """Non-CANCELED jobs of a subscription, oldest first."""
    return [
        job for job in db.list_jobs(subscription_id=subscription_id, from_date=from_date)
        if job["status"] != "CANCELED"
    ]


def job_dates(jobs):
    return [job["scheduled_date"] for job in jobs]
