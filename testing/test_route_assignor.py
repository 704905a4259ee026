# testing/test_route_assignor.py
"""
Tests for route find-or-create and job assignment.
"""

from datetime import date

import pytest

from src import db
from src.api import materializer, route_assignor, voider
from src.errors import ConflictError, NotFoundError, ValidationError
from testing.helpers import TODAY, live_jobs


@pytest.fixture
def weekly_jobs(make_subscription):
    subscription = make_subscription("WEEKLY")
    materializer.materialize(subscription, TODAY, look_ahead_days=14)
    return subscription, live_jobs(subscription["id"])


def test_find_or_create_reuses_route_for_same_tech_and_date(technician):
    first = route_assignor.find_or_create_route(technician, date(2024, 3, 5))
    second = route_assignor.find_or_create_route(technician, "2024-03-05")

    assert first == second
    route = db.get_route(first)
    assert route["name"] == "Jane Doe - 2024-03-05"
    assert route["status"] == "PLANNED"


def test_different_tech_or_date_gets_its_own_route(technician):
    db.add_technician("T2", first_name="Sam", last_name="Lee")

    base = route_assignor.find_or_create_route(technician, date(2024, 3, 5))
    other_tech = route_assignor.find_or_create_route("T2", date(2024, 3, 5))
    other_day = route_assignor.find_or_create_route(technician, date(2024, 3, 6))

    assert len({base, other_tech, other_day}) == 3


def test_unknown_technician_gets_generic_route_name(clean_db):
    route_id = route_assignor.find_or_create_route("T404", date(2024, 3, 5))
    assert db.get_route(route_id)["name"] == "Tech - 2024-03-05"


def test_route_requires_tech_and_date(clean_db):
    with pytest.raises(ValidationError):
        route_assignor.find_or_create_route("", date(2024, 3, 5))
    with pytest.raises(ValidationError):
        route_assignor.find_or_create_route("T1", None)


def test_assignment_appends_stops_in_order(weekly_jobs, technician, make_subscription):
    _, jobs = weekly_jobs
    other = make_subscription("WEEKLY", preferred_day="TUESDAY")
    materializer.materialize(other, TODAY, look_ahead_days=14)
    other_job = live_jobs(other["id"])[0]

    route_id = route_assignor.assign_job_to_route(jobs[0]["id"], technician)
    same_route = route_assignor.assign_job_to_route(other_job["id"], technician)

    assert route_id == same_route
    assert db.get_job(jobs[0]["id"])["route_order"] == 1
    assert db.get_job(other_job["id"])["route_order"] == 2
    assert db.get_job(jobs[0]["id"])["assigned_to"] == technician


def test_reassigning_to_same_route_keeps_position(weekly_jobs, technician):
    _, jobs = weekly_jobs
    route_assignor.assign_job_to_route(jobs[0]["id"], technician)
    route_assignor.assign_job_to_route(jobs[0]["id"], technician)

    assert db.get_job(jobs[0]["id"])["route_order"] == 1
    assert len(db.list_jobs(route_id=db.get_job(jobs[0]["id"])["route_id"])) == 1


def test_route_date_must_match_job_date(weekly_jobs, technician):
    _, jobs = weekly_jobs
    with pytest.raises(ValidationError):
        route_assignor.assign_job_to_route(jobs[0]["id"], technician, route_date="2024-03-06")


def test_canceled_or_missing_jobs_cannot_be_assigned(weekly_jobs, technician):
    subscription, jobs = weekly_jobs
    voider.void_future_jobs(subscription["id"], "paused", TODAY)

    with pytest.raises(ConflictError):
        route_assignor.assign_job_to_route(jobs[0]["id"], technician)
    with pytest.raises(NotFoundError):
        route_assignor.assign_job_to_route(999999, technician)


def test_assign_future_unassigned_jobs(weekly_jobs, technician):
    subscription, jobs = weekly_jobs
    route_assignor.assign_job_to_route(jobs[0]["id"], technician)

    assigned = route_assignor.assign_future_unassigned_jobs(subscription["id"], technician, TODAY)

    assert assigned == 11
    refreshed = live_jobs(subscription["id"])
    assert all(job["route_id"] is not None for job in refreshed)
    assert len({job["route_id"] for job in refreshed}) == 12


def test_unassign_keeps_route(weekly_jobs, technician):
    _, jobs = weekly_jobs
    route_id = route_assignor.assign_job_to_route(jobs[0]["id"], technician)

    assert route_assignor.unassign_job(jobs[0]["id"]) == route_id
    assert db.get_job(jobs[0]["id"])["route_id"] is None
    assert db.get_route(route_id) is not None
    assert route_assignor.unassign_job(jobs[0]["id"]) is None


def test_bulk_assignment_moves_jobs_from_another_tech(weekly_jobs, technician):
    subscription, jobs = weekly_jobs
    db.add_technician("T2", first_name="Sam", last_name="Lee")
    route_assignor.assign_future_unassigned_jobs(subscription["id"], technician, TODAY)
    first_route = db.get_job(jobs[0]["id"])["route_id"]

    moved = route_assignor.assign_future_unassigned_jobs(subscription["id"], "T2", TODAY)

    assert moved == 12
    assert all(job["assigned_to"] == "T2" for job in live_jobs(subscription["id"]))
    assert db.list_jobs(route_id=first_route) == []
    assert db.get_route(db.get_job(jobs[0]["id"])["route_id"])["name"] == "Sam Lee - 2024-03-05"
    assert route_assignor.assign_future_unassigned_jobs(subscription["id"], "T2", TODAY) == 0


def test_malformed_route_dates_are_validation_errors(weekly_jobs, technician):
    _, jobs = weekly_jobs
    with pytest.raises(ValidationError):
        route_assignor.find_or_create_route(technician, "garbage")
    with pytest.raises(ValidationError):
        route_assignor.assign_job_to_route(jobs[0]["id"], technician, route_date="03/05/2024")


def test_unassign_records_activity(weekly_jobs, technician):
    _, jobs = weekly_jobs
    route_id = route_assignor.assign_job_to_route(jobs[0]["id"], technician)

    route_assignor.unassign_job(jobs[0]["id"], actor="dispatch:lee")
    route_assignor.unassign_job(jobs[0]["id"], actor="dispatch:lee")

    records = db.get_activity(entity_id=jobs[0]["id"], action="job_unassigned")
    assert len(records) == 1
    assert records[0]["actor"] == "dispatch:lee"
    assert records[0]["before"]["route_id"] == route_id
    assert records[0]["after"]["route_id"] is None
