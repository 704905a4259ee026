# src/db.py
#
# Job store adapter: the only module that issues SQL. Rows come back as plain
# dicts; dates are stored as 'YYYY-MM-DD' text so string comparison orders them.
#
# Storage-level invariants:
#   - at most one non-CANCELED job per (subscription_id, scheduled_date)
#     (partial unique index, so racing generators cannot both insert)
#   - at most one route per (assigned_to, route_date)

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date
from typing import Iterable, List, Optional

from config.settings import DB_PATH, DEFAULT_ORG_ID
from src.api.retry import retry_on_busy
from src.errors import ValidationError
from src.timezone_utils import utc_now_iso

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS clients (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    first_name TEXT,
    last_name TEXT,
    company_name TEXT,
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    billing_customer_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS locations (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    client_id TEXT NOT NULL REFERENCES clients(id),
    address_line1 TEXT,
    city TEXT,
    zip_code TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS technicians (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    first_name TEXT,
    last_name TEXT
);

CREATE TABLE IF NOT EXISTS subscriptions (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    client_id TEXT NOT NULL REFERENCES clients(id),
    location_id TEXT NOT NULL REFERENCES locations(id),
    frequency TEXT NOT NULL,
    preferred_day TEXT,
    status TEXT NOT NULL,
    price_cents INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    initial_cleanup_required INTEGER NOT NULL DEFAULT 0,
    initial_cleanup_completed INTEGER NOT NULL DEFAULT 0,
    billing_subscription_id TEXT UNIQUE,
    next_service_date TEXT,
    canceled_at TEXT,
    cancel_reason TEXT,
    pause_start_date TEXT,
    pause_end_date TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS routes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    org_id TEXT NOT NULL,
    assigned_to TEXT NOT NULL,
    route_date TEXT NOT NULL,
    name TEXT,
    status TEXT NOT NULL DEFAULT 'PLANNED',
    created_at TEXT NOT NULL,
    UNIQUE (assigned_to, route_date)
);

CREATE TABLE IF NOT EXISTS jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    org_id TEXT NOT NULL,
    subscription_id TEXT REFERENCES subscriptions(id),
    client_id TEXT NOT NULL,
    location_id TEXT NOT NULL,
    scheduled_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'SCHEDULED',
    assigned_to TEXT,
    route_id INTEGER REFERENCES routes(id),
    route_order INTEGER,
    price_cents INTEGER NOT NULL DEFAULT 0,
    skip_reason TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_one_live_per_date
    ON jobs (subscription_id, scheduled_date)
    WHERE status != 'CANCELED';
CREATE INDEX IF NOT EXISTS idx_jobs_route ON jobs (route_id);

CREATE TABLE IF NOT EXISTS optimization_suggestions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    org_id TEXT NOT NULL,
    subscription_id TEXT,
    suggestion_type TEXT NOT NULL,
    current_state TEXT,
    suggested_state TEXT,
    reasoning TEXT,
    time_impact_minutes INTEGER,
    status TEXT NOT NULL DEFAULT 'PENDING',
    reviewed_at TEXT,
    reviewed_by TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    org_id TEXT NOT NULL,
    actor TEXT,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT,
    before TEXT,
    after TEXT,
    metadata TEXT,
    created_at TEXT NOT NULL
);
"""

TABLES = [
    "activity_log", "optimization_suggestions", "jobs", "routes",
    "subscriptions", "technicians", "locations", "clients",
]

SUBSCRIPTION_COLUMNS = {
    "frequency", "preferred_day", "status", "price_cents",
    "initial_cleanup_required", "initial_cleanup_completed",
    "billing_subscription_id", "next_service_date", "canceled_at",
    "cancel_reason", "pause_start_date", "pause_end_date",
}


@contextmanager
def _connect():
    """Open a connection, commit on success, roll back on error, always close."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _iso(value) -> Optional[str]:
    if isinstance(value, date):
        return value.isoformat()
    return value


def _dumps(value) -> Optional[str]:
    return None if value is None else json.dumps(value, default=str)


def _loads(value):
    return None if value is None else json.loads(value)


def _subscription_from_row(row) -> dict:
    sub = dict(row)
    sub["initial_cleanup_required"] = bool(sub["initial_cleanup_required"])
    sub["initial_cleanup_completed"] = bool(sub["initial_cleanup_completed"])
    return sub


def _job_from_row(row) -> dict:
    job = dict(row)
    job["metadata"] = _loads(job.get("metadata")) or {}
    return job


def init_db():
    """Create every table and index if missing."""
    with _connect() as conn:
        conn.executescript(SCHEMA_SQL)


def clear_all():
    """
    Remove every row (testing only).
    """
    with _connect() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")


# -------------------
# CLIENTS / LOCATIONS / TECHNICIANS
# -------------------
def add_client(client_id: str = None, first_name: str = None, last_name: str = None,
               company_name: str = None, status: str = "ACTIVE",
               billing_customer_id: str = None, org_id: str = DEFAULT_ORG_ID) -> str:
    client_id = client_id or uuid.uuid4().hex
    with _connect() as conn:
        conn.execute(
            "INSERT INTO clients (id, org_id, first_name, last_name, company_name, status, "
            "billing_customer_id, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (client_id, org_id, first_name, last_name, company_name, status,
             billing_customer_id, utc_now_iso()),
        )
    return client_id


def get_client(client_id: str) -> Optional[dict]:
    with _connect() as conn:
        row = conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
        return dict(row) if row else None


@retry_on_busy()
def set_client_status(client_id: str, status: str) -> int:
    with _connect() as conn:
        cursor = conn.execute("UPDATE clients SET status = ? WHERE id = ?", (status, client_id))
        return cursor.rowcount


def add_location(client_id: str, address_line1: str = None, city: str = None,
                 zip_code: str = None, is_active: bool = True, location_id: str = None,
                 org_id: str = DEFAULT_ORG_ID) -> str:
    location_id = location_id or uuid.uuid4().hex
    with _connect() as conn:
        conn.execute(
            "INSERT INTO locations (id, org_id, client_id, address_line1, city, zip_code, "
            "is_active, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (location_id, org_id, client_id, address_line1, city, zip_code,
             int(is_active), utc_now_iso()),
        )
    return location_id


def list_active_locations(org_id: str = None) -> List[dict]:
    """
    Active locations joined with their client.
    Returns: list of dicts with location columns plus client_* columns.
    """
    query = """
        SELECT l.*, c.first_name AS client_first_name, c.last_name AS client_last_name,
               c.company_name AS client_company_name, c.status AS client_status,
               c.billing_customer_id AS client_billing_customer_id
        FROM locations l JOIN clients c ON c.id = l.client_id
        WHERE l.is_active = 1
    """
    params = []
    if org_id:
        query += " AND l.org_id = ?"
        params.append(org_id)
    query += " ORDER BY l.created_at DESC"
    with _connect() as conn:
        return [dict(row) for row in conn.execute(query, params).fetchall()]


def add_technician(tech_id: str, first_name: str = None, last_name: str = None,
                   org_id: str = DEFAULT_ORG_ID) -> str:
    with _connect() as conn:
        conn.execute(
            "INSERT INTO technicians (id, org_id, first_name, last_name) VALUES (?, ?, ?, ?)",
            (tech_id, org_id, first_name, last_name),
        )
    return tech_id


def get_technician(tech_id: str) -> Optional[dict]:
    with _connect() as conn:
        row = conn.execute("SELECT * FROM technicians WHERE id = ?", (tech_id,)).fetchone()
        return dict(row) if row else None


# -------------------
# SUBSCRIPTIONS
# -------------------
@retry_on_busy()
def insert_subscription(client_id: str, location_id: str, frequency: str, status: str,
                        price_cents: int, created_at, preferred_day: str = None,
                        initial_cleanup_required: bool = False,
                        billing_subscription_id: str = None, next_service_date=None,
                        subscription_id: str = None, org_id: str = DEFAULT_ORG_ID) -> str:
    subscription_id = subscription_id or uuid.uuid4().hex
    with _connect() as conn:
        conn.execute(
            """
            INSERT INTO subscriptions (id, org_id, client_id, location_id, frequency,
                preferred_day, status, price_cents, created_at, initial_cleanup_required,
                billing_subscription_id, next_service_date, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (subscription_id, org_id, client_id, location_id, frequency, preferred_day,
             status, price_cents, _iso(created_at), int(initial_cleanup_required),
             billing_subscription_id, _iso(next_service_date), utc_now_iso()),
        )
    return subscription_id


def get_subscription(subscription_id: str, org_id: str = None) -> Optional[dict]:
    """Fetch one subscription; a row from another organization reads as missing."""
    query = "SELECT * FROM subscriptions WHERE id = ?"
    params = [subscription_id]
    if org_id:
        query += " AND org_id = ?"
        params.append(org_id)
    with _connect() as conn:
        row = conn.execute(query, params).fetchone()
        return _subscription_from_row(row) if row else None


def get_subscription_by_billing_id(billing_subscription_id: str) -> Optional[dict]:
    with _connect() as conn:
        row = conn.execute(
            "SELECT * FROM subscriptions WHERE billing_subscription_id = ?",
            (billing_subscription_id,),
        ).fetchone()
        return _subscription_from_row(row) if row else None


@retry_on_busy()
def update_subscription_fields(subscription_id: str, updates: dict) -> Optional[dict]:
    """
    Apply column updates to a subscription and return the fresh row.
    Only columns in SUBSCRIPTION_COLUMNS may be written.
    """
    unknown = set(updates) - SUBSCRIPTION_COLUMNS
    if unknown:
        raise ValidationError(f"Unknown subscription columns: {sorted(unknown)}")

    values = {k: _iso(v) for k, v in updates.items()}
    for flag in ("initial_cleanup_required", "initial_cleanup_completed"):
        if flag in values:
            values[flag] = int(bool(values[flag]))
    values["updated_at"] = utc_now_iso()

    assignments = ", ".join(f"{column} = ?" for column in values)
    with _connect() as conn:
        conn.execute(
            f"UPDATE subscriptions SET {assignments} WHERE id = ?",
            list(values.values()) + [subscription_id],
        )
        row = conn.execute("SELECT * FROM subscriptions WHERE id = ?", (subscription_id,)).fetchone()
        return _subscription_from_row(row) if row else None


def list_subscriptions(status: str = None, org_id: str = None) -> List[dict]:
    """
    Subscriptions joined with client and location details, newest first.
    Extra keys: client_status, client_first_name, client_last_name,
    client_company_name, client_billing_customer_id, location_is_active,
    address_line1, city, zip_code.
    """
    query = """
        SELECT s.*, c.status AS client_status, c.first_name AS client_first_name,
               c.last_name AS client_last_name, c.company_name AS client_company_name,
               c.billing_customer_id AS client_billing_customer_id,
               l.is_active AS location_is_active, l.address_line1, l.city, l.zip_code
        FROM subscriptions s
        LEFT JOIN clients c ON c.id = s.client_id
        LEFT JOIN locations l ON l.id = s.location_id
        WHERE 1 = 1
    """
    params = []
    if status:
        query += " AND s.status = ?"
        params.append(status)
    if org_id:
        query += " AND s.org_id = ?"
        params.append(org_id)
    query += " ORDER BY s.created_at DESC, s.id"
    with _connect() as conn:
        rows = []
        for row in conn.execute(query, params).fetchall():
            sub = _subscription_from_row(row)
            sub["location_is_active"] = bool(sub["location_is_active"])
            rows.append(sub)
        return rows


def count_active_subscriptions(client_id: str, exclude_id: str = None) -> int:
    query = "SELECT COUNT(*) FROM subscriptions WHERE client_id = ? AND status = 'ACTIVE'"
    params = [client_id]
    if exclude_id:
        query += " AND id != ?"
        params.append(exclude_id)
    with _connect() as conn:
        return conn.execute(query, params).fetchone()[0]


# -------------------
# JOBS
# -------------------
def has_live_job(subscription_id: str, scheduled_date) -> bool:
    """True if a non-CANCELED job exists for (subscription, date)."""
    with _connect() as conn:
        row = conn.execute(
            "SELECT 1 FROM jobs WHERE subscription_id = ? AND scheduled_date = ? "
            "AND status != 'CANCELED' LIMIT 1",
            (subscription_id, _iso(scheduled_date)),
        ).fetchone()
        return row is not None


def find_live_job(subscription_id: str, scheduled_date) -> Optional[dict]:
    with _connect() as conn:
        row = conn.execute(
            "SELECT * FROM jobs WHERE subscription_id = ? AND scheduled_date = ? AND status != 'CANCELED'",
            (subscription_id, _iso(scheduled_date)),
        ).fetchone()
        return _job_from_row(row) if row else None


def has_any_job(subscription_id: str) -> bool:
    with _connect() as conn:
        row = conn.execute(
            "SELECT 1 FROM jobs WHERE subscription_id = ? LIMIT 1", (subscription_id,)
        ).fetchone()
        return row is not None


@retry_on_busy()
def insert_job(subscription_id: Optional[str], client_id: str, location_id: str,
               scheduled_date, price_cents: int, metadata: dict = None,
               status: str = "SCHEDULED", org_id: str = DEFAULT_ORG_ID) -> int:
    """
    Insert one job row.
    Raises sqlite3.IntegrityError when a live job already holds (subscription, date).
    """
    with _connect() as conn:
        cursor = conn.execute(
            """
            INSERT INTO jobs (org_id, subscription_id, client_id, location_id, scheduled_date,
                status, price_cents, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (org_id, subscription_id, client_id, location_id, _iso(scheduled_date),
             status, price_cents, _dumps(metadata or {}), utc_now_iso()),
        )
        return cursor.lastrowid


def get_job(job_id: int, org_id: str = None) -> Optional[dict]:
    query = "SELECT * FROM jobs WHERE id = ?"
    params = [job_id]
    if org_id:
        query += " AND org_id = ?"
        params.append(org_id)
    with _connect() as conn:
        row = conn.execute(query, params).fetchone()
        return _job_from_row(row) if row else None


def list_jobs(subscription_id: str = None, subscription_ids: Iterable[str] = None,
              statuses: Iterable[str] = None, from_date=None, unrouted: bool = False,
              route_id: int = None, not_assigned_to: str = None) -> List[dict]:
    """
    Fetch jobs ordered by date.
    Filters combine with AND; from_date is inclusive.
    """
    query = "SELECT * FROM jobs WHERE 1 = 1"
    params = []
    if subscription_id:
        query += " AND subscription_id = ?"
        params.append(subscription_id)
    if subscription_ids is not None:
        ids = list(subscription_ids)
        if not ids:
            return []
        query += f" AND subscription_id IN ({', '.join('?' for _ in ids)})"
        params.extend(ids)
    if statuses:
        statuses = [getattr(s, "value", s) for s in statuses]
        query += f" AND status IN ({', '.join('?' for _ in statuses)})"
        params.extend(statuses)
    if from_date is not None:
        query += " AND scheduled_date >= ?"
        params.append(_iso(from_date))
    if unrouted:
        query += " AND route_id IS NULL"
    if not_assigned_to is not None:
        query += " AND (route_id IS NULL OR assigned_to IS NULL OR assigned_to != ?)"
        params.append(not_assigned_to)
    if route_id is not None:
        query += " AND route_id = ?"
        params.append(route_id)
    query += " ORDER BY scheduled_date, id"
    with _connect() as conn:
        return [_job_from_row(row) for row in conn.execute(query, params).fetchall()]


@retry_on_busy()
def cancel_future_jobs(subscription_id: str, from_date, reason: str,
                       statuses: Iterable[str] = ("SCHEDULED", "EN_ROUTE")) -> List[int]:
    """
    Cancel a subscription's jobs dated on/after from_date and detach them from
    their routes, in one transaction.
    Returns: ids of the canceled jobs.
    """
    statuses = [getattr(s, "value", s) for s in statuses]
    placeholders = ", ".join("?" for _ in statuses)
    with _connect() as conn:
        rows = conn.execute(
            f"SELECT id FROM jobs WHERE subscription_id = ? AND scheduled_date >= ? "
            f"AND status IN ({placeholders})",
            [subscription_id, _iso(from_date)] + statuses,
        ).fetchall()
        job_ids = [row["id"] for row in rows]
        if job_ids:
            id_marks = ", ".join("?" for _ in job_ids)
            conn.execute(
                f"UPDATE jobs SET status = 'CANCELED', skip_reason = ?, route_id = NULL, "
                f"route_order = NULL, updated_at = ? WHERE id IN ({id_marks})",
                [reason, utc_now_iso()] + job_ids,
            )
        return job_ids


@retry_on_busy()
def set_job_route(job_id: int, tech_id: str, route_id: int) -> int:
    """
    Bind a job to a route, appending it after the route's current last stop.
    Returns: the job's route_order.
    """
    with _connect() as conn:
        current = conn.execute("SELECT route_id, route_order FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if current and current["route_id"] == route_id and current["route_order"] is not None:
            conn.execute("UPDATE jobs SET assigned_to = ?, updated_at = ? WHERE id = ?",
                         (tech_id, utc_now_iso(), job_id))
            return current["route_order"]

        max_order = conn.execute(
            "SELECT COALESCE(MAX(route_order), 0) FROM jobs WHERE route_id = ?", (route_id,)
        ).fetchone()[0]
        conn.execute(
            "UPDATE jobs SET assigned_to = ?, route_id = ?, route_order = ?, updated_at = ? WHERE id = ?",
            (tech_id, route_id, max_order + 1, utc_now_iso(), job_id),
        )
        return max_order + 1


@retry_on_busy()
def clear_job_route(job_id: int) -> int:
    with _connect() as conn:
        cursor = conn.execute(
            "UPDATE jobs SET route_id = NULL, route_order = NULL, updated_at = ? WHERE id = ?",
            (utc_now_iso(), job_id),
        )
        return cursor.rowcount


@retry_on_busy()
def update_job_metadata(job_id: int, metadata: dict) -> int:
    """Merge keys into a job's metadata."""
    with _connect() as conn:
        row = conn.execute("SELECT metadata FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if not row:
            return 0
        merged = dict(_loads(row["metadata"]) or {}, **metadata)
        cursor = conn.execute(
            "UPDATE jobs SET metadata = ?, updated_at = ? WHERE id = ?",
            (_dumps(merged), utc_now_iso(), job_id),
        )
        return cursor.rowcount


@retry_on_busy()
def set_job_status(job_id: int, new_status: str, expected_status: str,
                   skip_reason: str = None) -> bool:
    """
    Conditional status write: only succeeds if the job is still in expected_status.
    """
    with _connect() as conn:
        cursor = conn.execute(
            "UPDATE jobs SET status = ?, skip_reason = COALESCE(?, skip_reason), updated_at = ? "
            "WHERE id = ? AND status = ?",
            (new_status, skip_reason, utc_now_iso(), job_id, expected_status),
        )
        return cursor.rowcount == 1


# -------------------
# ROUTES
# -------------------
def find_route(tech_id: str, route_date) -> Optional[dict]:
    with _connect() as conn:
        row = conn.execute(
            "SELECT * FROM routes WHERE assigned_to = ? AND route_date = ?",
            (tech_id, _iso(route_date)),
        ).fetchone()
        return dict(row) if row else None


def get_route(route_id: int) -> Optional[dict]:
    with _connect() as conn:
        row = conn.execute("SELECT * FROM routes WHERE id = ?", (route_id,)).fetchone()
        return dict(row) if row else None


@retry_on_busy()
def insert_route_if_absent(tech_id: str, route_date, name: str, status: str = "PLANNED",
                           org_id: str = DEFAULT_ORG_ID) -> dict:
    """
    Insert a route unless (tech, date) already has one; either way return the
    row that owns the key. The unique constraint decides the winner of a race.
    """
    with _connect() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO routes (org_id, assigned_to, route_date, name, status, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (org_id, tech_id, _iso(route_date), name, status, utc_now_iso()),
        )
        row = conn.execute(
            "SELECT * FROM routes WHERE assigned_to = ? AND route_date = ?",
            (tech_id, _iso(route_date)),
        ).fetchone()
        return dict(row)


# -------------------
# OPTIMIZATION SUGGESTIONS
# -------------------
def _suggestion_from_row(row) -> dict:
    suggestion = dict(row)
    suggestion["current_state"] = _loads(suggestion["current_state"]) or {}
    suggestion["suggested_state"] = _loads(suggestion["suggested_state"]) or {}
    return suggestion


@retry_on_busy()
def insert_suggestion(suggestion_type: str, subscription_id: str = None,
                      current_state: dict = None, suggested_state: dict = None,
                      reasoning: str = None, time_impact_minutes: int = None,
                      org_id: str = DEFAULT_ORG_ID) -> int:
    with _connect() as conn:
        cursor = conn.execute(
            """
            INSERT INTO optimization_suggestions (org_id, subscription_id, suggestion_type,
                current_state, suggested_state, reasoning, time_impact_minutes, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'PENDING', ?)
            """,
            (org_id, subscription_id, suggestion_type, _dumps(current_state or {}),
             _dumps(suggested_state or {}), reasoning, time_impact_minutes, utc_now_iso()),
        )
        return cursor.lastrowid


def get_suggestion(suggestion_id: int, org_id: str = None) -> Optional[dict]:
    query = "SELECT * FROM optimization_suggestions WHERE id = ?"
    params = [suggestion_id]
    if org_id:
        query += " AND org_id = ?"
        params.append(org_id)
    with _connect() as conn:
        row = conn.execute(query, params).fetchone()
        return _suggestion_from_row(row) if row else None


def list_suggestions(status: str = None, org_id: str = None) -> List[dict]:
    query = "SELECT * FROM optimization_suggestions WHERE 1 = 1"
    params = []
    if status:
        query += " AND status = ?"
        params.append(status)
    if org_id:
        query += " AND org_id = ?"
        params.append(org_id)
    query += " ORDER BY created_at DESC, id DESC"
    with _connect() as conn:
        return [_suggestion_from_row(row) for row in conn.execute(query, params).fetchall()]


@retry_on_busy()
def claim_suggestion(suggestion_id: int, new_status: str, reviewed_by: str) -> bool:
    """
    Move a PENDING suggestion to new_status. Returns False if it was no longer
    PENDING, so two concurrent accepts cannot both succeed.
    """
    with _connect() as conn:
        cursor = conn.execute(
            "UPDATE optimization_suggestions SET status = ?, reviewed_at = ?, reviewed_by = ? "
            "WHERE id = ? AND status = 'PENDING'",
            (new_status, utc_now_iso(), reviewed_by, suggestion_id),
        )
        return cursor.rowcount == 1


@retry_on_busy()
def release_suggestion(suggestion_id: int) -> bool:
    """Return an ACCEPTED suggestion to PENDING after its change failed to apply."""
    with _connect() as conn:
        cursor = conn.execute(
            "UPDATE optimization_suggestions SET status = 'PENDING', reviewed_at = NULL, "
            "reviewed_by = NULL WHERE id = ? AND status = 'ACCEPTED'",
            (suggestion_id,),
        )
        return cursor.rowcount == 1


# -------------------
# ACTIVITY LOG
# -------------------
@retry_on_busy()
def record_activity(action: str, entity_type: str, entity_id, actor: str = None,
                    before: dict = None, after: dict = None, metadata: dict = None,
                    org_id: str = DEFAULT_ORG_ID) -> int:
    """Append an audit record (who, what, before/after)."""
    with _connect() as conn:
        cursor = conn.execute(
            """
            INSERT INTO activity_log (org_id, actor, action, entity_type, entity_id,
                before, after, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (org_id, actor, action, entity_type, None if entity_id is None else str(entity_id),
             _dumps(before), _dumps(after), _dumps(metadata), utc_now_iso()),
        )
        return cursor.lastrowid


def get_activity(entity_id=None, action: str = None) -> List[dict]:
    query = "SELECT * FROM activity_log WHERE 1 = 1"
    params = []
    if entity_id is not None:
        query += " AND entity_id = ?"
        params.append(str(entity_id))
    if action:
        query += " AND action = ?"
        params.append(action)
    query += " ORDER BY id"
    with _connect() as conn:
        records = []
        for row in conn.execute(query, params).fetchall():
            record = dict(row)
            for key in ("before", "after", "metadata"):
                record[key] = _loads(record[key])
            records.append(record)
        return records
