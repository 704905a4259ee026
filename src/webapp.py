# src/webapp.py
#
# HTTP surface of the scheduling engine. Handlers parse the request, call one
# engine operation and return its result; engine errors are mapped to status
# codes by a single exception handler.

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

import src.logging_config  # noqa: F401  (configures logging on import)
from config.settings import BILLING_WEBHOOK_SECRET, DEFAULT_ORG_ID
from src import db
from src.api import (billing_events, job_status, lifecycle, materializer, route_assignor,
                     suggestions, unassigned_detector)
from src.api.webhook_verify import verify_billing_signature
from src.errors import (ConflictError, NotFoundError, SchedulingError, StorageError,
                        ValidationError)
from src.timezone_utils import parse_date, today as business_today

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Scheduler API starting up...")
    db.init_db()
    yield
    logger.info("Scheduler API shutting down...")


app = FastAPI(title="Recurring Route Scheduler", version="0.1.0", lifespan=lifespan)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    if isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ConflictError):
        status_code = 409
    elif isinstance(exc, StorageError):
        status_code = 503
    else:
        status_code = 500
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# -------------------
# HELPERS
# -------------------
async def read_json(request: Request) -> dict:
    """Parse a JSON object body or fail with 400."""
    try:
        data = await request.json()
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON payload: {e}")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Empty or invalid payload")
    return data


def actor_of(request: Request) -> str:
    return request.headers.get("X-Actor") or "staff"


def org_of(request: Request):
    return request.headers.get("X-Org-Id")


def require(data: dict, *fields):
    for field in fields:
        if data.get(field) in (None, ""):
            raise HTTPException(status_code=400, detail=f"Missing {field}")


# -------------------
# HEALTH
# -------------------
@app.get("/health")
async def health():
    return {"status": "ok", "today": business_today().isoformat()}


# -------------------
# SUBSCRIPTIONS
# -------------------
@app.post("/subscriptions", status_code=201)
async def create_subscription_endpoint(request: Request):
    """
    Signup. Payload example:
    {
        "client_id": "C1",
        "location_id": "L1",
        "frequency": "WEEKLY",
        "price_cents": 4500,
        "preferred_day": "TUESDAY",
        "initial_cleanup_required": true
    }
    """
    data = await read_json(request)
    require(data, "client_id", "location_id", "frequency")

    return lifecycle.create_subscription(
        data["client_id"],
        data["location_id"],
        data["frequency"],
        data.get("price_cents", 0),
        preferred_day=data.get("preferred_day"),
        status=data.get("status", "ACTIVE"),
        created_at=data.get("created_at"),
        initial_cleanup_required=bool(data.get("initial_cleanup_required", False)),
        next_service_date=data.get("next_service_date"),
        billing_subscription_id=data.get("billing_subscription_id"),
        actor=actor_of(request),
        org_id=org_of(request) or DEFAULT_ORG_ID,
    )


@app.patch("/subscriptions/{subscription_id}")
async def update_subscription_endpoint(subscription_id: str, request: Request):
    """Staff edit: any subset of status, frequency, preferred_day, price_cents, ..."""
    changes = await read_json(request)
    return lifecycle.update_subscription(
        subscription_id, changes, actor=actor_of(request), org_id=org_of(request),
    )


@app.post("/subscriptions/{subscription_id}/assign")
async def assign_subscription_endpoint(subscription_id: str, request: Request):
    """
    Payload example:
    {
        "tech_id": "T1",
        "service_days": ["TUESDAY"],
        "initial_cleanup": {"date": "2024-03-07", "tech_id": "T2"}
    }
    """
    data = await read_json(request)
    return lifecycle.assign_subscription(
        subscription_id,
        data.get("tech_id"),
        data.get("service_days") or [],
        initial_cleanup=data.get("initial_cleanup"),
        actor=actor_of(request),
        org_id=org_of(request),
    )


# -------------------
# ROUTES / JOBS
# -------------------
@app.post("/routes/assign")
async def assign_jobs_endpoint(request: Request):
    """
    Bulk-assign jobs to a technician. Each job lands on the technician's
    route for its own date. Jobs that cannot be assigned are reported, not fatal.
    """
    data = await read_json(request)
    require(data, "tech_id")
    job_ids = data.get("job_ids")
    if not isinstance(job_ids, list) or not job_ids:
        raise HTTPException(status_code=400, detail="job_ids must be a non-empty list")
    route_date = route_assignor.parse_route_date(data.get("route_date"))

    assigned = []
    failed = []
    for job_id in job_ids:
        try:
            route_id = route_assignor.assign_job_to_route(
                job_id, data["tech_id"], route_date=route_date, org_id=org_of(request),
            )
        except (ValidationError, NotFoundError, ConflictError) as e:
            failed.append({"job_id": job_id, "error": str(e)})
        else:
            assigned.append({"job_id": job_id, "route_id": route_id})

    db.record_activity(
        "jobs_assigned", "route", None, actor=actor_of(request),
        metadata={"tech_id": data["tech_id"], "assigned": assigned, "failed": failed},
        org_id=org_of(request) or DEFAULT_ORG_ID,
    )
    return {"assigned": assigned, "failed": failed}


@app.post("/jobs/{job_id}/unassign")
async def unassign_job_endpoint(job_id: int, request: Request):
    previous_route = route_assignor.unassign_job(job_id, org_id=org_of(request), actor=actor_of(request))
    return {"job_id": job_id, "previous_route_id": previous_route}


@app.post("/jobs/{job_id}/status")
async def job_status_endpoint(job_id: int, request: Request):
    data = await read_json(request)
    require(data, "status")
    return job_status.advance_job_status(
        job_id, data["status"], reason=data.get("reason"),
        actor=actor_of(request), org_id=org_of(request),
    )


@app.get("/unassigned")
async def unassigned_endpoint(request: Request):
    items = unassigned_detector.find_unassigned_work(business_today(), org_id=org_of(request))
    return {"items": items, "total": len(items)}


# -------------------
# OPTIMIZATION SUGGESTIONS
# -------------------
@app.get("/suggestions")
async def list_suggestions_endpoint(request: Request, status: str = None):
    items = suggestions.list_suggestions(status=status, org_id=org_of(request))
    return {"suggestions": items, "total": len(items)}


@app.post("/suggestions", status_code=201)
async def record_suggestion_endpoint(request: Request):
    data = await read_json(request)
    require(data, "suggestion_type")
    return suggestions.record_suggestion(
        data["suggestion_type"],
        subscription_id=data.get("subscription_id"),
        current_state=data.get("current_state"),
        suggested_state=data.get("suggested_state"),
        reasoning=data.get("reasoning"),
        time_impact_minutes=data.get("time_impact_minutes"),
        org_id=org_of(request) or DEFAULT_ORG_ID,
    )


@app.post("/suggestions/{suggestion_id}/accept")
async def accept_suggestion_endpoint(suggestion_id: int, request: Request):
    return suggestions.accept_suggestion(suggestion_id, actor=actor_of(request), org_id=org_of(request))


@app.post("/suggestions/{suggestion_id}/dismiss")
async def dismiss_suggestion_endpoint(suggestion_id: int, request: Request):
    return suggestions.dismiss_suggestion(suggestion_id, actor=actor_of(request), org_id=org_of(request))


# -------------------
# BILLING WEBHOOK
# -------------------
@app.post("/webhooks/billing")
async def billing_webhook(request: Request):
    """
    Payment-processor subscription events. Payload example:
    {
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_123", "status": "past_due",
                            "metadata": {"subscription_id": "S1"}}}
    }
    """
    payload = await request.body()
    if not verify_billing_signature(payload, request.headers.get("Billing-Signature"), BILLING_WEBHOOK_SECRET):
        logger.warning("Rejected billing webhook with invalid signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    event = await read_json(request)
    outcome = billing_events.handle_billing_event(event)
    return {"received": True, "handled": outcome["handled"], "subscription_id": outcome["subscription_id"]}


# -------------------
# CRON
# -------------------
@app.post("/cron/generate-jobs")
async def generate_jobs_endpoint(request: Request):
    """Nightly job generation. Optional body: {"today": "YYYY-MM-DD", "look_ahead_days": 14}."""
    body = await request.body()
    data = await read_json(request) if body else {}

    try:
        run_date = parse_date(data.get("today")) or business_today()
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date {data.get('today')!r}")

    look_ahead = data.get("look_ahead_days")
    if look_ahead is not None and (not isinstance(look_ahead, int) or look_ahead < 1):
        raise HTTPException(status_code=400, detail="look_ahead_days must be a positive integer")

    totals = materializer.generate_jobs_for_active_subscriptions(
        run_date, look_ahead_days=look_ahead, org_id=org_of(request), actor=request.headers.get("X-Actor") or "cron",
    )
    return dict(totals, today=run_date.isoformat())
