"""
HTTP surface for club submissions, admin review and snapshot maintenance.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    ClubListResponse,
    ClubUpdateRequest,
    DecisionRequest,
    HealthResponse,
    IntakeResponse,
    MigrateRequest,
    SubmissionCreateRequest,
    SubmissionListResponse,
)
from ..core import config, dao
from ..core.approval import approval_workflow
from ..core.db import health_check, init_db
from ..core.errors import ClubMapError, NotFoundError, PayloadValidationError, StoreUnavailableError
from ..core.intake import intake_service
from ..core.intake_buffer import intake_buffer
from ..core.reconcile import reconciler
from ..core.schema import OriginMetadata, SubmissionStatus
from ..core.search_service import snapshot_reader
from ..core.snapshot import migrate, project, shutdown_executor, snapshot_synchronizer
from util.logging import logger

CLUB_SEARCH_LIMIT = 20

# Readers drop their cached snapshot whenever a rebuild lands
snapshot_synchronizer.subscribe(snapshot_reader.invalidate)


@asynccontextmanager
async def lifespan(app: FastAPI):
    issues = config.validate_config()
    if issues:
        logger.warning(f"Configuration issues: {issues}")
    init_db()
    yield
    shutdown_executor(wait=True)


app = FastAPI(
    title="ClubMap Submission API",
    version=config.VERSION,
    description="Club submissions, admin review and clubs.json synchronization",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def require_actor(x_admin_user: Optional[str]) -> str:
    """Reviewer identity from the X-Admin-User header (set by the auth proxy)."""
    if not x_admin_user or not x_admin_user.strip():
        raise PayloadValidationError("X-Admin-User header is required")
    return x_admin_user.strip()


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    submission_count = pending_count = club_count = 0
    if db_health:
        try:
            submission_count = dao.count_submissions()
            pending_count = dao.count_submissions(SubmissionStatus.PENDING)
            club_count = dao.count_published_records()
        except StoreUnavailableError:
            db_health = False

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=config.VERSION,
        db_health=db_health,
        submission_count=submission_count,
        pending_count=pending_count,
        club_count=club_count,
        intake_pending=intake_buffer.pending_count(),
    )


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------

@app.post("/api/submissions", response_model=IntakeResponse, status_code=201)
def create_submission_endpoint(body: SubmissionCreateRequest, request: Request):
    """Accept a user submission. 201 when stored, 202 when held for reconciliation."""
    origin = OriginMetadata(
        submitter_email=body.submitter_email,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    result = intake_service.submit(
        body.to_payload(), origin, kind=body.kind, target_record_id=body.editing_club_id
    )

    if result.stored:
        message = "Submission received and queued for review"
    else:
        message = "Submission received; it will appear in the review queue shortly"

    response = IntakeResponse(
        receipt=result.receipt,
        status=result.status,
        submission_id=result.submission_id,
        duplicate_check=result.duplicate_check.to_dict(),
        message=message,
    )
    return JSONResponse(status_code=201 if result.stored else 202, content=response.model_dump())


@app.get("/api/submissions", response_model=SubmissionListResponse)
def list_submissions_endpoint(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
    sort: str = "-submitted_at",
    x_admin_user: Optional[str] = Header(default=None),
):
    require_actor(x_admin_user)
    result = dao.list_submissions(status=status, search=search, page=page, page_size=page_size, sort=sort)
    return SubmissionListResponse(
        items=[s.to_dict() for s in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
    )


@app.get("/api/submissions/{submission_id}")
def get_submission_endpoint(submission_id: str, x_admin_user: Optional[str] = Header(default=None)):
    require_actor(x_admin_user)
    submission = dao.get_submission(submission_id)
    return {"success": True, "data": submission.to_dict()}


@app.post("/api/submissions/{submission_id}/approve")
def approve_submission_endpoint(submission_id: str, x_admin_user: Optional[str] = Header(default=None)):
    actor = require_actor(x_admin_user)
    result = approval_workflow.approve(submission_id, actor)
    return {"success": True, "message": "Submission approved", "data": result.to_dict()}


@app.post("/api/submissions/{submission_id}/reject")
def reject_submission_endpoint(submission_id: str, decision: DecisionRequest,
                               x_admin_user: Optional[str] = Header(default=None)):
    actor = require_actor(x_admin_user)
    result = approval_workflow.reject(submission_id, actor, decision.reason or "")
    return {"success": True, "message": "Submission rejected", "data": result.to_dict()}


# ---------------------------------------------------------------------------
# Published clubs
# ---------------------------------------------------------------------------

@app.get("/api/clubs", response_model=ClubListResponse)
def list_clubs_endpoint(search: Optional[str] = None):
    """Published clubs from the store; at most 20 when searching."""
    limit = CLUB_SEARCH_LIMIT if search and search.strip() else None
    records = dao.list_published_records(search=search, limit=limit)
    data = [project(r) for r in records]
    return ClubListResponse(count=len(data), data=data)


# Declared before /api/clubs/{record_id} so "search" is not taken as an id
@app.get("/api/clubs/search", response_model=ClubListResponse)
def search_clubs_endpoint(q: str = "", limit: int = Query(default=10, ge=1, le=50)):
    """Search the published snapshot (edit-mode lookup)."""
    data = snapshot_reader.search(q, limit=limit)
    return ClubListResponse(count=len(data), data=data)


@app.get("/api/clubs/{record_id}")
def get_club_endpoint(record_id: str):
    record = dao.get_published_record(record_id)
    return {"success": True, "data": project(record)}


@app.put("/api/clubs/{record_id}")
def update_club_endpoint(record_id: str, body: ClubUpdateRequest,
                         x_admin_user: Optional[str] = Header(default=None)):
    actor = require_actor(x_admin_user)
    record = approval_workflow.update_record(record_id, body.to_changes(), actor)
    return {"success": True, "message": "Club updated", "data": record.to_dict()}


@app.delete("/api/clubs/{record_id}")
def delete_club_endpoint(record_id: str, x_admin_user: Optional[str] = Header(default=None)):
    actor = require_actor(x_admin_user)
    approval_workflow.delete_record(record_id, actor)
    return {"success": True, "message": "Club deleted"}


# ---------------------------------------------------------------------------
# Admin maintenance
# ---------------------------------------------------------------------------

@app.post("/api/admin/sync")
def sync_snapshot_endpoint(x_admin_user: Optional[str] = Header(default=None)):
    """Rebuild clubs.json now and wait for it."""
    require_actor(x_admin_user)
    result = snapshot_synchronizer.rebuild()
    return {"success": True, "data": result.to_dict()}


@app.post("/api/admin/reconcile")
def reconcile_endpoint(grace_sec: Optional[float] = Query(default=None, ge=0),
                       x_admin_user: Optional[str] = Header(default=None)):
    require_actor(x_admin_user)
    summary = reconciler.sweep(grace_sec)
    return {"success": not summary.aborted, "data": summary.to_dict()}


@app.post("/api/admin/migrate")
def migrate_endpoint(body: MigrateRequest, x_admin_user: Optional[str] = Header(default=None)):
    """Load an existing snapshot file into the store."""
    require_actor(x_admin_user)
    try:
        summary = migrate(body.source_path)
    except FileNotFoundError as e:
        raise NotFoundError(f"Snapshot file not found: {e.filename}") from e
    except ValueError as e:
        raise PayloadValidationError(f"Snapshot file is not usable: {e}") from e

    try:
        snapshot_synchronizer.trigger()
    except RuntimeError as e:
        logger.log_sync("trigger", "failed", {"error": str(e)})
    return {"success": True, "data": summary.to_dict()}


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

@app.exception_handler(ClubMapError)
async def clubmap_error_handler(request, exc: ClubMapError):
    """Map pipeline errors to their HTTP status with a uniform body."""
    if exc.http_status >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    error = PayloadValidationError("Request validation failed", {"errors": errors})
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"success": False, "error": "INTERNAL", "message": "Internal server error", "details": {}}
    if config.debug_enabled():
        content["details"] = {"debug": str(exc)}
    return JSONResponse(status_code=500, content=content)
