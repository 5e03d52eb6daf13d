"""
HTTP surface over the downtime sheet core.

Each endpoint is one user action on the orchestrator. Errors raised by the
core are mapped to HTTP statuses by the exception handlers at the bottom.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    AppendResultModel,
    AuthCallbackRequest,
    AuthCallbackResponse,
    AuthErrorRequest,
    AuthStatusResponse,
    BillingStatusRequest,
    BillingStatusResponse,
    DowntimeRequest,
    EndTimeRequest,
    EscalationRequest,
    HealthResponse,
    PhaseCreateRequest,
    PhaseListResponse,
    PhaseResponse,
    ProviderStatusModel,
    RecordModel,
    TabListResponse,
    ViewResponse,
    WriteResponse,
)
from ..core import config
from ..core.auth import CallbackAuthenticator, CredentialProvider, TokenManager
from ..core.classify import (
    DOWNTIME,
    ESCALATION,
    NO_UPTIME,
    due_date,
    paginate,
    provider_status,
    record_duration,
    summarize_billing,
    upcoming_due,
)
from ..core.db import health_check
from ..core.errors import (
    AccessDenied,
    AppendConflict,
    AuthFailed,
    BadRequest,
    BatchWriteFailed,
    ConfigurationError,
    Malformed,
    NotFound,
    OperationCancelled,
    SheetsError,
    StaleRecord,
    TransientError,
)
from ..core.orchestrator import DowntimeOrchestrator
from ..core.registry import PhaseRegistry
from ..core.schema import BillingProvider, Phase, Record, WriteOutcome
from ..core.sheets_client import SheetsClient
from ..util.logging import logger

app = FastAPI(
    title="Downtime Sheet API",
    version=config.VERSION,
    description="Phase registry, downtime views and batched writes over Google Sheets",
    docs_url="/docs" if config.debug_enabled() else None,
    redoc_url="/redoc" if config.debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Process-wide services, built on first use
_orchestrator: Optional[DowntimeOrchestrator] = None
_authenticator: Optional[CallbackAuthenticator] = None


def get_authenticator() -> CallbackAuthenticator:
    global _authenticator
    if _authenticator is None:
        _authenticator = CallbackAuthenticator()
    return _authenticator


def get_orchestrator() -> DowntimeOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        token_manager = TokenManager(CredentialProvider(), get_authenticator())
        _orchestrator = DowntimeOrchestrator(PhaseRegistry(), SheetsClient(), token_manager)
    return _orchestrator


def _phase_response(phase: Phase) -> PhaseResponse:
    return PhaseResponse(
        id=phase.id,
        name=phase.name,
        spreadsheet_id=phase.spreadsheet_id,
        default_tab_name=phase.default_tab_name,
        created_at=phase.created_at
    )


def _write_response(outcome: WriteOutcome) -> WriteResponse:
    return WriteResponse(
        tab_name=outcome.tab_name,
        ranges_written=outcome.ranges_written,
        target_rows=outcome.target_rows,
        record_count=len(outcome.records),
        results=[
            AppendResultModel(site_code=r.site_code, status=r.status, row=r.row, message=r.message)
            for r in outcome.results
        ]
    )


async def _selected_record(orchestrator: DowntimeOrchestrator, phase: str, tab: str,
                           header_row: int, row_number: int, fields) -> Record:
    """The record the caller acted on; looked up in the cached snapshot when fields are omitted."""
    if fields:
        return Record(row_number=row_number, fields=dict(fields))
    snapshot = await orchestrator.load_tab(phase, tab, header_row)
    record = snapshot.record_at(row_number)
    if record is None:
        raise NotFound(f"Row {row_number} is not a record of '{tab}'")
    return record


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    """Check system health."""
    db_health = health_check(orchestrator.registry.db_path)
    phase_count = len(orchestrator.list_phases()) if db_health else 0

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=config.VERSION,
        db_health=db_health,
        phase_count=phase_count,
        config_issues=config.validate_config()
    )


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------
@app.get("/phases", response_model=PhaseListResponse)
def list_phases_endpoint(orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    return PhaseListResponse(phases=[_phase_response(p) for p in orchestrator.list_phases()])


@app.post("/phases", response_model=PhaseResponse, status_code=201)
def create_phase_endpoint(request: PhaseCreateRequest,
                          orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    """Register a phase. Duplicate names and bad links are rejected with 400."""
    phase = orchestrator.registry.add_phase(request.name, request.sheets_link, request.sheet_name)
    return _phase_response(phase)


@app.delete("/phases/{name}")
def delete_phase_endpoint(name: str, orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    """Remove the phase binding. The spreadsheet itself is not touched."""
    if not orchestrator.registry.delete_phase(name):
        raise HTTPException(status_code=404, detail=f"Phase not found: {name}")
    return {"success": True, "name": name}


@app.get("/phases/{name}/tabs", response_model=TabListResponse)
async def list_tabs_endpoint(name: str, orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    tabs = await orchestrator.list_tabs(name)
    return TabListResponse(phase=name, tabs=tabs)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------
@app.get("/phases/{name}/tabs/{tab}/views/{view}", response_model=ViewResponse)
async def view_endpoint(name: str, tab: str, view: str,
                        search: str = "",
                        project: str = "",
                        page: int = Query(1, ge=1),
                        per_page: int = Query(10, ge=1, le=500),
                        header_row: Optional[int] = Query(None, ge=0),
                        refresh: bool = False,
                        orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    """
    Records of a tab reconciled into one view.

    ``no-uptime``: downtimes without an end. ``escalation``: rows missing a
    cause or action plan. ``downtime``: every row with a start or end.
    """
    if view not in (NO_UPTIME, ESCALATION, DOWNTIME):
        raise HTTPException(status_code=404, detail=f"Unknown view: {view}")

    result = await orchestrator.load_view(name, tab, view, header_row_index=header_row,
                                          search=search, project=project, refresh=refresh)
    page_records, total_pages = paginate(result.records, page, per_page)

    records = []
    for record in page_records:
        duration = record_duration(record, result.bindings) if view != ESCALATION else None
        records.append(RecordModel(
            row_number=record.row_number,
            fields=record.fields,
            tags=sorted(record.tags),
            duration=duration
        ))

    return ViewResponse(
        view=view,
        tab_name=result.tab_name,
        headers=list(result.snapshot.schema.headers),
        columns={n: h for n, (h, _) in result.bindings.columns.items()},
        total=result.total,
        matched=len(result.records),
        page=page,
        total_pages=total_pages,
        records=records
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
@app.post("/phases/{name}/tabs/{tab}/end-time", response_model=WriteResponse)
async def end_time_endpoint(name: str, tab: str, request: EndTimeRequest,
                            orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    header_row = config.NO_UPTIME_HEADER_ROW
    record = await _selected_record(orchestrator, name, tab, header_row, request.row_number, request.fields)
    outcome = await orchestrator.update_end_time(name, tab, record, request.end_time, header_row_index=header_row)
    return _write_response(outcome)


@app.post("/phases/{name}/tabs/{tab}/escalation", response_model=WriteResponse)
async def escalation_endpoint(name: str, tab: str, request: EscalationRequest,
                              orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    header_row = config.ESCALATION_HEADER_ROW
    records = [
        await _selected_record(orchestrator, name, tab, header_row, r.row_number, r.fields)
        for r in request.records
    ]
    outcome = await orchestrator.update_escalation(name, tab, records, cause=request.cause,
                                                   action_plan=request.action_plan,
                                                   header_row_index=header_row)
    return _write_response(outcome)


@app.post("/phases/{name}/tabs/{tab}/downtime", response_model=WriteResponse)
async def downtime_endpoint(name: str, tab: str, request: DowntimeRequest,
                            orchestrator: DowntimeOrchestrator = Depends(get_orchestrator)):
    """Append one downtime row per site. Per-site failures come back in ``results``."""
    outcome = await orchestrator.add_downtime(name, tab, request.site_codes, request.start,
                                              end=request.end, cause=request.cause)
    return _write_response(outcome)


# ---------------------------------------------------------------------------
# Delegated authentication
# ---------------------------------------------------------------------------
@app.get("/auth/status", response_model=AuthStatusResponse)
def auth_status_endpoint(orchestrator: DowntimeOrchestrator = Depends(get_orchestrator),
                         authenticator: CallbackAuthenticator = Depends(get_authenticator)):
    status = orchestrator.token_manager.status()
    consent = authenticator.consent_request()
    return AuthStatusResponse(
        state=status["state"],
        expires_at_ms=status["expires_at_ms"],
        pending=authenticator.pending,
        client_id=consent["client_id"],
        scope=consent["scope"]
    )


@app.post("/auth/callback", response_model=AuthCallbackResponse)
async def auth_callback_endpoint(request: AuthCallbackRequest,
                                 orchestrator: DowntimeOrchestrator = Depends(get_orchestrator),
                                 authenticator: CallbackAuthenticator = Depends(get_authenticator)):
    """Token delivered by the consent UI. Resumes a waiting write if there is one."""
    delivered = authenticator.complete(request.access_token, request.expires_in_ms)
    if not delivered:
        orchestrator.token_manager.accept(request.access_token, request.expires_in_ms)

    return AuthCallbackResponse(
        accepted=True,
        delivered_to_pending_write=delivered,
        state=orchestrator.token_manager.state()
    )


@app.post("/auth/error")
async def auth_error_endpoint(request: AuthErrorRequest,
                              authenticator: CallbackAuthenticator = Depends(get_authenticator)):
    """Consent was refused or failed; the waiting write fails with 401."""
    failed = authenticator.fail(request.error)
    if not failed:
        raise HTTPException(status_code=409, detail="No authentication flow is waiting")
    return {"success": True}


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------
@app.post("/billing/status", response_model=BillingStatusResponse)
def billing_status_endpoint(request: BillingStatusRequest):
    """Due status per provider plus the dashboard totals."""
    providers = [BillingProvider(**p.model_dump()) for p in request.providers]
    now = request.now.replace(tzinfo=None) if request.now else datetime.now()
    summary = summarize_billing(providers, now)
    flagged = upcoming_due(providers, now)

    statuses: List[ProviderStatusModel] = []
    for provider in providers:
        statuses.append(ProviderStatusModel(
            name=provider.name,
            status=provider_status(provider, now),
            due_date=due_date(provider.due_day, provider.last_paid_month, now).date(),
            monthly_payment=provider.monthly_payment
        ))

    return BillingStatusResponse(
        total_revenue=summary.total_revenue,
        pending_payments=summary.pending_payments,
        active_providers=summary.active_providers,
        overdue_count=summary.overdue_count,
        paid_this_month=summary.paid_this_month,
        providers=statuses,
        upcoming_due=[p.name for p in flagged]
    )


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
ERROR_STATUS = (
    (NotFound, 404),
    (AccessDenied, 403),
    (Malformed, 422),
    (BadRequest, 400),
    (AuthFailed, 401),
    (BatchWriteFailed, 502),
    (AppendConflict, 409),
    (StaleRecord, 409),
    (OperationCancelled, 409),
    (ConfigurationError, 500),
    (TransientError, 503),
)


def status_for(exc: SheetsError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 502


@app.exception_handler(SheetsError)
async def sheets_error_handler(request, exc: SheetsError):
    status_code = status_for(exc)
    logger.log_operation("api.error", "failed" if status_code >= 500 else "rejected", {
        "path": request.url.path,
        "error": type(exc).__name__,
        "status": status_code
    })
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "error": type(exc).__name__})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if config.debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)
