"""Read-only API router for compliance-audit-core.

Routes are thin. All logic lives in AuditTrail and SnapshotEngine, which are
placed on ``app.state`` by the application lifespan. There is no write or
edit affordance here.

Endpoints:
- GET /audit/{entity_type}/{entity_id} - paginated, reverse-chronological history
- GET /snapshots/{id}/export - immutable snapshot document with hash
- GET /snapshots/{id}/verify - integrity verification (409 on tamper)
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from compliance_audit_core.api.schemas import (
    AuditHistoryResponse,
    ErrorResponse,
    SnapshotExportResponse,
    SnapshotVerificationResponse,
)
from compliance_audit_core.audit_trail.trail import AuditTrail
from compliance_audit_core.errors import (
    ComplianceAuditError,
    ConcurrencyConflictError,
    InvalidAmountError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    TamperDetectedError,
)
from compliance_audit_core.observability import get_logger
from compliance_audit_core.snapshots.engine import SnapshotEngine

logger = get_logger(__name__)

router = APIRouter(tags=["compliance-audit"])


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def get_audit_trail(request: Request) -> AuditTrail:
    return request.app.state.audit_trail


def get_snapshot_engine(request: Request) -> SnapshotEngine:
    return request.app.state.snapshot_engine


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def status_for(error: ComplianceAuditError) -> int:
    """Map an engine error onto an HTTP status code.

    Tamper detection is a conflict between stored content and its hash,
    never a 404.
    """
    if isinstance(error, TamperDetectedError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (InvalidTransitionError, ConcurrencyConflictError)):
        return status.HTTP_409_CONFLICT
    if isinstance(error, InvalidAmountError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, PersistenceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def compliance_error_handler(request: Request, exc: ComplianceAuditError) -> JSONResponse:
    """FastAPI exception handler for ComplianceAuditError."""
    code = status_for(exc)
    log = logger.critical if exc.severity == "critical" else logger.warning
    log("Request failed", path=request.url.path, error=exc.code, status_code=code)
    body = ErrorResponse(**exc.to_dict())
    return JSONResponse(status_code=code, content=body.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Audit history
# ---------------------------------------------------------------------------


@router.get(
    "/audit/{entity_type}/{entity_id}",
    response_model=AuditHistoryResponse,
    summary="Read an entity's audit history",
)
async def get_audit_history(
    entity_type: str,
    entity_id: str,
    trail: Annotated[AuditTrail, Depends(get_audit_trail)],
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> AuditHistoryResponse:
    """Return one page of history keyed by (entity_type, entity_id), newest first."""
    history = await trail.history(entity_type, entity_id, page=page, page_size=page_size)
    return AuditHistoryResponse.from_page(history)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@router.get(
    "/snapshots/{snapshot_id}/export",
    response_model=SnapshotExportResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Export a verified snapshot document",
)
async def export_snapshot(
    snapshot_id: str,
    engine: Annotated[SnapshotEngine, Depends(get_snapshot_engine)],
) -> SnapshotExportResponse:
    export = await engine.export(snapshot_id)
    return SnapshotExportResponse.from_export(export)


@router.get(
    "/snapshots/{snapshot_id}/verify",
    response_model=SnapshotVerificationResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Verify a snapshot's content hash",
)
async def verify_snapshot(
    snapshot_id: str,
    engine: Annotated[SnapshotEngine, Depends(get_snapshot_engine)],
) -> SnapshotVerificationResponse:
    verification = await engine.verify(snapshot_id)
    return SnapshotVerificationResponse.from_verification(verification)
