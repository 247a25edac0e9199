"""
REST API routes for USB Gate.

Exposes the rule store for inspection and runtime additions, and the
audit log for queries.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Query, status

from usbgate import __version__
from usbgate.api.auth import require_api_key
from usbgate.api.schemas import (
    DecisionListResponse,
    DecisionResponse,
    HealthCheck,
    RuleListResponse,
    RuleSchema,
    RuleSubmission,
    SerialListResponse,
    SerialSubmission,
    SubmissionResponse,
)
from usbgate.policy.admin import submit_rule_lines, submit_serials
from usbgate.policy.models import DenyReason, Verdict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class ServiceDependencies:
    """
    Container for service dependencies.

    Set after app creation to inject the store, engine and audit database.
    """

    store = None  # PolicyStore instance
    engine = None  # AuthorizationEngine instance
    db = None  # AuditDatabase instance
    start_time: float = time.time()


deps = ServiceDependencies()


def get_store():
    """Get policy store instance."""
    if deps.store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Policy store not initialized",
        )
    return deps.store


def get_db():
    """Get audit database instance."""
    if deps.db is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Audit database not enabled",
        )
    return deps.db


@router.get("/health", response_model=HealthCheck, tags=["Health"])
def health_check() -> HealthCheck:
    """Report liveness; no key required."""
    return HealthCheck(
        version=__version__,
        uptime_seconds=time.time() - deps.start_time,
        audit_enabled=deps.db is not None,
    )


@router.get(
    "/rules",
    response_model=RuleListResponse,
    tags=["Policy"],
    dependencies=[Depends(require_api_key)],
)
def list_rules(store=Depends(get_store)) -> RuleListResponse:
    """List allowed identity pairs in insertion order."""
    rules = store.list_rules()
    return RuleListResponse(
        rules=[RuleSchema(**rule.to_dict()) for rule in rules],
        count=len(rules),
        limit=store.max_rules,
    )


@router.post(
    "/rules",
    response_model=SubmissionResponse,
    tags=["Policy"],
    dependencies=[Depends(require_api_key)],
)
def add_rules(body: RuleSubmission, store=Depends(get_store)) -> SubmissionResponse:
    """
    Add identity rules from raw ``"VID PID"`` lines.

    Each line is applied independently; the response reports every line.
    """
    report = submit_rule_lines(store, body.lines)
    logger.info(
        "Rule submission: %d accepted, %d rejected",
        report.accepted, report.rejected,
    )
    return SubmissionResponse(**report.to_dict())


@router.get(
    "/serials",
    response_model=SerialListResponse,
    tags=["Policy"],
    dependencies=[Depends(require_api_key)],
)
def list_serials(store=Depends(get_store)) -> SerialListResponse:
    """List blocked serials in insertion order."""
    serials = store.list_blocked_serials()
    return SerialListResponse(
        serials=list(serials),
        count=len(serials),
        limit=store.max_serials,
    )


@router.post(
    "/serials",
    response_model=SubmissionResponse,
    tags=["Policy"],
    dependencies=[Depends(require_api_key)],
)
def add_serials(body: SerialSubmission, store=Depends(get_store)) -> SubmissionResponse:
    """Block serial numbers; each entry is applied independently."""
    report = submit_serials(store, body.serials)
    logger.info(
        "Serial submission: %d accepted, %d rejected",
        report.accepted, report.rejected,
    )
    return SubmissionResponse(**report.to_dict())


@router.get(
    "/decisions",
    response_model=DecisionListResponse,
    tags=["Audit"],
    dependencies=[Depends(require_api_key)],
)
def list_decisions(
    decision: Verdict | None = None,
    reason: DenyReason | None = None,
    vendor_id: str | None = Query(None, pattern=r"^[0-9a-fA-F]{4}$"),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
    db=Depends(get_db),
) -> DecisionListResponse:
    """Query the decision log, newest first."""
    filters = {}
    if decision is not None:
        filters["decision"] = decision.value
    if reason is not None:
        filters["reason"] = reason.value
    if vendor_id is not None:
        filters["vendor_id"] = vendor_id

    rows, total = db.list_decisions(filters=filters, offset=offset, limit=limit)
    return DecisionListResponse(
        decisions=[DecisionResponse.model_validate(row) for row in rows],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.get(
    "/statistics",
    tags=["Audit"],
    dependencies=[Depends(require_api_key)],
)
def statistics() -> dict:
    """Engine counters, store occupancy and audit totals."""
    result: dict = {}
    if deps.engine is not None:
        result["engine"] = deps.engine.get_statistics()
    elif deps.store is not None:
        result["store"] = deps.store.get_statistics()
    if deps.db is not None:
        result["audit"] = deps.db.get_statistics()
    return result
