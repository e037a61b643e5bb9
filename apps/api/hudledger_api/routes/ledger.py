"""Ledger routes."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from hudledger_api.access.types import Principal
from hudledger_api.auth.context import get_organization_id, get_principal
from hudledger_api.db.session import get_db
from hudledger_api.ledger.service import LedgerService
from hudledger_api.ledger.types import EntryDraft, TransactionType
from hudledger_api.services.audit import AuditAction, log_event

router = APIRouter(prefix="/v1/ledger", tags=["ledger"])

PERIOD_REGEX = r"^\d{4}-(0[1-9]|1[0-2])$"


class EntryCreate(BaseModel):
    """Ledger entry append request."""

    property_id: str = Field(min_length=1, max_length=36)
    unit_id: str = Field(min_length=1, max_length=36)
    tenant_id: Optional[str] = Field(default=None, max_length=36)
    transaction_type: TransactionType
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    description: str = Field(min_length=1, max_length=500)
    accounting_period: str = Field(pattern=PERIOD_REGEX)
    adjusts_entry_id: Optional[str] = None


class EntryResponse(BaseModel):
    """Ledger entry response."""

    id: str
    organization_id: str
    chain_sequence: int
    property_id: str
    unit_id: str
    tenant_id: Optional[str]
    transaction_type: str
    amount: Decimal
    description: str
    accounting_period: str
    is_period_closed: bool
    adjusts_entry_id: Optional[str]
    cryptographic_hash: str
    previous_hash: str
    created_at: datetime
    created_by: str

    class Config:
        from_attributes = True


class VerifyRequest(BaseModel):
    """Chain verification request; omit bounds to verify the whole chain."""

    from_entry_id: Optional[str] = None
    to_entry_id: Optional[str] = None


class VerificationResponse(BaseModel):
    organization_id: str
    is_valid: bool
    total_entries: int
    first_broken_entry_id: Optional[str] = None
    first_broken_sequence: Optional[int] = None
    failure: Optional[str] = None
    message: str
    checked_at: datetime


class PeriodCloseResponse(BaseModel):
    organization_id: str
    accounting_period: str
    entries_closed: int


class ComplianceHealthResponse(BaseModel):
    organization_id: str
    health_score: int
    total_entries: int
    closed_periods: int
    open_periods: int
    last_entry_at: Optional[datetime] = None


class ExportResponse(BaseModel):
    verification: VerificationResponse
    entries: list[EntryResponse]


def _verification_response(result) -> VerificationResponse:
    return VerificationResponse(
        organization_id=result.organization_id,
        is_valid=result.is_valid,
        total_entries=result.total_entries,
        first_broken_entry_id=result.first_broken_entry_id,
        first_broken_sequence=result.first_broken_sequence,
        failure=result.failure,
        message=result.message,
        checked_at=result.checked_at,
    )


@router.post("/entries", response_model=EntryResponse, status_code=status.HTTP_201_CREATED)
def append_entry(
    entry_data: EntryCreate,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Append an entry to the caller's organization ledger.

    Sync on purpose: the retry backoff sleeps, which must stay off the event loop.
    """
    draft = EntryDraft(
        organization_id=organization_id,
        property_id=entry_data.property_id,
        unit_id=entry_data.unit_id,
        tenant_id=entry_data.tenant_id,
        transaction_type=entry_data.transaction_type.value,
        amount=entry_data.amount,
        description=entry_data.description,
        accounting_period=entry_data.accounting_period,
        created_by=principal.user_id,
        adjusts_entry_id=entry_data.adjusts_entry_id,
    )
    entry = LedgerService(db).append_with_retry(draft)

    log_event(
        db,
        AuditAction.LEDGER_ENTRY_APPENDED,
        actor_id=principal.user_id,
        organization_id=organization_id,
        resource_type="ledger_entry",
        resource_id=entry.id,
        metadata={
            "transaction_type": entry.transaction_type,
            "amount": str(entry.amount),
            "accounting_period": entry.accounting_period,
            "chain_sequence": entry.chain_sequence,
        },
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return entry


@router.get("/entries", response_model=list[EntryResponse])
async def list_entries(
    from_entry_id: Optional[str] = Query(default=None),
    to_entry_id: Optional[str] = Query(default=None),
    accounting_period: Optional[str] = Query(default=None),
    organization_id: str = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Entries in chain order, by entry range or by accounting period."""
    service = LedgerService(db)
    if accounting_period is not None:
        return service.entries_for_period(organization_id, accounting_period)
    return service.read_range(organization_id, from_entry_id, to_entry_id)


@router.post("/verify", response_model=VerificationResponse)
async def verify_chain(
    request: Request,
    verify_request: Optional[VerifyRequest] = None,
    organization_id: str = Depends(get_organization_id),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Re-verify the caller's ledger chain."""
    verify_request = verify_request or VerifyRequest()
    result = LedgerService(db).verify_chain(
        organization_id,
        verify_request.from_entry_id,
        verify_request.to_entry_id,
    )

    log_event(
        db,
        AuditAction.LEDGER_CHAIN_VERIFIED if result.is_valid else AuditAction.LEDGER_INTEGRITY_VIOLATION,
        actor_id=principal.user_id,
        organization_id=organization_id,
        resource_type="ledger_chain",
        resource_id=result.first_broken_entry_id,
        metadata={
            "is_valid": result.is_valid,
            "total_entries": result.total_entries,
            "failure": result.failure,
        },
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return _verification_response(result)


@router.post("/periods/{accounting_period}/close", response_model=PeriodCloseResponse)
async def close_period(
    accounting_period: str,
    request: Request,
    organization_id: str = Depends(get_organization_id),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Close an accounting period; later postings into it must be adjustments."""
    entries_closed = LedgerService(db).close_period(organization_id, accounting_period, principal.user_id)

    log_event(
        db,
        AuditAction.PERIOD_CLOSED,
        actor_id=principal.user_id,
        organization_id=organization_id,
        resource_type="accounting_period",
        resource_id=accounting_period,
        metadata={"entries_closed": entries_closed},
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return PeriodCloseResponse(
        organization_id=organization_id,
        accounting_period=accounting_period,
        entries_closed=entries_closed,
    )


@router.get("/compliance-health", response_model=ComplianceHealthResponse)
async def compliance_health(
    organization_id: str = Depends(get_organization_id),
    db: Session = Depends(get_db),
):
    """Period-close hygiene score of the caller's organization."""
    health = LedgerService(db).compliance_health(organization_id)
    return ComplianceHealthResponse(
        organization_id=health.organization_id,
        health_score=health.health_score,
        total_entries=health.total_entries,
        closed_periods=health.closed_periods,
        open_periods=health.open_periods,
        last_entry_at=health.last_entry_at,
    )


@router.get("/export", response_model=ExportResponse)
async def export_ledger(
    request: Request,
    from_entry_id: Optional[str] = Query(default=None),
    to_entry_id: Optional[str] = Query(default=None),
    organization_id: str = Depends(get_organization_id),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Verified entry range for an auditor. Fails with 500 on a broken chain."""
    export = LedgerService(db).export_range(organization_id, from_entry_id, to_entry_id)
    response = ExportResponse(
        verification=_verification_response(export.verification),
        entries=[EntryResponse.model_validate(entry) for entry in export.entries],
    )

    log_event(
        db,
        AuditAction.LEDGER_EXPORTED,
        actor_id=principal.user_id,
        organization_id=organization_id,
        resource_type="ledger_chain",
        metadata={"total_entries": len(export.entries)},
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return response
