"""Credit balance endpoints.

- GET /api/v1/credits - Balance and recent ledger entries of the caller's organization
- POST /api/v1/admin/credits - Grant, purchase or refund credits for the caller's organization (admin only)
"""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from lumen.api.dependencies import (
    Identity,
    get_identity,
    get_ledger,
    http_error,
    require_admin,
)
from lumen.models.credit_ledger import CreditLedgerEntry, LedgerEntryType
from lumen.services.billing.ledger import CreditLedgerService
from lumen.services.exceptions import ServiceError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["credits"])


class LedgerEntryDTO(BaseModel):
    id: UUID
    amount: int
    entry_type: str
    description: str
    job_id: Optional[UUID]
    user_id: Optional[UUID]
    created_at: datetime

    @classmethod
    def from_model(cls, entry: CreditLedgerEntry) -> "LedgerEntryDTO":
        return cls(
            id=entry.id,
            amount=entry.amount,
            entry_type=entry.entry_type.value,
            description=entry.description,
            job_id=entry.job_id,
            user_id=entry.user_id,
            created_at=entry.created_at,
        )


class CreditsResponse(BaseModel):
    balance: int
    entries: list[LedgerEntryDTO]


class GrantCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0)
    entry_type: Literal["grant", "purchase", "refund"] = "grant"
    description: str = Field(default="", max_length=1000)


class GrantCreditsResponse(BaseModel):
    balance: int
    entry: LedgerEntryDTO


@router.get("/credits", response_model=CreditsResponse)
async def get_credits(
    limit: int = Query(default=20, ge=1, le=100),
    identity: Identity = Depends(get_identity),
    ledger: CreditLedgerService = Depends(get_ledger),
) -> CreditsResponse:
    try:
        balance = await ledger.balance(identity.organization_id)
    except ServiceError as e:
        raise http_error(e)
    entries = await ledger.history(identity.organization_id, limit=limit)
    return CreditsResponse(
        balance=balance, entries=[LedgerEntryDTO.from_model(entry) for entry in entries]
    )


@router.post("/admin/credits", response_model=GrantCreditsResponse)
async def grant_credits(
    body: GrantCreditsRequest,
    identity: Identity = Depends(require_admin),
    ledger: CreditLedgerService = Depends(get_ledger),
) -> GrantCreditsResponse:
    organization_id = identity.organization_id
    try:
        result = await ledger.credit(
            organization_id,
            body.amount,
            entry_type=LedgerEntryType(body.entry_type),
            description=body.description,
            user_id=identity.user_id,
        )
    except ServiceError as e:
        raise http_error(e)

    logger.info(
        "credits.granted",
        organization_id=str(organization_id),
        amount=body.amount,
        by_user=str(identity.user_id),
    )
    assert result.entry is not None
    return GrantCreditsResponse(balance=result.balance, entry=LedgerEntryDTO.from_model(result.entry))
