"""Credit ledger: the only mutation path for organization balances.

Every balance change is one transaction that locks the organization row,
updates the balance and appends exactly one ledger entry, so the balance
always equals the sum of the organization's entries.
"""

from dataclasses import dataclass
from typing import AsyncContextManager, Optional
from uuid import UUID

import structlog

from lumen.models.credit_ledger import CreditLedgerEntry, LedgerEntryType
from lumen.services.exceptions import (
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
)
from lumen.services.generation.locks import KeyedLock
from lumen.uow import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a balance change.

    entry is None for zero-amount deductions, which write nothing.
    """

    balance: int
    entry: Optional[CreditLedgerEntry]


class CreditLedgerService:
    """Atomic credit deductions and top-ups.

    In-process per-organization locks serialize callers before they reach the
    database row lock, so concurrent deductions succeed in lock-acquisition
    order and never overdraw the balance.
    """

    def __init__(self, uow_factory):
        self.uow_factory = uow_factory
        self._locks = KeyedLock()

    def locked(self, organization_id: UUID) -> AsyncContextManager[None]:
        """Hold the organization's ledger lock (required around deduct_within)."""
        return self._locks.acquire(organization_id)

    async def deduct(
        self,
        organization_id: UUID,
        amount: int,
        reason: str,
        user_id: Optional[UUID] = None,
        job_id: Optional[UUID] = None,
    ) -> LedgerResult:
        """Deduct credits in a transaction of its own.

        Raises:
            ValidationError: Negative amount
            NotFoundError: Unknown organization
            InsufficientCreditsError: Balance below amount (nothing is changed)
        """
        async with self.locked(organization_id):
            async with await self.uow_factory() as uow:
                return await self.deduct_within(
                    uow, organization_id, amount, reason, user_id=user_id, job_id=job_id
                )

    async def deduct_within(
        self,
        uow: UnitOfWork,
        organization_id: UUID,
        amount: int,
        reason: str,
        user_id: Optional[UUID] = None,
        job_id: Optional[UUID] = None,
    ) -> LedgerResult:
        """Deduct credits inside the caller's unit of work.

        The caller must hold `locked(organization_id)`; the deduction commits
        or rolls back together with the caller's other changes.
        """
        if amount < 0:
            raise ValidationError(f"deduction amount must be >= 0, got {amount}")

        organization = await uow.organizations.get_for_update(organization_id)
        if organization is None:
            raise NotFoundError(f"organization not found: {organization_id}")

        if organization.credits < amount:
            raise InsufficientCreditsError(available=organization.credits, required=amount)

        if amount == 0:
            return LedgerResult(balance=organization.credits, entry=None)

        if not await uow.organizations.debit(organization_id, amount):
            await uow.session.refresh(organization)
            raise InsufficientCreditsError(available=organization.credits, required=amount)

        entry = await uow.credit_ledger.add(
            CreditLedgerEntry(
                organization_id=organization_id,
                user_id=user_id,
                amount=-amount,
                entry_type=LedgerEntryType.GENERATION,
                description=reason,
                job_id=job_id,
            )
        )
        balance = organization.credits - amount

        logger.info(
            "credits.deducted",
            organization_id=str(organization_id),
            amount=amount,
            balance=balance,
            job_id=str(job_id) if job_id else None,
        )
        return LedgerResult(balance=balance, entry=entry)

    async def credit(
        self,
        organization_id: UUID,
        amount: int,
        entry_type: LedgerEntryType = LedgerEntryType.GRANT,
        description: str = "",
        user_id: Optional[UUID] = None,
    ) -> LedgerResult:
        """Add credits (grant, purchase or refund).

        Raises:
            ValidationError: Non-positive amount or a generation entry type
            NotFoundError: Unknown organization
        """
        if amount <= 0:
            raise ValidationError(f"credit amount must be > 0, got {amount}")
        if entry_type == LedgerEntryType.GENERATION:
            raise ValidationError("generation entries are written by deductions only")

        async with self.locked(organization_id):
            async with await self.uow_factory() as uow:
                organization = await uow.organizations.get_for_update(organization_id)
                if organization is None:
                    raise NotFoundError(f"organization not found: {organization_id}")

                await uow.organizations.credit(organization_id, amount)
                entry = await uow.credit_ledger.add(
                    CreditLedgerEntry(
                        organization_id=organization_id,
                        user_id=user_id,
                        amount=amount,
                        entry_type=entry_type,
                        description=description or entry_type.value,
                    )
                )
                balance = organization.credits + amount

        logger.info(
            "credits.added",
            organization_id=str(organization_id),
            amount=amount,
            entry_type=entry_type.value,
            balance=balance,
        )
        return LedgerResult(balance=balance, entry=entry)

    async def balance(self, organization_id: UUID) -> int:
        """Current balance.

        Raises:
            NotFoundError: Unknown organization
        """
        async with await self.uow_factory() as uow:
            organization = await uow.organizations.get_by_id(organization_id)
            if organization is None:
                raise NotFoundError(f"organization not found: {organization_id}")
            return organization.credits

    async def history(
        self, organization_id: UUID, limit: int = 50, offset: int = 0
    ) -> list[CreditLedgerEntry]:
        """Ledger entries for an organization, newest first."""
        async with await self.uow_factory() as uow:
            return await uow.credit_ledger.list_by_organization(
                organization_id, limit=limit, offset=offset
            )
