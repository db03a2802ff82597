"""
stockledger_services.ledger_service -- Append-only balance ledger.

Every stock or financial event writes exactly one LedgerEntryModel row in the
same transaction as the mutation it describes. The category follows from the
type: sale and expense are financial, everything else is inventory.

Summary figures follow the sign conventions of the writers: stock_out
quantities and expense amounts are stored negative, and ``summary`` reports
them as positive totals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger_kernel.domain.clock import Clock, SystemClock
from stockledger_kernel.exceptions import InvalidLedgerEntryError
from stockledger_kernel.logging_config import get_logger
from stockledger_kernel.models.ledger_entry import (
    LedgerCategory,
    LedgerEntryModel,
    LedgerEntryType,
)

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class LedgerSummary:
    total_stock_in: int
    total_stock_out: int
    total_revenue: int
    total_expenses: int

    @property
    def net_profit(self) -> int:
        return self.total_revenue - self.total_expenses


class BalanceLedgerService:
    """Writes and reads balance ledger entries. Never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        tenant_id: UUID,
        entry_type: LedgerEntryType | str,
        description: str,
        product_id: UUID | None = None,
        order_id: UUID | None = None,
        adjustment_id: UUID | None = None,
        quantity: int | None = None,
        amount: int | None = None,
        balance_qty: int | None = None,
        balance_amount: int | None = None,
        reference: str | None = None,
    ) -> LedgerEntryModel:
        try:
            entry_type = LedgerEntryType(entry_type)
        except ValueError:
            raise InvalidLedgerEntryError(f"unknown type {entry_type!r}") from None
        if not description or not description.strip():
            raise InvalidLedgerEntryError("description is required")

        category = entry_type.category
        if category is LedgerCategory.FINANCIAL and (
            balance_qty is not None or balance_amount is not None
        ):
            raise InvalidLedgerEntryError(
                f"{entry_type.value} entries carry no balance snapshot"
            )

        entry = LedgerEntryModel(
            tenant_id=tenant_id,
            product_id=product_id,
            order_id=order_id,
            adjustment_id=adjustment_id,
            type=entry_type.value,
            category=category.value,
            quantity=quantity,
            amount=amount,
            balance_qty=balance_qty,
            balance_amount=balance_amount,
            reference=reference,
            description=description,
            created_at=self._clock.now(),
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "ledger_entry_recorded",
            extra={
                "ledger_entry_id": str(entry.id),
                "entry_type": entry.type,
                "product_id": str(product_id) if product_id else None,
                "quantity": quantity,
                "amount": amount,
                "balance_qty": balance_qty,
            },
        )
        return entry

    def list_entries(
        self,
        tenant_id: UUID,
        entry_type: LedgerEntryType | str | None = None,
        category: LedgerCategory | str | None = None,
        product_id: UUID | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[LedgerEntryModel]:
        """Entries for a tenant, newest first. ``date_to`` is exclusive."""
        stmt = select(LedgerEntryModel).where(LedgerEntryModel.tenant_id == tenant_id)
        if entry_type is not None:
            stmt = stmt.where(LedgerEntryModel.type == LedgerEntryType(entry_type).value)
        if category is not None:
            stmt = stmt.where(LedgerEntryModel.category == LedgerCategory(category).value)
        if product_id is not None:
            stmt = stmt.where(LedgerEntryModel.product_id == product_id)
        if date_from is not None:
            stmt = stmt.where(LedgerEntryModel.created_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(LedgerEntryModel.created_at < date_to)
        stmt = stmt.order_by(
            LedgerEntryModel.created_at.desc(),
            LedgerEntryModel.id.desc(),
        )
        return list(self._session.scalars(stmt))

    def summary(self, tenant_id: UUID) -> LedgerSummary:
        def total(entry_type: LedgerEntryType, column) -> int:
            stmt = select(func.coalesce(func.sum(column), 0)).where(
                LedgerEntryModel.tenant_id == tenant_id,
                LedgerEntryModel.type == entry_type.value,
            )
            return int(self._session.scalar(stmt))

        return LedgerSummary(
            total_stock_in=total(LedgerEntryType.STOCK_IN, LedgerEntryModel.quantity),
            total_stock_out=total(
                LedgerEntryType.STOCK_OUT, func.abs(LedgerEntryModel.quantity)
            ),
            total_revenue=total(LedgerEntryType.SALE, LedgerEntryModel.amount),
            total_expenses=total(
                LedgerEntryType.EXPENSE, func.abs(LedgerEntryModel.amount)
            ),
        )
