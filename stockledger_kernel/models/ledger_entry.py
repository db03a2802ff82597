"""
Balance ledger: one row per stock or financial event.

Inventory entries (stock_in, stock_out, adjustment) carry signed quantity and
amount plus ``balance_qty`` / ``balance_amount`` snapshots of the product after
the event. Financial entries (sale, expense) carry an amount only. Rows are
written in the same transaction as the mutation they describe and are never
updated or deleted.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stockledger_kernel.db.base import Base, UUIDString


class LedgerEntryType(str, Enum):
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    SALE = "sale"
    EXPENSE = "expense"
    ADJUSTMENT = "adjustment"

    @property
    def category(self) -> "LedgerCategory":
        if self in (LedgerEntryType.SALE, LedgerEntryType.EXPENSE):
            return LedgerCategory.FINANCIAL
        return LedgerCategory.INVENTORY


class LedgerCategory(str, Enum):
    INVENTORY = "inventory"
    FINANCIAL = "financial"


class LedgerEntryModel(Base):
    __tablename__ = "ledger_entries"

    __table_args__ = (
        Index("idx_ledger_tenant_type", "tenant_id", "type"),
        Index("idx_ledger_tenant_category", "tenant_id", "category"),
        Index("idx_ledger_tenant_product", "tenant_id", "product_id"),
        Index("idx_ledger_created_at", "created_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=True,
    )

    order_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    adjustment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)

    category: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[int | None] = mapped_column(nullable=True)

    amount: Mapped[int | None] = mapped_column(nullable=True)

    balance_qty: Mapped[int | None] = mapped_column(nullable=True)

    balance_amount: Mapped[int | None] = mapped_column(nullable=True)

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {self.id}: {self.type} qty={self.quantity} "
            f"amount={self.amount}>"
        )
