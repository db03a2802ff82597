"""
Product aggregate, reduced to the fields the costing core reads and writes.

``stock`` is the on-hand quantity and ``cost`` the current weighted-average
unit cost. Both are only changed by the orchestrators while they hold the
product row lock. Products are tombstoned through ``deleted_at`` so that
their cost layers and consumptions remain auditable.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stockledger_kernel.db.base import TrackedBase, UUIDString


class ProductModel(TrackedBase):
    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_tenant", "tenant_id"),
        Index("idx_product_tenant_sku", "tenant_id", "sku"),
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Minor currency units
    price: Mapped[int] = mapped_column(nullable=False)

    # Weighted-average unit cost; None until the first layer is priced
    cost: Mapped[int | None] = mapped_column(nullable=True)

    stock: Mapped[int] = mapped_column(nullable=False, default=0)

    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def fallback_unit_cost(self) -> int:
        """Cost used when no layer says otherwise: cost, else price."""
        return self.cost if self.cost is not None else self.price

    def __repr__(self) -> str:
        return f"<Product {self.id}: {self.name} stock={self.stock} cost={self.cost}>"
