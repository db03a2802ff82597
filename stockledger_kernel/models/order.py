"""Orders and order lines, as far as stock and cost of goods are concerned."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger_kernel.db.base import Base, TrackedBase, UUIDString


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderModel(TrackedBase):
    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_order_tenant_number"),
        Index("idx_order_tenant_ordered_at", "tenant_id", "ordered_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)

    ordered_at: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.COMPLETED.value,
    )

    items_count: Mapped[int] = mapped_column(nullable=False, default=0)

    total: Mapped[int] = mapped_column(nullable=False, default=0)

    items: Mapped[list[OrderItemModel]] = relationship(
        back_populates="order",
        order_by="OrderItemModel.position",
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_number}: total={self.total} status={self.status}>"


class OrderItemModel(Base):
    __tablename__ = "order_items"

    __table_args__ = (
        Index("idx_order_item_order", "order_id"),
        Index("idx_order_item_product", "product_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Line order within the order
    position: Mapped[int] = mapped_column(nullable=False, default=0)

    quantity: Mapped[int] = mapped_column(nullable=False)

    unit_price: Mapped[int] = mapped_column(nullable=False)

    # FIFO weighted average of the layers this line consumed
    unit_cost: Mapped[int | None] = mapped_column(nullable=True)

    line_total: Mapped[int] = mapped_column(nullable=False)

    order: Mapped[OrderModel] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return (
            f"<OrderItem {self.id}: product={self.product_id} "
            f"{self.quantity} x {self.unit_price}>"
        )
