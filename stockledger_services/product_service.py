"""
stockledger_services.product_service -- Product rows as the costing core sees them.

Products are created with an explicit initial cost layer whenever they start
with stock, so new products never depend on the legacy backfill. Deletion is
a tombstone: ``deleted_at`` is set and the product disappears from lookups,
while its layers, consumptions and ledger entries stay in place.

Like the other services this one flushes but never commits; wrap calls in
``session_scope()`` or an orchestrator transaction.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger_config.schema import CostingPolicy
from stockledger_kernel.domain.clock import Clock, SystemClock
from stockledger_kernel.exceptions import (
    InvalidQuantityError,
    InvalidUnitCostError,
    ProductNotFoundError,
)
from stockledger_kernel.logging_config import get_logger
from stockledger_kernel.models.ledger_entry import LedgerEntryType
from stockledger_kernel.models.product import ProductModel
from stockledger_services.fifo_cost_service import FifoCostService
from stockledger_services.ledger_service import BalanceLedgerService

logger = get_logger("services.product")

INITIAL_STOCK_DESCRIPTION = "Initial stock"


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ProductService:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: CostingPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or CostingPolicy()
        self._fifo = FifoCostService(session, clock=self._clock, policy=self._policy)
        self._ledger = BalanceLedgerService(session, clock=self._clock)

    def lock_product(self, tenant_id: UUID, product_id: UUID) -> ProductModel:
        """
        ``SELECT ... FOR UPDATE`` the product row and return it refreshed.

        This is the first lock every stock mutation takes.

        Raises:
            ProductNotFoundError: no such product for the tenant, or tombstoned.
        """
        stmt = (
            select(ProductModel)
            .where(
                ProductModel.id == product_id,
                ProductModel.tenant_id == tenant_id,
                ProductModel.deleted_at.is_(None),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = self._session.scalars(stmt).one_or_none()
        if product is None:
            raise ProductNotFoundError(product_id, tenant_id)
        return product

    def lock_products(
        self, tenant_id: UUID, product_ids: list[UUID]
    ) -> dict[UUID, ProductModel]:
        """
        Lock several products in ascending id order.

        A fixed order keeps two multi-product transactions from deadlocking.
        The first missing product raises ProductNotFoundError.
        """
        return {
            product_id: self.lock_product(tenant_id, product_id)
            for product_id in sorted(set(product_ids), key=str)
        }

    def get_product(self, tenant_id: UUID, product_id: UUID) -> ProductModel | None:
        stmt = select(ProductModel).where(
            ProductModel.id == product_id,
            ProductModel.tenant_id == tenant_id,
            ProductModel.deleted_at.is_(None),
        )
        return self._session.scalars(stmt).one_or_none()

    def create_product(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        name: str,
        price: int,
        cost: int | None = None,
        stock: int = 0,
        sku: str | None = None,
    ) -> ProductModel:
        """
        Create a product. Opening stock gets an ``INIT-<id>`` layer at
        ``cost`` (or ``price``) and a stock_in ledger entry.
        """
        if not _is_int(price) or price < 0:
            raise InvalidUnitCostError(price)
        if cost is not None and (not _is_int(cost) or cost < 0):
            raise InvalidUnitCostError(cost)
        if not _is_int(stock) or stock < 0:
            raise InvalidQuantityError(stock, context="opening stock")

        product = ProductModel(
            tenant_id=tenant_id,
            name=name,
            sku=sku,
            price=price,
            cost=cost,
            stock=stock,
            created_at=self._clock.now(),
            created_by_id=actor_id,
        )
        self._session.add(product)
        self._session.flush()

        if stock > 0:
            unit_cost = product.fallback_unit_cost
            reference = self._policy.initial_reference(product.id)
            self._fifo.create_layer(
                product_id=product.id,
                tenant_id=tenant_id,
                quantity=stock,
                unit_cost=unit_cost,
                reference=reference,
            )
            self._ledger.record(
                tenant_id=tenant_id,
                entry_type=LedgerEntryType.STOCK_IN,
                description=INITIAL_STOCK_DESCRIPTION,
                product_id=product.id,
                quantity=stock,
                amount=unit_cost * stock,
                balance_qty=stock,
                balance_amount=unit_cost * stock,
                reference=reference,
            )

        logger.info(
            "product_created",
            extra={
                "product_id": str(product.id),
                "price": price,
                "cost": cost,
                "stock": stock,
            },
        )
        return product

    def delete_product(self, tenant_id: UUID, actor_id: UUID, product_id: UUID) -> ProductModel:
        """Tombstone the product. Cost history is kept."""
        product = self.lock_product(tenant_id, product_id)
        now = self._clock.now()
        product.deleted_at = now
        product.updated_at = now
        product.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "product_deleted",
            extra={"product_id": str(product_id), "stock": product.stock},
        )
        return product
