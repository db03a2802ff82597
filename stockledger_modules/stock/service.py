"""
Stock Module Service (``stockledger_modules.stock.service``).

Manual entries
--------------
Only two types can be recorded by hand:

- ``stock_in`` (inventory): ``quantity`` defaults to 0 and no amount is
  stored. With both a product and a quantity the product is locked, its
  stock increases, the entry snapshots ``balance_qty`` and a cost layer is
  received at ``cost`` (or ``price``), referenced by the entry's reference
  or ``LEDGER-<entry id>``.
- ``expense`` (financial): the amount is stored as ``-abs(amount)``.

Bulk decrement
--------------
Each item runs in its own savepoint. A missing product, a shortfall in stock
or in cost layers is reported in ``errors`` and leaves that item's rows
untouched; the other items still apply. The outer transaction is committed
once at the end.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from stockledger_config.schema import CostingPolicy
from stockledger_kernel.domain.clock import Clock, SystemClock
from stockledger_kernel.exceptions import (
    InsufficientCostLayersError,
    InsufficientStockError,
    InvalidLedgerEntryError,
    InvalidQuantityError,
    ProductNotFoundError,
    StockLedgerError,
)
from stockledger_kernel.logging_config import LogContext, get_logger
from stockledger_kernel.models.ledger_entry import LedgerEntryType
from stockledger_modules.stock.models import (
    BulkDecrementFailure,
    BulkDecrementResult,
    DecrementedItem,
    ManualEntryResult,
    StockDecrement,
)
from stockledger_services.fifo_cost_service import FifoCostService
from stockledger_services.ledger_service import BalanceLedgerService
from stockledger_services.product_service import ProductService

logger = get_logger("modules.stock.service")

MANUAL_ENTRY_TYPES = (LedgerEntryType.STOCK_IN, LedgerEntryType.EXPENSE)

BULK_DECREMENT_DESCRIPTION = "Bulk stock decrement"


class StockService:
    """
    Manual ledger entries and bulk decrements.

    Both operations own their transaction and commit on success.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: CostingPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or CostingPolicy()
        self._products = ProductService(session, clock=self._clock, policy=self._policy)
        self._fifo = FifoCostService(session, clock=self._clock, policy=self._policy)
        self._ledger = BalanceLedgerService(session, clock=self._clock)

    # =========================================================================
    # Manual entries
    # =========================================================================

    def record_manual_entry(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        type: LedgerEntryType | str,
        description: str,
        product_id: UUID | None = None,
        quantity: int | None = None,
        amount: int | None = None,
        reference: str | None = None,
    ) -> ManualEntryResult:
        """
        Raises:
            InvalidLedgerEntryError: a type other than stock_in or expense,
                or an empty description.
            InvalidQuantityError: quantity given but not a positive integer.
            ProductNotFoundError: ``product_id`` names a missing product.
        """
        try:
            entry_type = LedgerEntryType(type)
        except ValueError:
            raise InvalidLedgerEntryError(f"unknown type {type!r}") from None
        if entry_type not in MANUAL_ENTRY_TYPES:
            raise InvalidLedgerEntryError(
                f"{entry_type.value} entries cannot be recorded manually"
            )
        if quantity is not None and (
            isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0
        ):
            raise InvalidQuantityError(quantity)
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
            raise InvalidLedgerEntryError(f"amount must be an integer, got {amount!r}")

        with LogContext.bind(tenant_id=tenant_id, actor_id=actor_id):
            try:
                if entry_type is LedgerEntryType.STOCK_IN:
                    result = self._record_stock_in(
                        tenant_id, actor_id, description, product_id, quantity, reference
                    )
                else:
                    self._require_product(tenant_id, product_id)
                    entry = self._ledger.record(
                        tenant_id=tenant_id,
                        entry_type=entry_type,
                        description=description,
                        product_id=product_id,
                        amount=-abs(amount or 0),
                        reference=reference,
                    )
                    result = ManualEntryResult(
                        ledger_entry_id=entry.id,
                        type=entry.type,
                        category=entry.category,
                        quantity=None,
                        amount=entry.amount,
                        balance_qty=None,
                        reference=reference,
                    )
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning(
                    "manual_entry_rolled_back",
                    extra={"entry_type": entry_type.value},
                    exc_info=True,
                )
                raise

            logger.info(
                "manual_entry_recorded",
                extra={
                    "ledger_entry_id": str(result.ledger_entry_id),
                    "entry_type": result.type,
                    "cost_layer_id": (
                        str(result.cost_layer_id) if result.cost_layer_id else None
                    ),
                },
            )
            return result

    def _record_stock_in(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        description: str,
        product_id: UUID | None,
        quantity: int | None,
        reference: str | None,
    ) -> ManualEntryResult:
        if product_id is None or quantity is None:
            self._require_product(tenant_id, product_id)
            entry = self._ledger.record(
                tenant_id=tenant_id,
                entry_type=LedgerEntryType.STOCK_IN,
                description=description,
                product_id=product_id,
                quantity=quantity or 0,
                reference=reference,
            )
            return ManualEntryResult(
                ledger_entry_id=entry.id,
                type=entry.type,
                category=entry.category,
                quantity=entry.quantity,
                amount=None,
                balance_qty=None,
                reference=reference,
            )

        product = self._products.lock_product(tenant_id, product_id)
        # Layer pre-existing stock first so it stays ahead of this receipt
        self._fifo.ensure_layers_exist(product, tenant_id)

        product.stock += quantity
        product.updated_at = self._clock.now()
        product.updated_by_id = actor_id

        entry = self._ledger.record(
            tenant_id=tenant_id,
            entry_type=LedgerEntryType.STOCK_IN,
            description=description,
            product_id=product.id,
            quantity=quantity,
            balance_qty=product.stock,
            reference=reference,
        )
        layer = self._fifo.create_layer(
            product_id=product.id,
            tenant_id=tenant_id,
            quantity=quantity,
            unit_cost=product.fallback_unit_cost,
            reference=reference or self._policy.manual_entry_reference(entry.id),
        )
        return ManualEntryResult(
            ledger_entry_id=entry.id,
            type=entry.type,
            category=entry.category,
            quantity=quantity,
            amount=None,
            balance_qty=product.stock,
            reference=reference,
            cost_layer_id=layer.id,
        )

    def _require_product(self, tenant_id: UUID, product_id: UUID | None) -> None:
        if product_id is not None and self._products.get_product(tenant_id, product_id) is None:
            raise ProductNotFoundError(product_id, tenant_id)

    # =========================================================================
    # Bulk decrement
    # =========================================================================

    def bulk_decrement(
        self, tenant_id: UUID, items: Iterable[StockDecrement]
    ) -> BulkDecrementResult:
        """
        Decrement several products, reporting per-item failures.

        Items are applied in ascending product id order. Quantities that are
        not positive integers raise InvalidQuantityError before anything is
        touched.
        """
        items = list(items)
        for item in items:
            if (
                isinstance(item.quantity, bool)
                or not isinstance(item.quantity, int)
                or item.quantity <= 0
            ):
                raise InvalidQuantityError(item.quantity, context="decrement quantity")

        updated: list[DecrementedItem] = []
        errors: list[BulkDecrementFailure] = []

        with LogContext.bind(tenant_id=tenant_id):
            try:
                for item in sorted(items, key=lambda i: str(i.product_id)):
                    savepoint = self._session.begin_nested()
                    try:
                        updated.append(self._decrement_one(tenant_id, item))
                    except StockLedgerError as exc:
                        savepoint.rollback()
                        errors.append(self._failure(item, exc))
                        logger.info(
                            "bulk_decrement_item_skipped",
                            extra={
                                "product_id": str(item.product_id),
                                "quantity": item.quantity,
                                "error_code": exc.code,
                            },
                        )
                    else:
                        savepoint.commit()
                self._session.commit()
            except Exception:
                self._session.rollback()
                logger.warning("bulk_decrement_rolled_back", exc_info=True)
                raise

            logger.info(
                "bulk_decrement_completed",
                extra={"updated": len(updated), "failed": len(errors)},
            )
            return BulkDecrementResult(updated=tuple(updated), errors=tuple(errors))

    def _decrement_one(self, tenant_id: UUID, item: StockDecrement) -> DecrementedItem:
        product = self._products.lock_product(tenant_id, item.product_id)
        if product.stock < item.quantity:
            raise InsufficientStockError(product.id, item.quantity, product.stock)

        self._fifo.ensure_layers_exist(product, tenant_id)
        consumption = self._fifo.consume_layers(product.id, item.quantity)

        product.stock -= item.quantity
        product.updated_at = self._clock.now()

        balance_unit = self._fifo.get_weighted_average_cost(product.id)
        if balance_unit is None:
            balance_unit = product.fallback_unit_cost
        self._ledger.record(
            tenant_id=tenant_id,
            entry_type=LedgerEntryType.STOCK_OUT,
            description=BULK_DECREMENT_DESCRIPTION,
            product_id=product.id,
            quantity=-item.quantity,
            amount=consumption.total_cost,
            balance_qty=product.stock,
            balance_amount=balance_unit * product.stock,
        )
        return DecrementedItem(
            product_id=product.id,
            quantity=item.quantity,
            remaining_stock=product.stock,
            cost_total=consumption.total_cost,
        )

    @staticmethod
    def _failure(item: StockDecrement, exc: StockLedgerError) -> BulkDecrementFailure:
        if isinstance(exc, InsufficientStockError):
            return BulkDecrementFailure(
                product_id=item.product_id,
                error="Insufficient stock",
                code=exc.code,
                available=exc.available,
                requested=item.quantity,
            )
        if isinstance(exc, InsufficientCostLayersError):
            return BulkDecrementFailure(
                product_id=item.product_id,
                error="Insufficient cost layers",
                code=exc.code,
                available=exc.available,
                requested=item.quantity,
            )
        if isinstance(exc, ProductNotFoundError):
            return BulkDecrementFailure(
                product_id=item.product_id,
                error="Product not found",
                code=exc.code,
                requested=item.quantity,
            )
        return BulkDecrementFailure(
            product_id=item.product_id,
            error=str(exc),
            code=exc.code,
            requested=item.quantity,
        )
