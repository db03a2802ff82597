"""Tests for StockService: manual ledger entries and bulk decrements."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from stockledger_kernel.exceptions import (
    InvalidLedgerEntryError,
    InvalidQuantityError,
    ProductNotFoundError,
)
from stockledger_kernel.models.cost_layer import CostLayerModel
from stockledger_kernel.models.ledger_entry import LedgerEntryModel
from stockledger_modules.stock import StockDecrement


@pytest.fixture
def manual_entry(stock_service, tenant_id, actor_id):
    def _record(type, description="Manual entry", **kwargs):
        return stock_service.record_manual_entry(
            tenant_id=tenant_id,
            actor_id=actor_id,
            type=type,
            description=description,
            **kwargs,
        )

    return _record


class TestManualStockIn:
    def test_receipt_increments_stock_and_creates_layer(
        self, session, manual_entry, create_product
    ):
        product = create_product(price=9000, cost=4000, stock=5)

        result = manual_entry("stock_in", "Purchased new stock", product_id=product.id, quantity=10)

        assert product.stock == 15
        assert result.category == "inventory"
        assert result.balance_qty == 15
        assert result.amount is None

        layer = session.get(CostLayerModel, result.cost_layer_id)
        assert layer.quantity_acquired == 10
        assert layer.unit_cost == 4000
        assert layer.reference == f"LEDGER-{result.ledger_entry_id}"

    def test_explicit_reference_names_the_layer(self, session, manual_entry, create_product):
        product = create_product(price=9000)

        result = manual_entry("stock_in", product_id=product.id, quantity=3, reference="PO-001")

        assert session.get(CostLayerModel, result.cost_layer_id).reference == "PO-001"
        assert session.get(LedgerEntryModel, result.ledger_entry_id).reference == "PO-001"

    def test_legacy_stock_layered_before_receipt(
        self, session, manual_entry, legacy_product, deterministic_clock
    ):
        product = legacy_product(stock=4, cost=1000)
        deterministic_clock.tick()

        manual_entry("stock_in", product_id=product.id, quantity=6)

        layers = session.scalars(
            select(CostLayerModel)
            .where(CostLayerModel.product_id == product.id)
            .order_by(CostLayerModel.acquired_at)
        ).all()
        assert [(l.reference, l.quantity_acquired) for l in layers][0] == ("MIGRATION", 4)
        assert sum(l.remaining_quantity for l in layers) == product.stock == 10

    def test_without_product_records_entry_only(self, manual_entry):
        result = manual_entry("stock_in", "Stock count note")
        assert result.quantity == 0
        assert result.cost_layer_id is None

    def test_unknown_product(self, manual_entry):
        with pytest.raises(ProductNotFoundError):
            manual_entry("stock_in", product_id=uuid4(), quantity=1)


class TestManualExpense:
    @pytest.mark.parametrize("amount, stored", [(5000, -5000), (-5000, -5000), (None, 0)])
    def test_amount_stored_negative(self, manual_entry, amount, stored):
        result = manual_entry("expense", "Rent", amount=amount)
        assert result.category == "financial"
        assert result.amount == stored
        assert result.quantity is None

    def test_counts_toward_expenses(self, manual_entry, ledger_service, tenant_id):
        manual_entry("expense", "Rent", amount=1200)
        assert ledger_service.summary(tenant_id).total_expenses == 1200


class TestManualValidation:
    @pytest.mark.parametrize("type", ["sale", "stock_out", "adjustment", "bogus"])
    def test_only_stock_in_and_expense(self, manual_entry, type):
        with pytest.raises(InvalidLedgerEntryError):
            manual_entry(type)

    def test_quantity_must_be_positive(self, manual_entry, create_product):
        product = create_product()
        with pytest.raises(InvalidQuantityError):
            manual_entry("stock_in", product_id=product.id, quantity=0)

    def test_description_required(self, manual_entry):
        with pytest.raises(InvalidLedgerEntryError):
            manual_entry("expense", "", amount=1)


class TestBulkDecrement:
    def test_applies_valid_items_and_reports_the_rest(
        self, session, stock_service, create_product, tenant_id
    ):
        ok = create_product(name="Ok", price=100, cost=60, stock=10)
        short = create_product(name="Short", price=100, cost=60, stock=2)
        missing = uuid4()

        result = stock_service.bulk_decrement(
            tenant_id,
            [
                StockDecrement(ok.id, 4),
                StockDecrement(short.id, 5),
                StockDecrement(missing, 1),
            ],
        )

        assert not result.ok
        assert [(u.product_id, u.remaining_stock, u.cost_total) for u in result.updated] == [
            (ok.id, 6, 240)
        ]
        errors = {e.product_id: e for e in result.errors}
        assert errors[short.id].error == "Insufficient stock"
        assert errors[short.id].available == 2
        assert errors[short.id].requested == 5
        assert errors[missing].error == "Product not found"
        assert errors[missing].code == "PRODUCT_NOT_FOUND"
        assert errors[missing].requested == 1

        session.refresh(short)
        assert short.stock == 2
        entries = session.scalars(
            select(LedgerEntryModel).where(
                LedgerEntryModel.product_id == ok.id,
                LedgerEntryModel.type == "stock_out",
            )
        ).all()
        assert [(e.quantity, e.amount, e.balance_qty) for e in entries] == [(-4, 240, 6)]

    def test_layer_shortfall_reported(self, session, stock_service, create_product, fifo_service, tenant_id):
        product = create_product(price=100, cost=60, stock=3)
        # Layers now cover 1 unit while the product still claims 3
        fifo_service.consume_layers(product.id, 2)

        result = stock_service.bulk_decrement(tenant_id, [StockDecrement(product.id, 2)])

        (failure,) = result.errors
        assert failure.code == "INSUFFICIENT_COST_LAYERS"
        assert failure.available == 1
        assert failure.requested == 2
        session.refresh(product)
        assert product.stock == 3

    def test_invalid_quantity_raises_before_any_change(self, stock_service, create_product, tenant_id):
        product = create_product(stock=3, cost=1)
        with pytest.raises(InvalidQuantityError):
            stock_service.bulk_decrement(
                tenant_id, [StockDecrement(product.id, 1), StockDecrement(product.id, 0)]
            )
        assert product.stock == 3

    def test_empty_batch(self, stock_service, tenant_id):
        result = stock_service.bulk_decrement(tenant_id, [])
        assert result.ok
        assert result.updated == ()
