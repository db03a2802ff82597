"""
Tests for FifoCostService against a real database.

Tests cover:
- Layer creation and validation
- FIFO consumption writes one consumption row per layer drawn
- Specific-layer consumption, including missing and foreign layers
- Legacy stock backfill (idempotent)
- Stock-count corrections through handle_set_adjustment
- Conservation across a sequence of operations
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stockledger_kernel.exceptions import (
    InsufficientCostLayersError,
    InvalidQuantityError,
    InvalidUnitCostError,
)
from stockledger_kernel.models.cost_layer import CostLayerConsumptionModel, CostLayerModel


def _layers(session, product_id):
    return list(
        session.scalars(
            select(CostLayerModel)
            .where(CostLayerModel.product_id == product_id)
            .order_by(CostLayerModel.acquired_at, CostLayerModel.sequence)
        )
    )


class TestCreateLayer:
    def test_remaining_starts_at_quantity(self, fifo_service, create_product, tenant_id):
        product = create_product()

        layer = fifo_service.create_layer(product.id, tenant_id, quantity=10, unit_cost=5000)

        assert layer.quantity_acquired == 10
        assert layer.remaining_quantity == 10
        assert layer.unit_cost == 5000
        assert layer.is_active

    def test_acquired_at_comes_from_clock(
        self, fifo_service, create_product, tenant_id, deterministic_clock
    ):
        product = create_product()
        deterministic_clock.advance(3600)

        layer = fifo_service.create_layer(product.id, tenant_id, quantity=1, unit_cost=1)

        assert layer.acquired_at == deterministic_clock.now()

    @pytest.mark.parametrize("quantity", [0, -1, 2.5])
    def test_invalid_quantity(self, fifo_service, create_product, tenant_id, quantity):
        product = create_product()
        with pytest.raises(InvalidQuantityError):
            fifo_service.create_layer(product.id, tenant_id, quantity=quantity, unit_cost=1)

    def test_negative_unit_cost(self, fifo_service, create_product, tenant_id):
        product = create_product()
        with pytest.raises(InvalidUnitCostError):
            fifo_service.create_layer(product.id, tenant_id, quantity=1, unit_cost=-1)


class TestConsumeLayers:
    def test_weighted_average_of_two_layers(
        self, fifo_service, create_product, tenant_id, deterministic_clock
    ):
        product = create_product()
        fifo_service.create_layer(product.id, tenant_id, 20, 5000)
        deterministic_clock.tick()
        fifo_service.create_layer(product.id, tenant_id, 30, 6000)

        assert fifo_service.get_weighted_average_cost(product.id) == 5600

    def test_consume_spans_layers(
        self, session, fifo_service, create_product, tenant_id, deterministic_clock
    ):
        product = create_product()
        first = fifo_service.create_layer(product.id, tenant_id, 20, 5000)
        deterministic_clock.tick()
        second = fifo_service.create_layer(product.id, tenant_id, 30, 6000)

        outcome = fifo_service.consume_layers(product.id, 25, adjustment_id=uuid4())

        assert outcome.total_cost == 130000
        assert outcome.weighted_average_cost == 5200
        assert outcome.quantity == 25
        assert first.remaining_quantity == 0
        assert second.remaining_quantity == 25
        assert [(c.cost_layer_id, c.quantity_consumed, c.unit_cost) for c in outcome.consumptions] == [
            (first.id, 20, 5000),
            (second.id, 5, 6000),
        ]

    def test_same_instant_layers_drawn_in_insertion_order(
        self, fifo_service, create_product, tenant_id
    ):
        """No clock tick: the first layer received is still the first consumed."""
        for _ in range(10):
            product = create_product()
            older = fifo_service.create_layer(product.id, tenant_id, 10, 100)
            newer = fifo_service.create_layer(product.id, tenant_id, 10, 200)
            assert older.acquired_at == newer.acquired_at
            assert (older.sequence, newer.sequence) == (1, 2)

            outcome = fifo_service.consume_layers(product.id, 10)

            assert outcome.total_cost == 1000
            assert [c.cost_layer_id for c in outcome.consumptions] == [older.id]
            assert [l.id for l in fifo_service.get_active_layers(product.id)] == [newer.id]

    def test_sequence_numbers_layers_per_product(
        self, fifo_service, create_product, tenant_id
    ):
        a = create_product(name="A")
        b = create_product(name="B")

        sequences = [
            fifo_service.create_layer(a.id, tenant_id, 1, 1).sequence,
            fifo_service.create_layer(b.id, tenant_id, 1, 1).sequence,
            fifo_service.create_layer(a.id, tenant_id, 1, 1).sequence,
        ]

        assert sequences == [1, 1, 2]

    def test_exact_consumption_leaves_zero(self, fifo_service, create_product, tenant_id):
        product = create_product()
        layer = fifo_service.create_layer(product.id, tenant_id, 10, 5000)

        outcome = fifo_service.consume_layers(product.id, 10)

        assert outcome.total_cost == 50000
        assert layer.remaining_quantity == 0
        assert not fifo_service.has_active_layers(product.id)
        assert fifo_service.get_weighted_average_cost(product.id) is None

    def test_insufficient_leaves_layers_untouched(
        self, session, fifo_service, create_product, tenant_id
    ):
        product = create_product()
        layer = fifo_service.create_layer(product.id, tenant_id, 5, 100)

        with pytest.raises(InsufficientCostLayersError) as exc_info:
            fifo_service.consume_layers(product.id, 6)

        assert exc_info.value.available == 5
        assert layer.remaining_quantity == 5
        assert session.scalar(select(func.count()).select_from(CostLayerConsumptionModel)) == 0

    def test_consumption_links_one_operation(self, fifo_service, create_product, tenant_id):
        product = create_product()
        fifo_service.create_layer(product.id, tenant_id, 5, 100)
        item_id = uuid4()

        outcome = fifo_service.consume_layers(product.id, 2, order_item_id=item_id)

        assert outcome.consumptions[0].linked_operation_id == item_id
        with pytest.raises(ValueError):
            fifo_service.consume_layers(
                product.id, 1, order_item_id=uuid4(), adjustment_id=uuid4()
            )

    def test_logs_start_and_completion(
        self, captured_logs, fifo_service, create_product, tenant_id
    ):
        product = create_product()
        fifo_service.create_layer(product.id, tenant_id, 5, 100)

        fifo_service.consume_layers(product.id, 2)

        messages = [r["message"] for r in captured_logs()]
        assert "fifo_consumption_started" in messages
        completed = next(r for r in captured_logs() if r["message"] == "fifo_consumption_completed")
        assert completed["total_cost"] == 200
        assert completed["layers_consumed"] == 1


class TestConsumeSpecificLayer:
    def test_bypasses_fifo_order(
        self, fifo_service, create_product, tenant_id, deterministic_clock
    ):
        product = create_product()
        old = fifo_service.create_layer(product.id, tenant_id, 10, 1000)
        deterministic_clock.tick()
        new = fifo_service.create_layer(product.id, tenant_id, 10, 3000)

        outcome = fifo_service.consume_specific_layer(new.id, 4)

        assert outcome.total_cost == 12000
        assert outcome.weighted_average_cost == 3000
        assert new.remaining_quantity == 6
        assert old.remaining_quantity == 10

    def test_short_layer_fails_untouched(self, fifo_service, create_product, tenant_id):
        product = create_product()
        layer = fifo_service.create_layer(product.id, tenant_id, 10, 1000)

        with pytest.raises(InsufficientCostLayersError) as exc_info:
            fifo_service.consume_specific_layer(layer.id, 20)

        err = exc_info.value
        assert (err.product_id, err.requested, err.available) == (product.id, 20, 10)
        assert layer.remaining_quantity == 10

    def test_exhausted_layer_reports_zero(self, fifo_service, create_product, tenant_id):
        product = create_product()
        layer = fifo_service.create_layer(product.id, tenant_id, 3, 1000)
        fifo_service.consume_specific_layer(layer.id, 3)

        with pytest.raises(InsufficientCostLayersError) as exc_info:
            fifo_service.consume_specific_layer(layer.id, 1)

        assert exc_info.value.product_id == product.id
        assert exc_info.value.available == 0

    def test_missing_layer(self, fifo_service):
        with pytest.raises(InsufficientCostLayersError) as exc_info:
            fifo_service.consume_specific_layer(uuid4(), 1)
        assert exc_info.value.product_id is None

    def test_layer_of_other_product(self, fifo_service, create_product, tenant_id):
        mine = create_product(name="Mine")
        theirs = create_product(name="Theirs")
        layer = fifo_service.create_layer(theirs.id, tenant_id, 10, 1000)

        with pytest.raises(InsufficientCostLayersError) as exc_info:
            fifo_service.consume_specific_layer(layer.id, 1, product_id=mine.id)

        assert exc_info.value.product_id == mine.id
        assert exc_info.value.available == 0
        assert layer.remaining_quantity == 10


class TestEnsureLayersExist:
    def test_backfills_legacy_stock_once(self, session, fifo_service, legacy_product):
        product = legacy_product(stock=12, cost=4000)

        first = fifo_service.ensure_layers_exist(product)
        second = fifo_service.ensure_layers_exist(product)

        assert first is not None
        assert second is None
        layers = _layers(session, product.id)
        assert len(layers) == 1
        assert layers[0].quantity_acquired == 12
        assert layers[0].unit_cost == 4000
        assert layers[0].reference == "MIGRATION"
        assert layers[0].acquired_at == product.created_at

    def test_falls_back_to_price(self, fifo_service, legacy_product):
        product = legacy_product(stock=2, cost=None, price=9000)
        layer = fifo_service.ensure_layers_exist(product)
        assert layer.unit_cost == 9000

    def test_no_stock_no_layer(self, fifo_service, legacy_product):
        product = legacy_product(stock=0)
        assert fifo_service.ensure_layers_exist(product) is None

    def test_logs_warning(self, captured_logs, fifo_service, legacy_product):
        product = legacy_product(stock=1)
        fifo_service.ensure_layers_exist(product)

        record = next(r for r in captured_logs() if r["message"] == "legacy_stock_layer_created")
        assert record["level"] == "WARNING"
        assert record["quantity"] == 1

    def test_backfill_all(self, fifo_service, legacy_product, create_product, tenant_id):
        legacy_product(stock=3, name="A")
        legacy_product(stock=4, name="B")
        legacy_product(stock=0, name="Empty")
        create_product(stock=5, cost=100, name="Layered")

        assert fifo_service.backfill_legacy_layers(tenant_id) == 2
        assert fifo_service.backfill_legacy_layers(tenant_id) == 0


class TestHandleSetAdjustment:
    def test_increase_creates_layer(self, fifo_service, create_product, tenant_id):
        product = create_product(stock=5, cost=1000)

        outcome = fifo_service.handle_set_adjustment(product, tenant_id, 5, 8, unit_cost=1300)

        assert outcome.delta == 3
        assert outcome.layer.quantity_acquired == 3
        assert outcome.layer.unit_cost == 1300
        assert outcome.consumption is None

    def test_decrease_consumes(self, fifo_service, legacy_product, tenant_id):
        product = legacy_product(stock=10, cost=700)

        outcome = fifo_service.handle_set_adjustment(product, tenant_id, 10, 4)

        assert outcome.delta == -6
        assert outcome.consumption.total_cost == 4200
        assert outcome.layer is None

    def test_no_change(self, fifo_service, create_product, tenant_id):
        product = create_product(stock=5, cost=1000)
        outcome = fifo_service.handle_set_adjustment(product, tenant_id, 5, 5)
        assert (outcome.delta, outcome.layer, outcome.consumption) == (0, None, None)


def test_conservation_across_operations(
    session, fifo_service, create_product, tenant_id, deterministic_clock
):
    """acquired - consumed == remaining, per layer and in total."""
    product = create_product(stock=8, cost=900)
    deterministic_clock.tick()
    fifo_service.create_layer(product.id, tenant_id, 12, 1100)
    deterministic_clock.tick()
    fifo_service.consume_layers(product.id, 10)
    deterministic_clock.tick()
    fifo_service.create_layer(product.id, tenant_id, 4, 1500)
    fifo_service.consume_layers(product.id, 7)

    for layer in _layers(session, product.id):
        consumed = session.scalar(
            select(func.coalesce(func.sum(CostLayerConsumptionModel.quantity_consumed), 0)).where(
                CostLayerConsumptionModel.cost_layer_id == layer.id
            )
        )
        assert layer.quantity_acquired - consumed == layer.remaining_quantity

    assert sum(l.remaining_quantity for l in _layers(session, product.id)) == 8 + 12 + 4 - 17
