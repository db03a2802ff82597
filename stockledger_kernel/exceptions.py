"""
Exception hierarchy for stockledger.

Every error carries a stable machine-readable ``code`` and the structured
attributes needed to act on it without parsing the message.

Hierarchy::

    StockLedgerError
    +-- CostingError
    |   +-- InsufficientCostLayersError   INSUFFICIENT_COST_LAYERS
    |   +-- InvalidQuantityError          INVALID_QUANTITY
    |   +-- InvalidUnitCostError          INVALID_UNIT_COST
    +-- InventoryError
    |   +-- ProductNotFoundError          PRODUCT_NOT_FOUND
    |   +-- InsufficientStockError        INSUFFICIENT_STOCK
    |   +-- InvalidAdjustmentError        INVALID_ADJUSTMENT
    |   +-- InvalidOrderError             INVALID_ORDER
    +-- LedgerError
    |   +-- InvalidLedgerEntryError       INVALID_LEDGER_ENTRY
    +-- ImmutabilityError
        +-- ImmutabilityViolationError    IMMUTABILITY_VIOLATION

Costing errors are raised before any row is mutated, so the surrounding
transaction can be rolled back with nothing half-applied.
"""

from __future__ import annotations

from typing import Any


class StockLedgerError(Exception):
    """Base exception for all stockledger errors."""

    code: str = "STOCKLEDGER_ERROR"


# ---------------------------------------------------------------------------
# Costing
# ---------------------------------------------------------------------------


class CostingError(StockLedgerError):
    """Base for FIFO costing failures."""

    code: str = "COSTING_ERROR"


class InsufficientCostLayersError(CostingError):
    """Open cost layers cannot cover the requested quantity.

    ``product_id`` is None when a targeted layer does not exist.
    """

    code: str = "INSUFFICIENT_COST_LAYERS"

    def __init__(self, product_id: Any, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        product = f"#{product_id}" if product_id is not None else "#unknown"
        super().__init__(
            f"Insufficient cost layers for product {product}: "
            f"requested {requested}, available {available}."
        )


class InvalidQuantityError(CostingError):
    """Quantity must be a positive integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: Any, context: str = "quantity"):
        self.quantity = quantity
        self.context = context
        super().__init__(f"Invalid {context}: {quantity!r} (must be > 0)")


class InvalidUnitCostError(CostingError):
    """Unit cost must be a non-negative integer amount."""

    code: str = "INVALID_UNIT_COST"

    def __init__(self, unit_cost: Any):
        self.unit_cost = unit_cost
        super().__init__(f"Invalid unit cost: {unit_cost!r} (must be >= 0)")


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class InventoryError(StockLedgerError):
    """Base for stock-level failures."""

    code: str = "INVENTORY_ERROR"


class ProductNotFoundError(InventoryError):
    """Product does not exist for the tenant, or has been deleted."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: Any, tenant_id: Any = None):
        self.product_id = product_id
        self.tenant_id = tenant_id
        super().__init__(f"Product not found: {product_id}")


class InsufficientStockError(InventoryError):
    """The operation would drive the on-hand stock below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: Any, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class InvalidAdjustmentError(InventoryError):
    code: str = "INVALID_ADJUSTMENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid adjustment: {reason}")


class InvalidOrderError(InventoryError):
    """Order request is malformed (no lines, unknown status)."""

    code: str = "INVALID_ORDER"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid order: {reason}")


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class LedgerError(StockLedgerError):
    code: str = "LEDGER_ERROR"


class InvalidLedgerEntryError(LedgerError):
    """Ledger entry has an unknown type or inconsistent fields."""

    code: str = "INVALID_LEDGER_ENTRY"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid ledger entry: {reason}")


# ---------------------------------------------------------------------------
# Immutability
# ---------------------------------------------------------------------------


class ImmutabilityError(StockLedgerError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: Any, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
