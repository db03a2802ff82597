"""
ORM-level append-only enforcement.

SQLAlchemy fires ``before_update`` / ``before_delete`` mapper events during
flush, before any SQL reaches the database. The listeners below reject
changes that would break the audit trail:

    Entity                     | Rule
    ---------------------------|-------------------------------------------------
    CostLayerModel             | Only remaining_quantity may change, only down,
                               | never below zero. Never deleted.
    CostLayerConsumptionModel  | Never updated, never deleted.
    LedgerEntryModel           | Never updated, never deleted.
    ProductModel               | Never deleted (tombstone via deleted_at).

The CHECK constraints on ``cost_layers`` repeat the range rule at the database
level. Bulk ``UPDATE``/``DELETE`` statements and raw SQL bypass these
listeners.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from stockledger_kernel.exceptions import ImmutabilityViolationError
from stockledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_COST_LAYER_FROZEN_FIELDS = (
    "product_id",
    "tenant_id",
    "source_adjustment_id",
    "quantity_acquired",
    "unit_cost",
    "acquired_at",
    "sequence",
    "reference",
    "created_at",
)


def _reject(entity_type: str, entity_id, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(entity_type, entity_id, reason)


def _check_cost_layer_update(mapper, connection, target):
    for field in _COST_LAYER_FROZEN_FIELDS:
        if get_history(target, field).has_changes():
            _reject("CostLayer", target.id, f"{field} is immutable")

    history = get_history(target, "remaining_quantity")
    if not history.has_changes():
        return
    before = history.deleted[0] if history.deleted else None
    after = target.remaining_quantity
    if after < 0:
        _reject("CostLayer", target.id, "remaining_quantity cannot go below zero")
    if before is not None and after > before:
        _reject(
            "CostLayer",
            target.id,
            f"remaining_quantity cannot increase ({before} -> {after})",
        )


def _check_cost_layer_delete(mapper, connection, target):
    _reject("CostLayer", target.id, "cost layers are never deleted")


def _check_consumption_update(mapper, connection, target):
    _reject("CostLayerConsumption", target.id, "consumptions are append-only")


def _check_consumption_delete(mapper, connection, target):
    _reject("CostLayerConsumption", target.id, "consumptions are append-only")


def _check_ledger_entry_update(mapper, connection, target):
    _reject("LedgerEntry", target.id, "ledger entries are append-only")


def _check_ledger_entry_delete(mapper, connection, target):
    _reject("LedgerEntry", target.id, "ledger entries are append-only")


def _check_product_delete(mapper, connection, target):
    _reject("Product", target.id, "products are tombstoned, not deleted")


def _listeners():
    from stockledger_kernel.models import (
        CostLayerConsumptionModel,
        CostLayerModel,
        LedgerEntryModel,
        ProductModel,
    )

    return (
        (CostLayerModel, "before_update", _check_cost_layer_update),
        (CostLayerModel, "before_delete", _check_cost_layer_delete),
        (CostLayerConsumptionModel, "before_update", _check_consumption_update),
        (CostLayerConsumptionModel, "before_delete", _check_consumption_delete),
        (LedgerEntryModel, "before_update", _check_ledger_entry_update),
        (LedgerEntryModel, "before_delete", _check_ledger_entry_delete),
        (ProductModel, "before_delete", _check_product_delete),
    )


def register_immutability_listeners() -> None:
    """Install the listeners. Safe to call more than once."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. Tests only."""
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)
