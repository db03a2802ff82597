"""
Stateful services over the stockledger kernel.

Services receive a Session (plus optional Clock and CostingPolicy) and run
inside the caller's transaction: they flush, they never commit. The
orchestrators in ``stockledger_modules`` own the transaction boundary.
"""

from stockledger_services.fifo_cost_service import (
    ConsumptionOutcome,
    FifoCostService,
    SetAdjustmentOutcome,
)
from stockledger_services.ledger_service import BalanceLedgerService, LedgerSummary
from stockledger_services.product_service import ProductService

__all__ = [
    "BalanceLedgerService",
    "ConsumptionOutcome",
    "FifoCostService",
    "LedgerSummary",
    "ProductService",
    "SetAdjustmentOutcome",
]
