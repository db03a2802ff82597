"""
Orders Module (``stockledger_modules.orders``).

Order placement: every line draws its cost of goods from the FIFO layers of
its product, and the order writes one sale entry and one COGS expense entry
to the balance ledger.
"""

from stockledger_modules.orders.models import OrderLine, PlacedOrder, PlacedOrderLine
from stockledger_modules.orders.service import OrderService

__all__ = [
    "OrderLine",
    "OrderService",
    "PlacedOrder",
    "PlacedOrderLine",
]
