"""
Pure calculation layer for stockledger.

Engines take plain values (snapshots of cost layers, quantities) and return
plans or figures. They never touch a session, never read the clock and never
mutate their inputs; the services in ``stockledger_services`` load rows, call
an engine, then apply the result. Every engine call is traced through
``@traced_engine``.

Usage:
    from stockledger_engines import LayerSnapshot, plan_fifo_consumption

    plan = plan_fifo_consumption(product_id=pid, layers=snapshots, quantity=25)
    plan.total_cost, plan.weighted_average_cost
"""

from stockledger_engines.fifo import (
    FifoPlan,
    LayerDraw,
    LayerSnapshot,
    fifo_order,
    plan_fifo_consumption,
    plan_specific_consumption,
    round_half_up,
    weighted_average_cost,
)
from stockledger_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "FifoPlan",
    "LayerDraw",
    "LayerSnapshot",
    "compute_input_fingerprint",
    "fifo_order",
    "plan_fifo_consumption",
    "plan_specific_consumption",
    "round_half_up",
    "traced_engine",
    "weighted_average_cost",
]
