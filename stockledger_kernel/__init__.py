"""
Stockledger Kernel

Persistence, domain primitives and error types for FIFO inventory costing:
- Cost layers and append-only consumption records
- Balance ledger entries written alongside every stock mutation
- Row-level locking and all-or-nothing transactions
- Injectable clock for deterministic timestamps
"""

__version__ = "0.1.0"
