"""
Frozen configuration schema.

Every section is a frozen dataclass with defaults matching defaults.yaml, so
services can be constructed without loading any file (``CostingPolicy()``).
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///stockledger.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    busy_timeout: float = 30.0


@dataclass(frozen=True)
class CostingPolicy:
    """
    Reference tags and numbering used by the costing services.

    Layer references are ``<prefix><id>``: ``ADJ-`` for adjustments, ``INIT-``
    for the initial stock of a new product, ``LEDGER-`` for manual stock-in
    entries. Legacy stock backfilled without provenance is tagged with
    ``migration_reference``.
    """

    migration_reference: str = "MIGRATION"
    initial_reference_prefix: str = "INIT-"
    adjustment_reference_prefix: str = "ADJ-"
    manual_entry_reference_prefix: str = "LEDGER-"
    order_number_prefix: str = "ORD-"
    order_number_width: int = 3

    def __post_init__(self) -> None:
        if not self.migration_reference:
            raise ValueError("migration_reference must not be empty")
        if self.order_number_width < 1:
            raise ValueError(
                f"order_number_width must be >= 1, got {self.order_number_width}"
            )

    def adjustment_reference(self, adjustment_id) -> str:
        return f"{self.adjustment_reference_prefix}{adjustment_id}"

    def initial_reference(self, product_id) -> str:
        return f"{self.initial_reference_prefix}{product_id}"

    def manual_entry_reference(self, entry_id) -> str:
        return f"{self.manual_entry_reference_prefix}{entry_id}"

    def format_order_number(self, sequence: int) -> str:
        return f"{self.order_number_prefix}{sequence:0{self.order_number_width}d}"

    def parse_order_number(self, order_number: str) -> int | None:
        """Sequence part of an order number, or None if it does not match."""
        if not order_number.startswith(self.order_number_prefix):
            return None
        digits = order_number[len(self.order_number_prefix):]
        return int(digits) if digits.isdigit() else None


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {self.level!r}")


@dataclass(frozen=True)
class StockLedgerConfig:
    config_id: str
    version: int
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    costing: CostingPolicy = field(default_factory=CostingPolicy)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    checksum: str = ""
