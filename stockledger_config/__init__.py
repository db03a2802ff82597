"""
stockledger_config -- single public entrypoint for runtime configuration.

``get_active_config()`` is the only way the rest of the system obtains
settings. Defaults ship in ``defaults.yaml`` next to this module; an optional
override file is deep-merged on top. Every call emits a
``STOCKLEDGER_CONFIG_TRACE`` record carrying the checksum of the merged
document, so a run can be tied back to the exact settings it used.

The kernel never imports this package; services take a ``CostingPolicy``
argument and default to ``CostingPolicy()``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from stockledger_config.loader import deep_merge, load_yaml_file, parse_config
from stockledger_config.schema import (
    CostingPolicy,
    DatabaseSettings,
    LoggingSettings,
    StockLedgerConfig,
)

_logger = logging.getLogger("stockledger.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> StockLedgerConfig:
    """
    Load defaults, merge ``config_path`` if given, validate and return.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        ValueError: unknown keys or wrongly typed values.
        yaml.YAMLError: malformed YAML.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    sources = [str(DEFAULTS_PATH)]
    if config_path is not None:
        override_path = Path(config_path)
        data = deep_merge(data, load_yaml_file(override_path))
        sources.append(str(override_path))

    config = parse_config(data)

    _logger.info(
        "STOCKLEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "STOCKLEDGER_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "sources": sources,
        },
    )
    return config


__all__ = [
    "CostingPolicy",
    "DatabaseSettings",
    "LoggingSettings",
    "StockLedgerConfig",
    "get_active_config",
]
