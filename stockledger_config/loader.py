"""
YAML loading and parsing for stockledger configuration.

* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key -> ``ValueError``.
* Wrong value type -> ``ValueError`` from the dataclass constructors.
"""

from __future__ import annotations

import copy
import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from stockledger_config.schema import (
    CostingPolicy,
    DatabaseSettings,
    LoggingSettings,
    StockLedgerConfig,
)

_SECTIONS: dict[str, type] = {
    "database": DatabaseSettings,
    "costing": CostingPolicy,
    "logging": LoggingSettings,
}

_TOP_LEVEL_KEYS = frozenset({"config_id", "version", *_SECTIONS})


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` merged in. Nested mappings merge; others replace."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_section(name: str, data: Any) -> Any:
    cls = _SECTIONS[name]
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Section {name!r} must be a mapping")
    known = {f.name: f.type for f in dataclasses.fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown keys in {name!r}: {sorted(unknown)}")
    for key, value in data.items():
        _check_type(name, key, value, getattr(cls(), key))
    return cls(**data)


def _check_type(section: str, key: str, value: Any, default: Any) -> None:
    if isinstance(default, bool):
        ok = isinstance(value, bool)
    elif isinstance(default, float):
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif isinstance(default, int):
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, type(default))
    if not ok:
        raise ValueError(
            f"{section}.{key}: expected {type(default).__name__}, "
            f"got {type(value).__name__}"
        )


def parse_config(data: dict[str, Any]) -> StockLedgerConfig:
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
    return StockLedgerConfig(
        config_id=str(data.get("config_id", "stockledger")),
        version=int(data.get("version", 1)),
        database=_parse_section("database", data.get("database")),
        costing=_parse_section("costing", data.get("costing")),
        logging=_parse_section("logging", data.get("logging")),
        checksum=compute_checksum(data),
    )
