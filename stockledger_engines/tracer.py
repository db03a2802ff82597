"""
Engine invocation tracer emitting STOCKLEDGER_ENGINE_TRACE.

``@traced_engine`` wraps a pure engine function and logs one structured record
per call: engine name and version, a short fingerprint of the selected
arguments, the duration, and whether the call returned or raised. Arguments
are bound against the function signature, so positional and keyword calls
fingerprint identically.

Usage:
    @traced_engine("fifo", "1.0", fingerprint_fields=("product_id", "quantity"))
    def plan_fifo_consumption(product_id, layers, quantity):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable
from datetime import date, datetime
from typing import Any
from uuid import UUID

from stockledger_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

TRACE_TYPE = "STOCKLEDGER_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    """Stable text form of a value. Dict keys are sorted, sequences keep order."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, str, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize(
            {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        )
    if isinstance(value, dict):
        items = sorted((str(k), v) for k, v in value.items())
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return repr(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """SHA-256 prefix (16 hex chars) of the named arguments. Missing ones hash as null."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(
                    fingerprint_fields, dict(bound.arguments)
                )

            outcome = "ok"
            started = time.monotonic()
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                outcome = type(exc).__name__
                raise
            finally:
                logger.info(
                    TRACE_TYPE,
                    extra={
                        "trace_type": TRACE_TYPE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "function": func.__qualname__,
                        "outcome": outcome,
                    },
                )

        return wrapper

    return decorator
