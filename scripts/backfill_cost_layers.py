#!/usr/bin/env python3
"""
Backfill FIFO cost layers for legacy stock.

Products that carry stock but have no active cost layer (data that predates
FIFO costing) get one MIGRATION layer covering their current stock at cost,
or at price when no cost is recorded. Products that already have layers are
left alone, so the script can be re-run safely.

Usage:
  python3 scripts/backfill_cost_layers.py
  python3 scripts/backfill_cost_layers.py --tenant-id 3f0c...  --dry-run
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create MIGRATION cost layers for legacy stock")
    p.add_argument("--config", help="YAML file merged over the packaged defaults")
    p.add_argument("--db-url", help="Database URL (overrides the configuration)")
    p.add_argument("--tenant-id", type=UUID, help="Only backfill this tenant's products")
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many layers would be created, then roll back",
    )
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    from stockledger_config import get_active_config
    from stockledger_kernel.db.engine import get_session, init_engine_from_url
    from stockledger_kernel.db.immutability import register_immutability_listeners
    from stockledger_kernel.logging_config import configure_logging
    from stockledger_services.fifo_cost_service import FifoCostService

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=config.logging.level)
    db = config.database
    try:
        init_engine_from_url(
            args.db_url or db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            busy_timeout=db.busy_timeout,
        )
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1
    register_immutability_listeners()

    session = get_session()
    try:
        fifo = FifoCostService(session, policy=config.costing)
        created = fifo.backfill_legacy_layers(tenant_id=args.tenant_id)
        if args.dry_run:
            session.rollback()
        else:
            session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    verb = "would be created" if args.dry_run else "created"
    print(f"  {created} migration layer(s) {verb}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
