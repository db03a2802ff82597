#!/usr/bin/env python3
"""
Create the stockledger schema.

Reads the database URL from the active configuration (or --db-url), creates
every table that does not exist yet and, with --reset, drops them first.

Usage:
  python3 scripts/init_db.py
  python3 scripts/init_db.py --config local.yaml
  python3 scripts/init_db.py --db-url sqlite:///dev.db --reset
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create the stockledger schema")
    p.add_argument("--config", help="YAML file merged over the packaged defaults")
    p.add_argument("--db-url", help="Database URL (overrides the configuration)")
    p.add_argument(
        "--reset",
        action="store_true",
        help="Drop all tables before creating them. Destroys every cost layer.",
    )
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    from stockledger_config import get_active_config
    from stockledger_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
    )
    from stockledger_kernel.logging_config import configure_logging

    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=config.logging.level)
    db = config.database
    url = args.db_url or db.url

    print()
    print("  [1/2] Connecting...")
    try:
        init_engine_from_url(
            url,
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

    if args.reset:
        print("  [2/2] Dropping and recreating tables...")
        drop_tables()
    else:
        print("  [2/2] Creating tables...")
    create_tables()

    print()
    print(f"  Done. Schema ready (config {config.config_id}, checksum {config.checksum[:12]}).")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
