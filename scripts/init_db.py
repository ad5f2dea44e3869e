"""
Create the mobile order tables in the configured database.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mobile_order.config import get_settings
from mobile_order.db import SqlDbClient

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create database tables")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy URL (defaults to DATABASE_URL)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    database_url = args.database_url or get_settings().database_url
    if not database_url:
        logger.error("DATABASE_URL is not set and --database-url was not given")
        return 1

    client = SqlDbClient(database_url)
    if not client.ping():
        logger.error("Database did not answer after creating tables")
        return 1
    logger.info(
        "Tables are ready at %s",
        client.engine.url.render_as_string(hide_password=True),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
