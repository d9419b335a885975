"""
Allocate revenue for dataset sales the webhook could not allocate.

Safe to run on a schedule: allocation is idempotent per sale.
"""
from __future__ import annotations

import argparse
import os

from sovrn.core.config import settings
from sovrn.core.logging import configure_logging
from sovrn.features.revenue.recovery_job import allocate_pending_sales


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Allocate revenue for unallocated dataset sales.")
    parser.add_argument("--limit", type=int, default=int(os.getenv("SOVRN_ALLOCATION_BATCH_LIMIT", "100")))
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    report = allocate_pending_sales(limit=args.limit)
    print(report)
    return 1 if report["failed_sale_ids"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
