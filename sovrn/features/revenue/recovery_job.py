"""
Out-of-band allocation recovery.

The webhook never retries a failed allocation; this job picks up dataset
sales that have no allocation batch yet and runs the allocator for each.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import select

from sovrn.core.database import dataset_sales, get_db_session, revenue_allocations
from sovrn.core.errors import AllocationError
from sovrn.core.logging import log_event
from sovrn.features.revenue.allocator import RevenueAllocator


def find_unallocated_sales(limit: int = 100) -> list[int]:
    with get_db_session() as session:
        rows = session.execute(
            select(dataset_sales.c.id)
            .select_from(
                dataset_sales.outerjoin(
                    revenue_allocations, revenue_allocations.c.sale_id == dataset_sales.c.id
                )
            )
            .where(revenue_allocations.c.id.is_(None))
            .order_by(dataset_sales.c.id)
            .limit(limit)
        ).fetchall()
    return [row[0] for row in rows]


def allocate_pending_sales(limit: int = 100, allocator: Optional[RevenueAllocator] = None) -> Dict[str, Any]:
    allocator = allocator or RevenueAllocator()
    report: Dict[str, Any] = {"scanned": 0, "failed_sale_ids": []}

    for sale_id in find_unallocated_sales(limit):
        report["scanned"] += 1
        try:
            result = allocator.allocate(sale_id)
        except AllocationError as e:
            log_event("error", "revenue.recovery_failed", error_code=e.code, extra={"sale_id": sale_id, "error": e.message})
            report["failed_sale_ids"].append(sale_id)
            continue
        report[result.status] = report.get(result.status, 0) + 1

    log_event("info", "revenue.recovery_complete", extra={"scanned": report["scanned"], "failed": len(report["failed_sale_ids"])})
    return report
