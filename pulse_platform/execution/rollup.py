"""
Parent aggregate rollup.

The parent's terminal status is derived from a fresh recount of its slices
every time; there is no stored counter to drift under concurrent
completions. Transitions are conditional on status IN_PROGRESS, so two
workers recomputing the same parent at once flip it at most once.
"""

import logging
from datetime import datetime
from typing import Optional

from pulse_platform.persistence.models import OrderStatus, SliceAggregate
from pulse_platform.persistence.repository import OrderSliceRepository, ParentOrderRepository

logger = logging.getLogger(__name__)


def recompute_parent_status(
    parent_order_id: str,
    now: datetime,
    order_repo: ParentOrderRepository,
    slice_repo: OrderSliceRepository,
) -> Optional[OrderStatus]:
    """
    Returns the status this call moved the parent to, or None if unchanged.

    - all slices PROCESSED                  -> DONE
    - all slices terminal, at least 1 FAILED -> SKIPPED (no retry in v1)
    """
    agg: SliceAggregate = slice_repo.aggregate_for_parent(parent_order_id)

    if agg.all_processed:
        if order_repo.mark_done(parent_order_id, now):
            logger.info(
                "PARENT_DONE | order_id=%s | slices=%s | qty=%s",
                parent_order_id,
                agg.total,
                agg.processed_quantity,
            )
            return OrderStatus.DONE
        return None

    if agg.all_terminal and agg.failed > 0:
        reason = f"{agg.failed} of {agg.total} slices failed"
        if order_repo.mark_skipped(parent_order_id, reason, now):
            logger.warning(
                "PARENT_SKIPPED | order_id=%s | %s | processed_qty=%s",
                parent_order_id,
                reason,
                agg.processed_quantity,
            )
            return OrderStatus.SKIPPED
        return None

    return None
