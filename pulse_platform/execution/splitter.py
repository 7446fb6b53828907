#!/usr/bin/env python3
"""
SplitterService
===============

Parent order state machine: PENDING → IN_PROGRESS → DONE | SKIPPED

Each iteration:
  1. Exclusively claim at most one PENDING parent (claim flips it to
     IN_PROGRESS before any work, so a crash here is visible to the
     timeout monitor)
  2. Partition quantity and schedule over the order's duration window
  3. Persist all slices in one transaction (no second batch on retry)
  4. Partition impossible → SKIPPED with reason (terminal, never dropped)

Invariants:
- A parent is split by exactly one worker, whatever the number of instances
- Slice quantities sum to total_quantity, each slice >= 1
- scheduled_at is non-decreasing in sequence_index, inside the window
"""

import random
import uuid
from datetime import datetime
from typing import Callable, Optional

from pulse_platform.execution.errors import PartitionError
from pulse_platform.execution.partition import build_slice_plan
from pulse_platform.execution.rollup import recompute_parent_status
from pulse_platform.persistence.models import OrderSliceRecord, ParentOrderRecord
from pulse_platform.persistence.repository import OrderSliceRepository, ParentOrderRepository
from pulse_platform.services.service_manager import PollingService
from pulse_platform.utils.utils import utc_now


class SplitterService(PollingService):

    def __init__(
        self,
        poll_interval: float = 1.0,
        order_repo: Optional[ParentOrderRepository] = None,
        slice_repo: Optional[OrderSliceRepository] = None,
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
        name: str = "splitter",
    ):
        super().__init__(name=name, component_key='splitter', interval=poll_interval)
        self.order_repo = order_repo or ParentOrderRepository()
        self.slice_repo = slice_repo or OrderSliceRepository()
        self.clock = clock
        self.rng = rng or random.Random()

    # --------------------------------------------------
    # LOOP BODY
    # --------------------------------------------------

    def poll_once(self) -> int:
        order = self.order_repo.claim_next_pending(self.clock())
        if order is None:
            return 0

        self.logger.info(
            "SPLIT_CLAIMED | order_id=%s | %s %s x%s | splits=%s",
            order.order_id,
            order.side,
            order.instrument,
            order.total_quantity,
            order.split_config.num_splits,
        )

        try:
            self.split_order(order)
        except PartitionError as e:
            reason = f"partition impossible: {e}"
            self.order_repo.mark_skipped(order.order_id, reason, self.clock())
            self.logger.error("SPLIT_SKIPPED | order_id=%s | %s", order.order_id, reason)
        return 1

    def split_order(self, order: ParentOrderRecord) -> bool:
        """
        Build and persist the slice batch for a claimed parent.

        Returns False when nothing was written: either the parent already
        owns slices (the parent is then re-rolled up from them) or the claim
        was lost to a split-timeout reset.
        """
        plan = build_slice_plan(
            total_quantity=order.total_quantity,
            split_config=order.split_config,
            start=order.created_at,
            rng=self.rng,
        )

        slices = [
            OrderSliceRecord(
                slice_id=str(uuid.uuid4()),
                parent_order_id=order.order_id,
                sequence_index=p.sequence_index,
                quantity=p.quantity,
                scheduled_at=p.scheduled_at,
            )
            for p in plan
        ]

        created = self.slice_repo.create_slices_for_parent(order.order_id, slices, self.clock())
        if not created:
            if self.slice_repo.aggregate_for_parent(order.order_id).total == 0:
                self.logger.warning(
                    "SPLIT_ABANDONED | order_id=%s | parent no longer IN_PROGRESS, batch discarded",
                    order.order_id,
                )
                return False

            self.logger.warning(
                "SPLIT_ALREADY_PERSISTED | order_id=%s | keeping existing slices",
                order.order_id,
            )
            # slices may have finished before this claim; the executor's
            # rollup only moves an IN_PROGRESS parent
            recompute_parent_status(order.order_id, self.clock(), self.order_repo, self.slice_repo)
            return False

        self.logger.info(
            "SPLIT_DONE | order_id=%s | quantities=%s | first=%s | last=%s",
            order.order_id,
            [s.quantity for s in slices],
            slices[0].scheduled_at.isoformat(),
            slices[-1].scheduled_at.isoformat(),
        )
        return True
