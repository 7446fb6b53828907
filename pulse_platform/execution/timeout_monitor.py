#!/usr/bin/env python3
"""
TimeoutMonitorService
=====================

Periodic recovery sweep. Restarts are safe: all state lives in the store.

- Parent IN_PROGRESS with no slices, untouched for SPLIT_TIMEOUT_SECONDS
  → back to PENDING (splitter crashed between claim and slice batch)
- Slice IN_PROGRESS for longer than EXECUTION_TIMEOUT_SECONDS
  → FAILED "execution timeout", broker is NOT called, parent rolled up

Every update re-checks the observed state and the cutoff, so a worker
that finishes just before the sweep is never overwritten.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from pulse_platform.execution.rollup import recompute_parent_status
from pulse_platform.persistence.repository import OrderSliceRepository, ParentOrderRepository
from pulse_platform.services.service_manager import PollingService
from pulse_platform.utils.utils import utc_now

EXECUTION_TIMEOUT_ERROR = "execution timeout"


class TimeoutMonitorService(PollingService):

    SWEEP_LIMIT = 100

    def __init__(
        self,
        interval: float = 30.0,
        split_timeout_seconds: int = 300,
        execution_timeout_seconds: int = 120,
        order_repo: Optional[ParentOrderRepository] = None,
        slice_repo: Optional[OrderSliceRepository] = None,
        clock: Callable[[], datetime] = utc_now,
        name: str = "timeout_monitor",
    ):
        super().__init__(name=name, component_key='timeout_monitor', interval=interval)
        self.split_timeout = timedelta(seconds=split_timeout_seconds)
        self.execution_timeout = timedelta(seconds=execution_timeout_seconds)
        self.order_repo = order_repo or ParentOrderRepository()
        self.slice_repo = slice_repo or OrderSliceRepository()
        self.clock = clock

    def poll_once(self) -> int:
        now = self.clock()
        return self.reset_stale_splits(now) + self.fail_stale_slices(now)

    # --------------------------------------------------
    # SWEEPS
    # --------------------------------------------------

    def reset_stale_splits(self, now: datetime) -> int:
        cutoff = now - self.split_timeout
        reset = 0

        for order_id in self.order_repo.find_stale_splits(cutoff, self.SWEEP_LIMIT):
            if self.order_repo.reset_stale_split(order_id, cutoff, now):
                reset += 1
                self.logger.warning(
                    "SPLIT_TIMEOUT_RESET | order_id=%s | IN_PROGRESS -> PENDING",
                    order_id,
                )

        return reset

    def fail_stale_slices(self, now: datetime) -> int:
        cutoff = now - self.execution_timeout
        failed = 0

        for slice_id, parent_order_id in self.slice_repo.find_stale_in_progress(cutoff, self.SWEEP_LIMIT):
            if not self.slice_repo.fail_stale(slice_id, cutoff, EXECUTION_TIMEOUT_ERROR, now):
                continue

            failed += 1
            self.logger.error(
                "SLICE_TIMEOUT | slice_id=%s | parent=%s | no broker outcome within %ss",
                slice_id,
                parent_order_id,
                int(self.execution_timeout.total_seconds()),
            )
            recompute_parent_status(parent_order_id, now, self.order_repo, self.slice_repo)

        if failed:
            self.logger.info("Timeout sweep failed %d stale slice(s)", failed)
        return failed
