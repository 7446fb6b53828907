#!/usr/bin/env python3
"""
SliceExecutorService
====================

Slice state machine: SCHEDULED → IN_PROGRESS → PROCESSED | FAILED

Each iteration:
  1. Fetch a bounded batch of SCHEDULED slices with scheduled_at <= now
  2. Claim each one (conditional UPDATE, zero rows = another executor won)
  3. Call the broker exactly once for a claimed slice
  4. Record the outcome (conditional on IN_PROGRESS)
  5. Recompute the parent's aggregate from the slice table

No row lock is held across the broker call.
"""

from datetime import datetime
from typing import Callable, Optional

from pulse_platform.brokers.base import BrokerClient
from pulse_platform.execution.errors import BrokerError
from pulse_platform.execution.rollup import recompute_parent_status
from pulse_platform.persistence.models import DueSlice
from pulse_platform.persistence.repository import OrderSliceRepository, ParentOrderRepository
from pulse_platform.services.service_manager import PollingService
from pulse_platform.utils.utils import utc_now


class SliceExecutorService(PollingService):

    def __init__(
        self,
        broker: BrokerClient,
        poll_interval: float = 0.5,
        batch_size: int = 50,
        order_repo: Optional[ParentOrderRepository] = None,
        slice_repo: Optional[OrderSliceRepository] = None,
        clock: Callable[[], datetime] = utc_now,
        name: str = "slice_executor",
    ):
        super().__init__(name=name, component_key='slice_executor', interval=poll_interval)
        self.broker = broker
        self.batch_size = batch_size
        self.order_repo = order_repo or ParentOrderRepository()
        self.slice_repo = slice_repo or OrderSliceRepository()
        self.clock = clock

    # --------------------------------------------------
    # LOOP BODY
    # --------------------------------------------------

    def poll_once(self) -> int:
        due = self.slice_repo.get_due_slices(self.clock(), self.batch_size)
        executed = 0

        for item in due:
            try:
                if self.execute_slice(item):
                    executed += 1
            except Exception:
                # keep going with the rest of the batch
                self.logger.exception("SLICE_LOOP_ERROR | slice_id=%s", item.slice_id)

        return executed

    def execute_slice(self, item: DueSlice) -> bool:
        """
        Claim and execute one due slice.

        Returns False when the claim was lost (slice skipped silently).
        """
        if not self.slice_repo.claim(item.slice_id, self.clock()):
            return False

        self.logger.info(
            "SLICE_CLAIMED | slice_id=%s | parent=%s | seq=%s | %s %s x%s",
            item.slice_id,
            item.parent_order_id,
            item.sequence_index,
            item.side,
            item.instrument,
            item.quantity,
        )

        try:
            broker_order_id = self.broker.place_order(item.instrument, item.side, item.quantity)
        except BrokerError as e:
            self._record_failure(item, str(e))
        except Exception as e:
            self._record_failure(item, f"{type(e).__name__}: {e}")
        else:
            self._record_success(item, broker_order_id)

        recompute_parent_status(item.parent_order_id, self.clock(), self.order_repo, self.slice_repo)
        return True

    # --------------------------------------------------
    # OUTCOMES
    # --------------------------------------------------

    def _record_success(self, item: DueSlice, broker_order_id: str) -> None:
        if self.slice_repo.mark_processed(item.slice_id, broker_order_id, self.clock()):
            self.logger.info(
                "SLICE_PROCESSED | slice_id=%s | broker_order_id=%s",
                item.slice_id,
                broker_order_id,
            )
            return

        # Timeout monitor failed the slice while the broker call was in flight
        self.logger.error(
            "LATE_BROKER_SUCCESS | slice_id=%s | parent=%s | broker_order_id=%s | "
            "slice already terminal, broker order needs reconciliation",
            item.slice_id,
            item.parent_order_id,
            broker_order_id,
        )

    def _record_failure(self, item: DueSlice, error: str) -> None:
        if self.slice_repo.mark_failed(item.slice_id, error, self.clock()):
            self.logger.error("SLICE_FAILED | slice_id=%s | %s", item.slice_id, error)
        else:
            self.logger.warning(
                "SLICE_FAILURE_IGNORED | slice_id=%s | already terminal | %s",
                item.slice_id,
                error,
            )
