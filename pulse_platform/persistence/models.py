#===================================================================
# ORDER QUEUE STATUS CONTRACT
#
# Parent order (splitting lifecycle):
#   PENDING      : accepted at ingress, waiting for a splitter
#   IN_PROGRESS  : claimed by a splitter / slices executing
#   DONE         : every slice PROCESSED
#   SKIPPED      : unrecoverable (partition impossible or slices failed)
#
# Order slice (execution lifecycle):
#   SCHEDULED    : waiting for scheduled_at
#   IN_PROGRESS  : claimed by an executor, broker call in flight
#   PROCESSED    : broker accepted, broker_order_id stored
#   FAILED       : broker rejected or execution timed out
#===================================================================

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from pulse_platform.utils.utils import parse_db_timestamp, to_db_timestamp


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    SKIPPED = "SKIPPED"


class SliceStage(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


SIDES = ("BUY", "SELL")

# split_config bounds
MIN_SPLITS, MAX_SPLITS = 2, 100
MIN_DURATION_MINUTES, MAX_DURATION_MINUTES = 1, 1440


@dataclass(frozen=True)
class SplitConfig:
    num_splits: int
    duration_minutes: int
    randomize: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "num_splits": self.num_splits,
            "duration_minutes": self.duration_minutes,
            "randomize": self.randomize,
        }


@dataclass
class ParentOrderRecord:
    # ---- Identity ----
    order_id: str
    order_unique_key: str

    # ---- Instrument ----
    instrument: str             # EXCHANGE:SYMBOL
    side: str                   # BUY | SELL
    total_quantity: int
    split_config: SplitConfig

    # ---- State ----
    status: OrderStatus
    skip_reason: Optional[str]
    request_payload: str        # canonical JSON, idempotency comparison
    created_at: datetime
    updated_at: datetime
    split_completed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ParentOrderRecord":
        return cls(
            order_id=row["order_id"],
            order_unique_key=row["order_unique_key"],
            instrument=row["instrument"],
            side=row["side"],
            total_quantity=row["total_quantity"],
            split_config=SplitConfig(
                num_splits=row["num_splits"],
                duration_minutes=row["duration_minutes"],
                randomize=bool(row["randomize"]),
            ),
            status=OrderStatus(row["status"]),
            skip_reason=row["skip_reason"],
            request_payload=row["request_payload"],
            created_at=parse_db_timestamp(row["created_at"]),
            updated_at=parse_db_timestamp(row["updated_at"]),
            split_completed_at=parse_db_timestamp(row["split_completed_at"]),
            completed_at=parse_db_timestamp(row["completed_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_unique_key": self.order_unique_key,
            "instrument": self.instrument,
            "side": self.side,
            "total_quantity": self.total_quantity,
            "split_config": self.split_config.to_dict(),
            "status": self.status.value,
            "skip_reason": self.skip_reason,
            "created_at": to_db_timestamp(self.created_at),
            "updated_at": to_db_timestamp(self.updated_at),
            "split_completed_at": to_db_timestamp(self.split_completed_at),
            "completed_at": to_db_timestamp(self.completed_at),
        }


@dataclass
class OrderSliceRecord:
    slice_id: str
    parent_order_id: str
    sequence_index: int
    quantity: int
    scheduled_at: datetime
    stage: SliceStage = SliceStage.SCHEDULED
    broker_order_id: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "OrderSliceRecord":
        return cls(
            slice_id=row["slice_id"],
            parent_order_id=row["parent_order_id"],
            sequence_index=row["sequence_index"],
            quantity=row["quantity"],
            scheduled_at=parse_db_timestamp(row["scheduled_at"]),
            stage=SliceStage(row["stage"]),
            broker_order_id=row["broker_order_id"],
            error=row["error"],
            started_at=parse_db_timestamp(row["started_at"]),
            completed_at=parse_db_timestamp(row["completed_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slice_id": self.slice_id,
            "parent_order_id": self.parent_order_id,
            "sequence_index": self.sequence_index,
            "quantity": self.quantity,
            "scheduled_at": to_db_timestamp(self.scheduled_at),
            "stage": self.stage.value,
            "broker_order_id": self.broker_order_id,
            "error": self.error,
            "started_at": to_db_timestamp(self.started_at),
            "completed_at": to_db_timestamp(self.completed_at),
        }


@dataclass
class DueSlice:
    """A SCHEDULED slice joined with the parent fields the broker needs."""
    slice_id: str
    parent_order_id: str
    sequence_index: int
    quantity: int
    scheduled_at: datetime
    instrument: str
    side: str


@dataclass(frozen=True)
class SliceAggregate:
    """Per-parent slice counts, always recomputed from the slice table."""
    total: int = 0
    scheduled: int = 0
    in_progress: int = 0
    processed: int = 0
    failed: int = 0
    processed_quantity: int = 0

    @property
    def all_processed(self) -> bool:
        return self.total > 0 and self.processed == self.total

    @property
    def all_terminal(self) -> bool:
        return self.total > 0 and self.processed + self.failed == self.total

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "scheduled": self.scheduled,
            "in_progress": self.in_progress,
            "processed": self.processed,
            "failed": self.failed,
            "processed_quantity": self.processed_quantity,
        }
