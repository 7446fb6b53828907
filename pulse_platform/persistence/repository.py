# ===================================================================
# ORDER STORE + SLICE STORE
#
# Guarantees:
# - Every state transition is a conditional UPDATE on the observed state
#   (compare-and-set); callers inspect the returned bool / rowcount
# - Multi-statement work (claim, slice batch) runs under BEGIN IMMEDIATE
# - Aggregates are computed from child rows, never stored as counters
# - No business logic, no broker access
# ===================================================================

from datetime import datetime
from typing import List, Optional, Dict, Any, Tuple

from pulse_platform.persistence.database import db_session, transaction
from pulse_platform.persistence.models import (
    DueSlice,
    OrderSliceRecord,
    OrderStatus,
    ParentOrderRecord,
    SliceAggregate,
    SliceStage,
)
from pulse_platform.utils.utils import parse_db_timestamp, to_db_timestamp


class ParentOrderRepository:
    """
    SINGLE SOURCE OF TRUTH for parent orders.
    """

    # -----------------------------
    # CREATE
    # -----------------------------
    def insert(self, record: ParentOrderRecord) -> None:
        """
        Insert a new parent order.

        Raises sqlite3.IntegrityError when order_unique_key already exists;
        the ingress layer turns that into a read of the winning row.
        """
        with db_session() as conn:
            conn.execute(
                """
                INSERT INTO parent_orders (
                    order_id,
                    order_unique_key,

                    instrument,
                    side,
                    total_quantity,

                    num_splits,
                    duration_minutes,
                    randomize,

                    status,
                    skip_reason,
                    request_payload,

                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.order_id,
                    record.order_unique_key,

                    record.instrument,
                    record.side,
                    record.total_quantity,

                    record.split_config.num_splits,
                    record.split_config.duration_minutes,
                    int(record.split_config.randomize),

                    record.status.value,
                    record.skip_reason,
                    record.request_payload,

                    to_db_timestamp(record.created_at),
                    to_db_timestamp(record.updated_at),
                ),
            )

    # -----------------------------
    # READ
    # -----------------------------
    def get_by_id(self, order_id: str) -> Optional[ParentOrderRecord]:
        with db_session() as conn:
            row = conn.execute(
                "SELECT * FROM parent_orders WHERE order_id = ?",
                (order_id,),
            ).fetchone()
        return ParentOrderRecord.from_row(row) if row else None

    def get_by_unique_key(self, order_unique_key: str) -> Optional[ParentOrderRecord]:
        with db_session() as conn:
            row = conn.execute(
                "SELECT * FROM parent_orders WHERE order_unique_key = ?",
                (order_unique_key,),
            ).fetchone()
        return ParentOrderRecord.from_row(row) if row else None

    def list_orders(self, status: Optional[OrderStatus] = None, limit: int = 200) -> List[ParentOrderRecord]:
        """Latest orders first. Read-only helper for the API."""
        with db_session() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM parent_orders ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM parent_orders
                    WHERE status = ?
                    ORDER BY created_at DESC
                    LIMIT ?
                    """,
                    (status.value, limit),
                ).fetchall()
        return [ParentOrderRecord.from_row(r) for r in rows]

    def count_by_status(self) -> Dict[str, int]:
        with db_session() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS cnt FROM parent_orders GROUP BY status"
            ).fetchall()
        counts = {s.value: 0 for s in OrderStatus}
        counts.update({r["status"]: int(r["cnt"]) for r in rows})
        return counts

    def get_history(self, order_id: str) -> List[Dict[str, Any]]:
        with db_session() as conn:
            rows = conn.execute(
                """
                SELECT operation, status, skip_reason, changed_at
                FROM parent_order_history
                WHERE order_id = ?
                ORDER BY history_id
                """,
                (order_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    # -----------------------------
    # SPLITTER CLAIM
    # -----------------------------
    def claim_next_pending(self, now: datetime) -> Optional[ParentOrderRecord]:
        """
        Exclusively claim the oldest PENDING parent and flip it to IN_PROGRESS.

        SQLite has no SELECT ... FOR UPDATE SKIP LOCKED. BEGIN IMMEDIATE
        serializes claimants on the write lock and the conditional UPDATE
        makes a lost race visible as zero rows affected.
        """
        ts = to_db_timestamp(now)
        with db_session() as conn:
            with transaction(conn):
                row = conn.execute(
                    """
                    SELECT order_id
                    FROM parent_orders
                    WHERE status = 'PENDING'
                    ORDER BY created_at, order_id
                    LIMIT 1
                    """
                ).fetchone()
                if row is None:
                    return None

                cur = conn.execute(
                    """
                    UPDATE parent_orders
                    SET status = 'IN_PROGRESS', updated_at = ?
                    WHERE order_id = ?
                      AND status = 'PENDING'
                    """,
                    (ts, row["order_id"]),
                )
                if cur.rowcount == 0:
                    return None

                claimed = conn.execute(
                    "SELECT * FROM parent_orders WHERE order_id = ?",
                    (row["order_id"],),
                ).fetchone()

        return ParentOrderRecord.from_row(claimed)

    # -----------------------------
    # TERMINAL TRANSITIONS
    # -----------------------------
    def mark_done(self, order_id: str, now: datetime) -> bool:
        ts = to_db_timestamp(now)
        with db_session() as conn:
            cur = conn.execute(
                """
                UPDATE parent_orders
                SET status = 'DONE', updated_at = ?, completed_at = ?
                WHERE order_id = ?
                  AND status = 'IN_PROGRESS'
                """,
                (ts, ts, order_id),
            )
        return cur.rowcount == 1

    def mark_skipped(self, order_id: str, reason: str, now: datetime) -> bool:
        ts = to_db_timestamp(now)
        with db_session() as conn:
            cur = conn.execute(
                """
                UPDATE parent_orders
                SET status = 'SKIPPED', skip_reason = ?, updated_at = ?, completed_at = ?
                WHERE order_id = ?
                  AND status = 'IN_PROGRESS'
                """,
                (reason, ts, ts, order_id),
            )
        return cur.rowcount == 1

    # -----------------------------
    # TIMEOUT RECOVERY
    # -----------------------------
    def find_stale_splits(self, cutoff: datetime, limit: int = 100) -> List[str]:
        """IN_PROGRESS parents untouched since cutoff that own no slices."""
        with db_session() as conn:
            rows = conn.execute(
                """
                SELECT order_id
                FROM parent_orders p
                WHERE p.status = 'IN_PROGRESS'
                  AND p.updated_at < ?
                  AND NOT EXISTS (
                      SELECT 1 FROM order_slices s WHERE s.parent_order_id = p.order_id
                  )
                ORDER BY p.updated_at
                LIMIT ?
                """,
                (to_db_timestamp(cutoff), limit),
            ).fetchall()
        return [r["order_id"] for r in rows]

    def reset_stale_split(self, order_id: str, cutoff: datetime, now: datetime) -> bool:
        """
        IN_PROGRESS -> PENDING, re-checking every condition in one statement
        so a fresh update or a late slice batch is never clobbered.
        """
        with db_session() as conn:
            cur = conn.execute(
                """
                UPDATE parent_orders
                SET status = 'PENDING', updated_at = ?
                WHERE order_id = ?
                  AND status = 'IN_PROGRESS'
                  AND updated_at < ?
                  AND NOT EXISTS (
                      SELECT 1 FROM order_slices s WHERE s.parent_order_id = parent_orders.order_id
                  )
                """,
                (to_db_timestamp(now), order_id, to_db_timestamp(cutoff)),
            )
        return cur.rowcount == 1


class OrderSliceRepository:
    """
    SINGLE SOURCE OF TRUTH for order slices.
    """

    # -----------------------------
    # CREATE (BATCH, IDEMPOTENT)
    # -----------------------------
    def create_slices_for_parent(
        self,
        parent_order_id: str,
        slices: List[OrderSliceRecord],
        now: datetime,
    ) -> bool:
        """
        Persist the whole slice batch in one transaction.

        Returns False without writing anything if the parent already owns
        slices (retry after a crash between batch write and status write),
        or if the parent is no longer IN_PROGRESS (the timeout monitor put
        it back to PENDING while this splitter was stalled).
        """
        ts = to_db_timestamp(now)
        with db_session() as conn:
            with transaction(conn):
                existing = conn.execute(
                    "SELECT COUNT(*) AS cnt FROM order_slices WHERE parent_order_id = ?",
                    (parent_order_id,),
                ).fetchone()
                if existing["cnt"] > 0:
                    return False

                cur = conn.execute(
                    """
                    UPDATE parent_orders
                    SET split_completed_at = ?, updated_at = ?
                    WHERE order_id = ?
                      AND status = 'IN_PROGRESS'
                    """,
                    (ts, ts, parent_order_id),
                )
                if cur.rowcount != 1:
                    return False

                conn.executemany(
                    """
                    INSERT INTO order_slices (
                        slice_id,
                        parent_order_id,
                        sequence_index,
                        quantity,
                        scheduled_at,
                        stage,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            s.slice_id,
                            parent_order_id,
                            s.sequence_index,
                            s.quantity,
                            to_db_timestamp(s.scheduled_at),
                            SliceStage.SCHEDULED.value,
                            ts,
                            ts,
                        )
                        for s in slices
                    ],
                )
        return True

    # -----------------------------
    # READ
    # -----------------------------
    def get_for_parent(self, parent_order_id: str) -> List[OrderSliceRecord]:
        with db_session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM order_slices
                WHERE parent_order_id = ?
                ORDER BY sequence_index
                """,
                (parent_order_id,),
            ).fetchall()
        return [OrderSliceRecord.from_row(r) for r in rows]

    def get_by_id(self, slice_id: str) -> Optional[OrderSliceRecord]:
        with db_session() as conn:
            row = conn.execute(
                "SELECT * FROM order_slices WHERE slice_id = ?",
                (slice_id,),
            ).fetchone()
        return OrderSliceRecord.from_row(row) if row else None

    def aggregate_for_parent(self, parent_order_id: str) -> SliceAggregate:
        """Recount slice stages for one parent straight from the table."""
        with db_session() as conn:
            rows = conn.execute(
                """
                SELECT stage, COUNT(*) AS cnt, COALESCE(SUM(quantity), 0) AS qty
                FROM order_slices
                WHERE parent_order_id = ?
                GROUP BY stage
                """,
                (parent_order_id,),
            ).fetchall()

        counts = {r["stage"]: (int(r["cnt"]), int(r["qty"])) for r in rows}

        def cnt(stage: SliceStage) -> int:
            return counts.get(stage.value, (0, 0))[0]

        return SliceAggregate(
            total=sum(c for c, _ in counts.values()),
            scheduled=cnt(SliceStage.SCHEDULED),
            in_progress=cnt(SliceStage.IN_PROGRESS),
            processed=cnt(SliceStage.PROCESSED),
            failed=cnt(SliceStage.FAILED),
            processed_quantity=counts.get(SliceStage.PROCESSED.value, (0, 0))[1],
        )

    # -----------------------------
    # EXECUTOR
    # -----------------------------
    def get_due_slices(self, now: datetime, limit: int) -> List[DueSlice]:
        with db_session() as conn:
            rows = conn.execute(
                """
                SELECT s.slice_id, s.parent_order_id, s.sequence_index,
                       s.quantity, s.scheduled_at, p.instrument, p.side
                FROM order_slices s
                JOIN parent_orders p ON p.order_id = s.parent_order_id
                WHERE s.stage = 'SCHEDULED'
                  AND s.scheduled_at <= ?
                ORDER BY s.scheduled_at, s.sequence_index
                LIMIT ?
                """,
                (to_db_timestamp(now), limit),
            ).fetchall()

        return [
            DueSlice(
                slice_id=r["slice_id"],
                parent_order_id=r["parent_order_id"],
                sequence_index=r["sequence_index"],
                quantity=r["quantity"],
                scheduled_at=parse_db_timestamp(r["scheduled_at"]),
                instrument=r["instrument"],
                side=r["side"],
            )
            for r in rows
        ]

    def claim(self, slice_id: str, now: datetime) -> bool:
        """SCHEDULED -> IN_PROGRESS. False means another executor won."""
        ts = to_db_timestamp(now)
        with db_session() as conn:
            cur = conn.execute(
                """
                UPDATE order_slices
                SET stage = 'IN_PROGRESS', started_at = ?, updated_at = ?
                WHERE slice_id = ?
                  AND stage = 'SCHEDULED'
                """,
                (ts, ts, slice_id),
            )
        return cur.rowcount == 1

    def mark_processed(self, slice_id: str, broker_order_id: str, now: datetime) -> bool:
        ts = to_db_timestamp(now)
        with db_session() as conn:
            cur = conn.execute(
                """
                UPDATE order_slices
                SET stage = 'PROCESSED', broker_order_id = ?, error = NULL,
                    completed_at = ?, updated_at = ?
                WHERE slice_id = ?
                  AND stage = 'IN_PROGRESS'
                """,
                (broker_order_id, ts, ts, slice_id),
            )
        return cur.rowcount == 1

    def mark_failed(self, slice_id: str, error: str, now: datetime) -> bool:
        ts = to_db_timestamp(now)
        with db_session() as conn:
            cur = conn.execute(
                """
                UPDATE order_slices
                SET stage = 'FAILED', error = ?, completed_at = ?, updated_at = ?
                WHERE slice_id = ?
                  AND stage = 'IN_PROGRESS'
                """,
                (error, ts, ts, slice_id),
            )
        return cur.rowcount == 1

    # -----------------------------
    # TIMEOUT RECOVERY
    # -----------------------------
    def find_stale_in_progress(self, cutoff: datetime, limit: int = 100) -> List[Tuple[str, str]]:
        """(slice_id, parent_order_id) of slices IN_PROGRESS since before cutoff."""
        with db_session() as conn:
            rows = conn.execute(
                """
                SELECT slice_id, parent_order_id
                FROM order_slices
                WHERE stage = 'IN_PROGRESS'
                  AND started_at < ?
                ORDER BY started_at
                LIMIT ?
                """,
                (to_db_timestamp(cutoff), limit),
            ).fetchall()
        return [(r["slice_id"], r["parent_order_id"]) for r in rows]

    def fail_stale(self, slice_id: str, cutoff: datetime, error: str, now: datetime) -> bool:
        ts = to_db_timestamp(now)
        with db_session() as conn:
            cur = conn.execute(
                """
                UPDATE order_slices
                SET stage = 'FAILED', error = ?, completed_at = ?, updated_at = ?
                WHERE slice_id = ?
                  AND stage = 'IN_PROGRESS'
                  AND started_at < ?
                """,
                (error, ts, ts, slice_id, to_db_timestamp(cutoff)),
            )
        return cur.rowcount == 1
