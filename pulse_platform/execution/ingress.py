# ======================================================================
# Component : OrderIngressService (Ingress Deduplicator)
#
# Guarantees:
#   - Validation before any write
#   - One row per order_unique_key (UNIQUE index is the arbiter)
#   - Same key + byte-equal payload  -> existing order returned
#   - Same key + different payload   -> DuplicateKeyConflict
#   - Losing a concurrent insert race is invisible to the caller
# ======================================================================

import sqlite3
import uuid
from datetime import datetime
from typing import Callable, Optional

from pulse_platform.execution.errors import DuplicateKeyConflict
from pulse_platform.execution.validation import validate_order_request
from pulse_platform.logging.logger_config import get_component_logger
from pulse_platform.persistence.models import OrderStatus, ParentOrderRecord, SplitConfig
from pulse_platform.persistence.repository import ParentOrderRepository
from pulse_platform.utils.utils import canonical_json, utc_now

logger = get_component_logger('ingress')


def build_request_payload(
    instrument: str,
    side: str,
    total_quantity: int,
    split_config: SplitConfig,
) -> str:
    """Canonical JSON of the fields that define an order's identity."""
    return canonical_json({
        "instrument": instrument,
        "side": side,
        "total_quantity": total_quantity,
        "split_config": split_config.to_dict(),
    })


class OrderIngressService:
    """
    SINGLE GATE for parent order creation.
    """

    def __init__(
        self,
        order_repo: Optional[ParentOrderRepository] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.order_repo = order_repo or ParentOrderRepository()
        self.clock = clock

    def create_order(
        self,
        order_unique_key: str,
        instrument: str,
        side: str,
        total_quantity: int,
        split_config: SplitConfig,
    ) -> ParentOrderRecord:
        validate_order_request(order_unique_key, instrument, side, total_quantity, split_config)

        payload = build_request_payload(instrument, side, total_quantity, split_config)

        existing = self.order_repo.get_by_unique_key(order_unique_key)
        if existing is not None:
            return self._resolve_existing(existing, payload)

        now = self.clock()
        record = ParentOrderRecord(
            order_id=str(uuid.uuid4()),
            order_unique_key=order_unique_key,
            instrument=instrument,
            side=side,
            total_quantity=total_quantity,
            split_config=split_config,
            status=OrderStatus.PENDING,
            skip_reason=None,
            request_payload=payload,
            created_at=now,
            updated_at=now,
        )

        try:
            self.order_repo.insert(record)
        except sqlite3.IntegrityError:
            # Lost the race to a concurrent submission with the same key
            winner = self.order_repo.get_by_unique_key(order_unique_key)
            if winner is None:
                raise
            logger.info(
                "INGRESS_RACE_LOST | key=%s | winner=%s",
                order_unique_key,
                winner.order_id,
            )
            return self._resolve_existing(winner, payload)

        logger.info(
            "ORDER_CREATED | order_id=%s | key=%s | %s %s x%s | splits=%s over %sm | randomize=%s",
            record.order_id,
            order_unique_key,
            side,
            instrument,
            total_quantity,
            split_config.num_splits,
            split_config.duration_minutes,
            split_config.randomize,
        )
        return record

    # --------------------------------------------------
    # INTERNAL
    # --------------------------------------------------

    def _resolve_existing(self, existing: ParentOrderRecord, payload: str) -> ParentOrderRecord:
        if existing.request_payload == payload:
            logger.info(
                "IDEMPOTENT_REPLAY | key=%s | order_id=%s",
                existing.order_unique_key,
                existing.order_id,
            )
            return existing

        logger.warning(
            "DUPLICATE_KEY_CONFLICT | key=%s | existing_order_id=%s",
            existing.order_unique_key,
            existing.order_id,
        )
        raise DuplicateKeyConflict(existing.order_unique_key, existing.order_id)
