"""
Quantity / time partitioning for parent orders.

Pure functions, no I/O. Randomness comes from an injectable random.Random
so the splitter and the tests can control it.

Equal split:
    quantity[i] = total // N, last slice absorbs the remainder
    offset[i]   = i * duration / N

Randomized split:
    quantity[i] = round(share * U(0.8, 1.2)), at least 1, residual on the last
    offset[i]   = i * interval + U(-0.2, 0.2) * interval, clamped, re-sorted
"""

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from pulse_platform.execution.errors import PartitionError
from pulse_platform.persistence.models import (
    MAX_DURATION_MINUTES,
    MAX_SPLITS,
    MIN_DURATION_MINUTES,
    MIN_SPLITS,
    SplitConfig,
)

RANDOM_VARIATION = 0.20


@dataclass(frozen=True)
class PlannedSlice:
    sequence_index: int
    quantity: int
    scheduled_at: datetime


def split_quantity(
    total_quantity: int,
    num_splits: int,
    randomize: bool = False,
    rng: Optional[random.Random] = None,
) -> List[int]:
    """
    Partition total_quantity into num_splits positive integers summing
    exactly to total_quantity.
    """
    if num_splits < 1:
        raise PartitionError(f"num_splits must be >= 1, got {num_splits}")
    if total_quantity < num_splits:
        raise PartitionError(
            f"total_quantity {total_quantity} cannot fill {num_splits} slices with at least 1 each"
        )

    if not randomize:
        base = total_quantity // num_splits
        parts = [base] * num_splits
        parts[-1] += total_quantity - base * num_splits
        return parts

    rng = rng or random.Random()
    share = total_quantity / num_splits
    parts = [
        max(1, round(share * rng.uniform(1 - RANDOM_VARIATION, 1 + RANDOM_VARIATION)))
        for _ in range(num_splits)
    ]

    # residual goes to the last slice
    parts[-1] += total_quantity - sum(parts)

    if parts[-1] < 1:
        deficit = 1 - parts[-1]
        parts[-1] = 1
        for i in range(num_splits - 2, -1, -1):
            take = min(deficit, parts[i] - 1)
            parts[i] -= take
            deficit -= take
            if deficit == 0:
                break
        if deficit:
            raise PartitionError("could not rebalance randomized quantities")

    return parts


def schedule_offsets(
    duration_minutes: int,
    num_splits: int,
    randomize: bool = False,
    rng: Optional[random.Random] = None,
) -> List[float]:
    """
    Offsets in minutes from the parent's creation time, one per slice,
    non-decreasing and inside [0, duration_minutes].
    """
    interval = duration_minutes / num_splits
    offsets = [i * interval for i in range(num_splits)]

    if not randomize:
        return offsets

    rng = rng or random.Random()
    jittered = [
        min(max(o + rng.uniform(-RANDOM_VARIATION, RANDOM_VARIATION) * interval, 0.0), float(duration_minutes))
        for o in offsets
    ]
    return sorted(jittered)


def build_slice_plan(
    total_quantity: int,
    split_config: SplitConfig,
    start: datetime,
    rng: Optional[random.Random] = None,
) -> List[PlannedSlice]:
    """
    Full plan for one parent. Raises PartitionError when the stored order
    cannot be split (the splitter turns that into SKIPPED).
    """
    n = split_config.num_splits
    duration = split_config.duration_minutes

    if not (MIN_SPLITS <= n <= MAX_SPLITS):
        raise PartitionError(f"num_splits {n} outside [{MIN_SPLITS}, {MAX_SPLITS}]")
    if not (MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES):
        raise PartitionError(
            f"duration_minutes {duration} outside [{MIN_DURATION_MINUTES}, {MAX_DURATION_MINUTES}]"
        )

    rng = rng or random.Random()
    quantities = split_quantity(total_quantity, n, split_config.randomize, rng)
    offsets = schedule_offsets(duration, n, split_config.randomize, rng)

    return [
        PlannedSlice(
            sequence_index=i,
            quantity=quantities[i],
            scheduled_at=start + timedelta(minutes=offsets[i]),
        )
        for i in range(n)
    ]
