"""
Error taxonomy for the order pipeline.

- ValidationError      : caller error, rejected at ingress, nothing stored
- DuplicateKeyConflict : same order_unique_key, different payload
- PartitionError       : parent cannot be split, parent goes SKIPPED
- BrokerError          : broker rejected / unreachable, slice goes FAILED
"""

from typing import Optional


class PulseError(Exception):
    """Base class for all order pipeline errors."""
    code = "INTERNAL_ERROR"


class ValidationError(PulseError, ValueError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class DuplicateKeyConflict(PulseError):
    code = "DUPLICATE_KEY_CONFLICT"

    def __init__(self, order_unique_key: str, existing_order_id: str):
        super().__init__(
            f"order_unique_key '{order_unique_key}' already used by order "
            f"{existing_order_id} with a different payload"
        )
        self.order_unique_key = order_unique_key
        self.existing_order_id = existing_order_id


class PartitionError(PulseError):
    code = "PARTITION_ERROR"


class BrokerError(PulseError):
    code = "BROKER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
