import re

from pulse_platform.execution.errors import ValidationError
from pulse_platform.persistence.models import (
    MAX_DURATION_MINUTES,
    MAX_SPLITS,
    MIN_DURATION_MINUTES,
    MIN_SPLITS,
    SIDES,
    SplitConfig,
)

# EXCHANGE:SYMBOL, e.g. NSE:RELIANCE, NFO:BANKNIFTY24JANFUT
INSTRUMENT_PATTERN = re.compile(r"^[A-Z]{2,10}:[A-Za-z0-9][A-Za-z0-9._&-]{0,49}$")

MAX_UNIQUE_KEY_LENGTH = 255


def validate_order_request(
    order_unique_key: str,
    instrument: str,
    side: str,
    total_quantity: int,
    split_config: SplitConfig,
) -> None:
    """
    Hard validation layer.
    Any failure here MUST reject the order before it reaches the store.
    """

    # -----------------------
    # Identity
    # -----------------------
    if not isinstance(order_unique_key, str) or not order_unique_key.strip():
        raise ValidationError("order_unique_key is required", field="order_unique_key")

    if len(order_unique_key) > MAX_UNIQUE_KEY_LENGTH:
        raise ValidationError(
            f"order_unique_key must be at most {MAX_UNIQUE_KEY_LENGTH} characters",
            field="order_unique_key",
        )

    # -----------------------
    # Instrument / side
    # -----------------------
    if not isinstance(instrument, str) or not INSTRUMENT_PATTERN.match(instrument):
        raise ValidationError(
            f"Invalid instrument '{instrument}', expected EXCHANGE:SYMBOL",
            field="instrument",
        )

    if side not in SIDES:
        raise ValidationError("Invalid order side", field="side")

    # -----------------------
    # Quantity
    # -----------------------
    # bool is an int subclass; reject it explicitly
    if isinstance(total_quantity, bool) or not isinstance(total_quantity, int):
        raise ValidationError("total_quantity must be an integer", field="total_quantity")

    if total_quantity <= 0:
        raise ValidationError("total_quantity must be positive", field="total_quantity")

    # -----------------------
    # Split config
    # -----------------------
    validate_split_config(split_config)

    if total_quantity < split_config.num_splits:
        raise ValidationError(
            f"total_quantity ({total_quantity}) must be >= num_splits ({split_config.num_splits})",
            field="total_quantity",
        )


def validate_split_config(split_config: SplitConfig) -> None:
    num_splits = split_config.num_splits
    duration = split_config.duration_minutes

    if isinstance(num_splits, bool) or not isinstance(num_splits, int):
        raise ValidationError("num_splits must be an integer", field="split_config.num_splits")

    if not (MIN_SPLITS <= num_splits <= MAX_SPLITS):
        raise ValidationError(
            f"num_splits must be between {MIN_SPLITS} and {MAX_SPLITS}",
            field="split_config.num_splits",
        )

    if isinstance(duration, bool) or not isinstance(duration, int):
        raise ValidationError("duration_minutes must be an integer", field="split_config.duration_minutes")

    if not (MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES):
        raise ValidationError(
            f"duration_minutes must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES}",
            field="split_config.duration_minutes",
        )

    if not isinstance(split_config.randomize, bool):
        raise ValidationError("randomize must be a boolean", field="split_config.randomize")
