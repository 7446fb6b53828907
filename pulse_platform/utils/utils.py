#!/usr/bin/env python3
"""
Utility Functions Module
Contains helper functions used throughout the application
"""

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Tuple

logger = logging.getLogger(__name__)


# ======================================================
# TIME (UTC, DB-SAFE)
# ======================================================

def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime for storage.

    Always UTC with fixed microsecond precision so that stored values
    compare correctly as plain strings inside SQL.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ======================================================
# JSON / HTTP HELPERS
# ======================================================

def canonical_json(data: Dict[str, Any]) -> str:
    """Stable JSON encoding (sorted keys, no whitespace) for byte-equal comparison."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def parse_json_safely(payload: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Safely parse JSON payload and return data and error message"""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        error_msg = f"Invalid JSON: {str(e)}"
        logger.error(f"{error_msg}. Payload: {payload[:200]}...")
        return None, error_msg

    if not isinstance(data, dict):
        return None, "JSON body must be an object"
    return data, None


def log_exception(func_name: str, exception: Exception) -> None:
    """Log exception with traceback"""
    logger.error(f"Exception in {func_name}: {exception}")
    logger.error(f"Traceback: {traceback.format_exc()}")


def create_error_body(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Standard error envelope: {"error": {"code", "message", "details"}}."""
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        }
    }
