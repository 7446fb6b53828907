#===================================================================
# database.py
#
# - Single durable store shared by every worker process
# - WAL mode + busy timeout for concurrent readers/writers
# - Autocommit connections: single statements are atomic on their own,
#   multi-statement work goes through transaction(immediate=True)
# - Schema is created idempotently on first connection per path
#===================================================================

import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Set

from pulse_platform.logging.logger_config import get_component_logger

logger = get_component_logger('persistence')

_DB_LOCK = threading.Lock()
_DB_PATH: Optional[Path] = None
_INITIALIZED: Set[str] = set()

_DEFAULT_DB_PATH = Path(__file__).resolve().parent / "data" / "pulse.db"

BUSY_TIMEOUT_MS = 5000

SCHEMA = """
CREATE TABLE IF NOT EXISTS parent_orders (
    order_id            TEXT PRIMARY KEY,
    order_unique_key    TEXT NOT NULL,

    instrument          TEXT NOT NULL,
    side                TEXT NOT NULL CHECK (side IN ('BUY', 'SELL')),
    total_quantity      INTEGER NOT NULL CHECK (total_quantity > 0),

    num_splits          INTEGER NOT NULL,
    duration_minutes    INTEGER NOT NULL,
    randomize           INTEGER NOT NULL DEFAULT 1,

    status              TEXT NOT NULL DEFAULT 'PENDING'
        CHECK (status IN ('PENDING', 'IN_PROGRESS', 'DONE', 'SKIPPED')),
    skip_reason         TEXT,
    request_payload     TEXT NOT NULL,

    split_completed_at  TEXT,
    completed_at        TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_parent_orders_unique_key
    ON parent_orders(order_unique_key);

-- splitter polling
CREATE INDEX IF NOT EXISTS idx_parent_orders_pending
    ON parent_orders(status, created_at)
    WHERE status = 'PENDING';

-- timeout monitor sweep
CREATE INDEX IF NOT EXISTS idx_parent_orders_in_progress
    ON parent_orders(status, updated_at)
    WHERE status = 'IN_PROGRESS';

CREATE TABLE IF NOT EXISTS order_slices (
    slice_id            TEXT PRIMARY KEY,
    parent_order_id     TEXT NOT NULL REFERENCES parent_orders(order_id),
    sequence_index      INTEGER NOT NULL CHECK (sequence_index >= 0),
    quantity            INTEGER NOT NULL CHECK (quantity > 0),
    scheduled_at        TEXT NOT NULL,

    stage               TEXT NOT NULL DEFAULT 'SCHEDULED'
        CHECK (stage IN ('SCHEDULED', 'IN_PROGRESS', 'PROCESSED', 'FAILED')),
    broker_order_id     TEXT,
    error               TEXT,

    started_at          TEXT,
    completed_at        TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,

    UNIQUE (parent_order_id, sequence_index)
);

CREATE INDEX IF NOT EXISTS idx_order_slices_parent
    ON order_slices(parent_order_id);

-- executor polling
CREATE INDEX IF NOT EXISTS idx_order_slices_scheduled
    ON order_slices(stage, scheduled_at)
    WHERE stage = 'SCHEDULED';

-- timeout monitor sweep
CREATE INDEX IF NOT EXISTS idx_order_slices_in_progress
    ON order_slices(stage, started_at)
    WHERE stage = 'IN_PROGRESS';

-- append-only status history
CREATE TABLE IF NOT EXISTS parent_order_history (
    history_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    operation           TEXT NOT NULL CHECK (operation IN ('INSERT', 'UPDATE')),
    order_id            TEXT NOT NULL,
    status              TEXT NOT NULL,
    skip_reason         TEXT,
    changed_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_parent_order_history_order
    ON parent_order_history(order_id);

CREATE TRIGGER IF NOT EXISTS trg_parent_orders_history_insert
AFTER INSERT ON parent_orders
BEGIN
    INSERT INTO parent_order_history (operation, order_id, status, skip_reason, changed_at)
    VALUES ('INSERT', NEW.order_id, NEW.status, NEW.skip_reason, NEW.updated_at);
END;

CREATE TRIGGER IF NOT EXISTS trg_parent_orders_history_status
AFTER UPDATE OF status ON parent_orders
WHEN OLD.status IS NOT NEW.status
BEGIN
    INSERT INTO parent_order_history (operation, order_id, status, skip_reason, changed_at)
    VALUES ('UPDATE', NEW.order_id, NEW.status, NEW.skip_reason, NEW.updated_at);
END;
"""


# ======================================================
# PATH RESOLUTION
# ======================================================

def configure_database(db_path) -> Path:
    """
    Point the process at a database file and make sure its schema exists.
    Called once from main() with Config.db_path (tests use a temp path).
    """
    global _DB_PATH
    with _DB_LOCK:
        _DB_PATH = Path(db_path)
        _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection()
    conn.close()
    logger.info("Database ready: %s", _DB_PATH)
    return _DB_PATH


def reset_database_path() -> None:
    """Forget the configured path (test isolation)."""
    global _DB_PATH
    with _DB_LOCK:
        _DB_PATH = None
        _INITIALIZED.clear()


def _resolve_db_path() -> Path:
    """Resolve DB path lazily so PULSE_DB_PATH can be set after import."""
    global _DB_PATH
    if _DB_PATH is None:
        _DB_PATH = Path(os.environ.get("PULSE_DB_PATH", str(_DEFAULT_DB_PATH)))
        _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    return _DB_PATH


# ======================================================
# CONNECTIONS
# ======================================================

def get_connection() -> sqlite3.Connection:
    with _DB_LOCK:
        db_path = _resolve_db_path()
        needs_schema = str(db_path) not in _INITIALIZED

        conn = sqlite3.connect(
            db_path,
            timeout=BUSY_TIMEOUT_MS / 1000,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row

        # WAL: concurrent readers never block the single writer
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        conn.execute("PRAGMA foreign_keys=ON")

        if needs_schema:
            conn.executescript(SCHEMA)
            _INITIALIZED.add(str(db_path))

        return conn


@contextmanager
def db_session() -> Iterator[sqlite3.Connection]:
    """Open a connection for one unit of work and always close it."""
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = True) -> Iterator[sqlite3.Connection]:
    """
    Explicit transaction on an autocommit connection.

    BEGIN IMMEDIATE takes the write lock up front, so a read-then-write
    sequence inside it cannot interleave with another writer.
    """
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")
