"""
Durable order store.

The coordination layer depends on exactly four operations:

    write_order(order_id, fields)          -> WriteError / DuplicateOrderError
    update_status(order_id, status, field) -> NotFoundError / WriteError
    query_pending_ordered()                -> PENDING orders, oldest first
    query_range(start_time, limit=None)    -> orders since start_time, newest first

Any implementation that cannot reach its backing storage raises TransportError.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping, Optional, Protocol, runtime_checkable

from core.exceptions import (
    DuplicateOrderError,
    NotFoundError,
    TransportError,
    ValidationError,
    WriteError,
)
from oms.order_state import TIMESTAMP_FIELDS, Order, OrderStatus, check_transition, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = "id, items, is_vip, is_express, prep_time, status, timestamp, cancelled_at, completed_at"

# Request-surface field name -> column
_TIMESTAMP_COLUMNS = {
    "cancelledAt": "cancelled_at",
    "completedAt": "completed_at",
}


@runtime_checkable
class OrderStore(Protocol):
    """Narrow interface to the persistent order record."""

    def write_order(self, order_id: int, fields: Mapping[str, Any]) -> Order: ...

    def update_status(self, order_id: int, status: OrderStatus, timestamp_field: str) -> Order: ...

    def query_pending_ordered(self) -> List[Order]: ...

    def query_range(self, start_time: datetime, limit: Optional[int] = None) -> List[Order]: ...


def _to_iso(ts: datetime) -> str:
    # Fixed-width UTC text so lexical order matches time order
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _coerce_timestamp(value: Any) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    if isinstance(value, datetime):
        return value
    raise TypeError(f"timestamp must be datetime or ISO string, got {type(value).__name__}")


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_order(row: sqlite3.Row) -> Order:
    return Order(
        id=row["id"],
        items=row["items"],
        is_vip=bool(row["is_vip"]),
        is_express=bool(row["is_express"]),
        prep_time=row["prep_time"],
        status=OrderStatus(row["status"]),
        timestamp=_from_iso(row["timestamp"]),
        cancelled_at=_from_iso(row["cancelled_at"]),
        completed_at=_from_iso(row["completed_at"]),
    )


class SqliteOrderStore:
    """
    SQLite-backed order store.

    Uses WAL mode for concurrent readers while the request surface writes.
    One short-lived connection per operation.
    """

    def __init__(self, db_path: str | Path = "state/orders.sqlite", timeout: float = 30.0):
        self.path = Path(db_path)
        self.timeout = timeout
        # Serializes read-check-write in update_status
        self._write_lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransportError(f"Cannot create store directory: {e}", context={"path": str(self.path)}, cause=e) from e
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a connection with WAL mode enabled."""
        try:
            con = sqlite3.connect(self.path, timeout=self.timeout)
            con.row_factory = sqlite3.Row
            con.execute("PRAGMA journal_mode=WAL")
            con.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.Error as e:
            raise TransportError(f"Order store unreachable: {e}", context={"path": str(self.path)}, cause=e) from e
        return con

    def _init_db(self) -> None:
        con = self._get_connection()
        try:
            with con:
                con.execute(
                    """
                    CREATE TABLE IF NOT EXISTS orders (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id INTEGER NOT NULL UNIQUE,
                        items TEXT NOT NULL,
                        is_vip INTEGER NOT NULL DEFAULT 0,
                        is_express INTEGER NOT NULL DEFAULT 0,
                        prep_time INTEGER NOT NULL,
                        status TEXT NOT NULL,
                        timestamp TEXT NOT NULL,
                        cancelled_at TEXT,
                        completed_at TEXT
                    )
                    """
                )
                con.execute(
                    "CREATE INDEX IF NOT EXISTS idx_orders_status_ts ON orders(status, timestamp)"
                )
                con.execute("CREATE INDEX IF NOT EXISTS idx_orders_ts ON orders(timestamp)")
        except sqlite3.OperationalError as e:
            raise TransportError(f"Order store unreachable: {e}", cause=e) from e
        finally:
            con.close()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def write_order(self, order_id: int, fields: Mapping[str, Any]) -> Order:
        """
        Persist a new PENDING order.

        Args:
            order_id: Caller-assigned unique id
            fields: items, prepTime, isVip, isExpress (optional timestamp)

        Raises:
            DuplicateOrderError: if the id already exists
            WriteError: on any other write failure
        """
        try:
            order = Order(
                id=int(order_id),
                items=str(fields["items"]),
                prep_time=int(fields["prepTime"]),
                is_vip=bool(fields.get("isVip", False)),
                is_express=bool(fields.get("isExpress", False)),
                timestamp=_coerce_timestamp(fields.get("timestamp")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid order fields: {e}", context={"order_id": order_id}, cause=e) from e

        con = self._get_connection()
        try:
            with con:
                con.execute(
                    f"INSERT INTO orders({_COLUMNS}) VALUES(?,?,?,?,?,?,?,?,?)",
                    (
                        order.id,
                        order.items,
                        int(order.is_vip),
                        int(order.is_express),
                        order.prep_time,
                        order.status.value,
                        _to_iso(order.timestamp),
                        None,
                        None,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateOrderError(f"Order {order.id} already exists", context={"order_id": order.id}, cause=e) from e
        except sqlite3.OperationalError as e:
            raise TransportError(f"Order store unreachable: {e}", context={"order_id": order.id}, cause=e) from e
        except sqlite3.Error as e:
            raise WriteError(f"Failed to write order {order.id}: {e}", context={"order_id": order.id}, cause=e) from e
        finally:
            con.close()
        return order

    def update_status(self, order_id: int, status: OrderStatus, timestamp_field: str) -> Order:
        """
        Move an order to a terminal status and stamp the matching timestamp.

        Re-applying the status an order already has is a no-op.

        Raises:
            NotFoundError: if the order does not exist
            InvalidTransitionError: on a move out of a terminal status
            WriteError: on any other write failure
        """
        status = OrderStatus(status)
        column = _TIMESTAMP_COLUMNS.get(timestamp_field)
        if column is None or TIMESTAMP_FIELDS.get(status) != timestamp_field:
            raise WriteError(
                f"Timestamp field {timestamp_field!r} does not match status {status.value}",
                context={"order_id": order_id},
            )

        with self._write_lock:
            con = self._get_connection()
            try:
                with con:
                    row = con.execute(f"SELECT {_COLUMNS} FROM orders WHERE id=?", (int(order_id),)).fetchone()
                    if row is None:
                        raise NotFoundError(f"Order {order_id} not found", context={"order_id": order_id})
                    order = _row_to_order(row)
                    if not check_transition(order.status, status):
                        return order
                    stamped = utcnow()
                    con.execute(
                        f"UPDATE orders SET status=?, {column}=? WHERE id=?",
                        (status.value, _to_iso(stamped), order.id),
                    )
            except sqlite3.OperationalError as e:
                raise TransportError(f"Order store unreachable: {e}", context={"order_id": order_id}, cause=e) from e
            except sqlite3.Error as e:
                raise WriteError(f"Failed to update order {order_id}: {e}", context={"order_id": order_id}, cause=e) from e
            finally:
                con.close()

        order.status = status
        setattr(order, column, stamped)
        return order

    def query_pending_ordered(self) -> List[Order]:
        """All PENDING orders, ascending creation time."""
        return self._query(
            f"SELECT {_COLUMNS} FROM orders WHERE status=? ORDER BY timestamp ASC, seq ASC",
            (OrderStatus.PENDING.value,),
        )

    def query_range(self, start_time: datetime, limit: Optional[int] = None) -> List[Order]:
        """Orders created at or after start_time, descending creation time (at most limit)."""
        sql = f"SELECT {_COLUMNS} FROM orders WHERE timestamp >= ? ORDER BY timestamp DESC, seq DESC"
        params: tuple = (_to_iso(start_time),)
        if limit is not None:
            sql += " LIMIT ?"
            params += (max(0, int(limit)),)
        return self._query(sql, params)

    def _query(self, sql: str, params: tuple) -> List[Order]:
        con = self._get_connection()
        try:
            return [_row_to_order(row) for row in con.execute(sql, params).fetchall()]
        except sqlite3.Error as e:
            raise TransportError(f"Order store query failed: {e}", cause=e) from e
        finally:
            con.close()
