"""
Order Management System (OMS)
=============================

Durable order records for the kitchen workflow.

Components:
- Order / OrderStatus: Order record and status transitions
- OrderStore: The four-operation store contract
- SqliteOrderStore: SQLite implementation of OrderStore
"""

from .order_state import Order, OrderStatus, TIMESTAMP_FIELDS
from .order_store import OrderStore, SqliteOrderStore

__all__ = [
    'Order',
    'OrderStatus',
    'TIMESTAMP_FIELDS',
    'OrderStore',
    'SqliteOrderStore',
]
