"""
Analytics Module for kitchen order history.

- order_stats: period boundaries and order summary statistics (pandas)
"""

from analytics.order_stats import (
    PERIODS,
    orders_frame,
    period_start,
    summarize_orders,
)

__all__ = [
    "PERIODS",
    "orders_frame",
    "period_start",
    "summarize_orders",
]
