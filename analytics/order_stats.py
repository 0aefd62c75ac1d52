"""
Order history analytics.

Summarizes orders created in a reporting period (today, week, month) for
the kitchen dashboard:
- Status counts (completed, cancelled, pending)
- VIP / express volume
- Average prep time and completion rate

Period boundaries are local midnight, matching what kitchen staff see on
the wall clock.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

import pandas as pd

from core.exceptions import ValidationError

PERIODS = ("today", "week", "month")

FRAME_COLUMNS = ["id", "items", "isVip", "isExpress", "prepTime", "status", "timestamp"]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def period_start(period: str = "today", now: Optional[datetime] = None) -> datetime:
    """
    Start instant (timezone-aware) of a reporting period.

    today: local midnight
    week:  local midnight minus 7 days
    month: local midnight minus one calendar month

    Raises:
        ValidationError: for an unknown period
    """
    if period not in PERIODS:
        raise ValidationError(
            f"Unknown analytics period: {period!r}",
            context={"allowed": list(PERIODS)},
        )
    if now is None:
        now = datetime.now().astimezone()
    elif now.tzinfo is None:
        now = now.astimezone()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "week":
        return midnight - timedelta(days=7)
    if period == "month":
        return (pd.Timestamp(midnight) - pd.DateOffset(months=1)).to_pydatetime()
    return midnight


def orders_frame(orders: Iterable[Any]) -> pd.DataFrame:
    """Build a DataFrame of order records (Order objects or wire dicts)."""
    rows = [o if isinstance(o, dict) else o.to_dict() for o in orders]
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)


def summarize_orders(orders: Iterable[Any]) -> Dict[str, int]:
    """
    Aggregate stats for a set of orders.

    Returns:
        Dict with totalOrders, completedOrders, cancelledOrders, pendingOrders,
        vipOrders, expressOrders, avgPrepTime (minutes, rounded) and
        completionRate (percent, rounded)
    """
    df = orders_frame(orders)
    total = len(df)
    if total == 0:
        return {
            "totalOrders": 0,
            "completedOrders": 0,
            "cancelledOrders": 0,
            "pendingOrders": 0,
            "vipOrders": 0,
            "expressOrders": 0,
            "avgPrepTime": 0,
            "completionRate": 0,
        }

    completed = int((df["status"] == "COMPLETED").sum())
    cancelled = int((df["status"] == "CANCELLED").sum())
    prep = pd.to_numeric(df["prepTime"], errors="coerce").fillna(0)

    return {
        "totalOrders": total,
        "completedOrders": completed,
        "cancelledOrders": cancelled,
        "pendingOrders": total - completed - cancelled,
        "vipOrders": int(df["isVip"].fillna(False).astype(bool).sum()),
        "expressOrders": int(df["isExpress"].fillna(False).astype(bool).sum()),
        "avgPrepTime": _round_half_up(float(prep.mean())),
        "completionRate": _round_half_up(completed / total * 100),
    }
