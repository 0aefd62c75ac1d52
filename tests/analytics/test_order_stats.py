"""
Tests for order history analytics.
"""

from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from analytics.order_stats import PERIODS, orders_frame, period_start, summarize_orders
from core.exceptions import ValidationError
from oms.order_state import OrderStatus
from tests.fixtures.order_factory import make_order

UTC_PLUS_2 = timezone(timedelta(hours=2))
NOW = datetime(2026, 3, 31, 15, 45, 12, tzinfo=UTC_PLUS_2)


class TestPeriodStart:
    def test_today_is_local_midnight(self):
        assert period_start("today", NOW) == datetime(2026, 3, 31, tzinfo=UTC_PLUS_2)

    def test_week_is_seven_days_before_midnight(self):
        assert period_start("week", NOW) == datetime(2026, 3, 24, tzinfo=UTC_PLUS_2)

    def test_month_is_one_calendar_month_back(self):
        # March 31 -> February 28 (2026 is not a leap year)
        assert period_start("month", NOW) == datetime(2026, 2, 28, tzinfo=UTC_PLUS_2)

    def test_result_is_timezone_aware(self):
        assert period_start("today").tzinfo is not None

    @pytest.mark.parametrize("period", ["year", "", "Today"])
    def test_unknown_period(self, period):
        with pytest.raises(ValidationError):
            period_start(period, NOW)

    def test_periods(self):
        assert PERIODS == ("today", "week", "month")


class TestSummarizeOrders:
    def test_empty(self):
        stats = summarize_orders([])
        assert stats["totalOrders"] == 0
        assert stats["avgPrepTime"] == 0
        assert stats["completionRate"] == 0

    def test_counts_and_rates(self):
        orders = [
            make_order(1, OrderStatus.COMPLETED, is_vip=True, prep_time=10),
            make_order(2, OrderStatus.CANCELLED, is_express=True, prep_time=20),
            make_order(3, OrderStatus.COMPLETED, is_vip=True, is_express=True, prep_time=15),
            make_order(4, OrderStatus.PENDING, prep_time=0),
            make_order(5, OrderStatus.PENDING, prep_time=7),
            make_order(6, OrderStatus.COMPLETED, prep_time=3),
        ]
        stats = summarize_orders(orders)
        assert stats == {
            "totalOrders": 6,
            "completedOrders": 3,
            "cancelledOrders": 1,
            "pendingOrders": 2,
            "vipOrders": 2,
            "expressOrders": 2,
            "avgPrepTime": 9,
            "completionRate": 50,
        }

    def test_half_rounds_up(self):
        orders = [make_order(1, OrderStatus.COMPLETED, prep_time=1), make_order(2, prep_time=2)]
        stats = summarize_orders(orders)
        assert stats["avgPrepTime"] == 2
        assert stats["completionRate"] == 50

    def test_rate_rounding(self):
        orders = [make_order(1, OrderStatus.COMPLETED), make_order(2), make_order(3)]
        assert summarize_orders(orders)["completionRate"] == 33

    def test_accepts_wire_dicts(self):
        orders = [make_order(1, OrderStatus.COMPLETED).to_dict()]
        assert summarize_orders(orders)["completedOrders"] == 1

    def test_values_are_plain_ints(self):
        stats = summarize_orders([make_order(1)])
        assert all(type(v) is int for v in stats.values())


def test_orders_frame_columns():
    df = orders_frame([make_order(1), make_order(2, is_vip=True)])
    assert isinstance(df, pd.DataFrame)
    assert list(df["id"]) == [1, 2]
    assert list(df["isVip"]) == [False, True]
