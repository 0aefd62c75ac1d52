"""
Tests for startup rehydration from the order store.
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from core.exceptions import ProcessUnavailableError, TransportError
from kitchen.channel import CommandChannel
from kitchen.rehydration import RehydrationCoordinator
from oms.order_state import OrderStatus
from tests.fixtures.order_factory import BASE_TIME


def seed(store, order_id, minutes, is_vip=False, is_express=False, items=None):
    store.write_order(order_id, {
        "items": items or f"dish-{order_id}",
        "prepTime": 5 + order_id,
        "isVip": is_vip,
        "isExpress": is_express,
        "timestamp": BASE_TIME + timedelta(minutes=minutes),
    })


@pytest.fixture
def supervisor():
    return MagicMock()


class TestRehydrationCoordinator:
    def test_replays_pending_in_creation_order(self, store, supervisor):
        seed(store, 3, minutes=2)
        seed(store, 1, minutes=0, is_vip=True)
        seed(store, 2, minutes=1, is_express=True)

        report = RehydrationCoordinator(store, CommandChannel(supervisor)).rehydrate()

        lines = [c.args[0] for c in supervisor.write_line.call_args_list]
        assert lines == [
            "VIP,1,dish-1,6,false\n",
            "ADD,2,dish-2,7,true\n",
            "ADD,3,dish-3,8,false\n",
        ]
        assert report.total == 3
        assert report.dispatched == 3
        assert report.order_ids == [1, 2, 3]
        assert report.complete

    def test_terminal_orders_are_not_replayed(self, store, supervisor):
        seed(store, 1, minutes=0)
        seed(store, 2, minutes=1)
        seed(store, 3, minutes=2)
        store.update_status(1, OrderStatus.CANCELLED, "cancelledAt")
        store.update_status(3, OrderStatus.COMPLETED, "completedAt")

        report = RehydrationCoordinator(store, CommandChannel(supervisor)).rehydrate()

        supervisor.write_line.assert_called_once_with("ADD,2,dish-2,7,false\n")
        assert report.order_ids == [2]

    def test_empty_store(self, store, supervisor):
        report = RehydrationCoordinator(store, CommandChannel(supervisor)).rehydrate()
        assert report.total == 0
        supervisor.write_line.assert_not_called()

    def test_second_run_duplicates_commands(self, store, supervisor):
        seed(store, 1, minutes=0)
        coordinator = RehydrationCoordinator(store, CommandChannel(supervisor))
        coordinator.rehydrate()
        coordinator.rehydrate()
        assert supervisor.write_line.call_count == 2
        assert coordinator.runs == 2

    def test_dropped_commands_are_counted(self, store, supervisor):
        seed(store, 1, minutes=0)
        seed(store, 2, minutes=1)
        supervisor.write_line.side_effect = ProcessUnavailableError("engine gone")

        report = RehydrationCoordinator(store, CommandChannel(supervisor)).rehydrate()

        assert report.dropped == 2
        assert report.dispatched == 0
        assert not report.complete

    def test_unencodable_order_is_skipped(self, store, supervisor):
        seed(store, 1, minutes=0, items="fish, chips")
        seed(store, 2, minutes=1)

        report = RehydrationCoordinator(store, CommandChannel(supervisor)).rehydrate()

        supervisor.write_line.assert_called_once_with("ADD,2,dish-2,7,false\n")
        assert report.unencodable == 1

    def test_store_failure_propagates(self, supervisor):
        store = MagicMock()
        store.query_pending_ordered.side_effect = TransportError("store down")
        with pytest.raises(TransportError):
            RehydrationCoordinator(store, CommandChannel(supervisor)).rehydrate()
        supervisor.write_line.assert_not_called()
