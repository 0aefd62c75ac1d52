"""
Pytest configuration and shared fixtures for ChefFlow tests.
"""

import os
import sys
import tempfile
from pathlib import Path

# Structured event log goes to a throwaway directory for the whole session
os.environ.setdefault("CHEFFLOW_LOG_DIR", tempfile.mkdtemp(prefix="chefflow-logs-"))

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from core.journal import DispatchJournal
from core.restart_backoff import RestartBackoff, RestartBackoffConfig
from kitchen.bridge import KitchenBridge
from oms.order_store import SqliteOrderStore
from ops.engine_supervisor import EngineSupervisor
from tests.fixtures.engine_helpers import engine_command


@pytest.fixture
def store(tmp_path):
    """Empty SQLite order store in a temp directory."""
    return SqliteOrderStore(tmp_path / "orders.sqlite")


@pytest.fixture
def journal(tmp_path):
    """Dispatch journal without fsync (tests don't need durability)."""
    return DispatchJournal(tmp_path / "journal.jsonl", fsync=False)


@pytest.fixture
def make_supervisor():
    """Factory for fake-engine supervisors; all are shut down at teardown."""
    created = []

    def _make(*engine_args, **kwargs):
        kwargs.setdefault("startup_timeout", 5.0)
        kwargs.setdefault("shutdown_timeout", 2.0)
        sup = EngineSupervisor(engine_command(*engine_args), **kwargs)
        created.append(sup)
        return sup

    yield _make
    for sup in created:
        sup.shutdown()


@pytest.fixture
def make_bridge(store, journal, make_supervisor):
    """Factory for KitchenBridge instances driving the fake engine."""
    bridges = []

    def _make(*engine_args, restart_policy="none", start=True, **kwargs):
        supervisor = make_supervisor(*engine_args)
        backoff = RestartBackoff(RestartBackoffConfig(base_delay_seconds=0.0, jitter_enabled=False))
        bridge = KitchenBridge(
            supervisor,
            kwargs.pop("order_store", store),
            journal=kwargs.pop("dispatch_journal", journal),
            restart_policy=restart_policy,
            backoff=backoff,
            **kwargs,
        )
        bridges.append(bridge)
        if start:
            bridge.start()
        return bridge

    yield _make
    for bridge in bridges:
        bridge.shutdown()
