"""
Centralized test fixtures for the ChefFlow kitchen bridge.

This package provides:
- fake_engine.py: a stand-in queue engine process (run as a script)
- engine_helpers: engine command builders and polling helpers
- order_factory: order requests and Order records
"""

from .engine_helpers import FAKE_ENGINE, engine_command, wait_for
from .order_factory import make_order, make_order_request

__all__ = [
    'FAKE_ENGINE',
    'engine_command',
    'wait_for',
    'make_order',
    'make_order_request',
]
