"""
Core Infrastructure
====================

Foundational components for the ChefFlow kitchen bridge.

Components:
- exceptions: Unified error hierarchy
- structured_log: JSON event logging
- journal: Write-ahead dispatch journal
- restart_backoff: Engine restart throttling
"""

from .structured_log import jlog, configure_logging
from .journal import DispatchJournal, JournalEntry
from .restart_backoff import RestartBackoff, RestartBackoffConfig

__all__ = [
    # Structured Logging
    'jlog',
    'configure_logging',
    # Journal
    'DispatchJournal',
    'JournalEntry',
    # Restart backoff
    'RestartBackoff',
    'RestartBackoffConfig',
]
