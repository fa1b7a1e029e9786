"""
Polling reconciliation engine.

Components:
- Reconciler: Two-phase reconciliation of one platform against the ledger
- WatcherService: Fixed-interval scheduler over all platforms
- TickStats: Counters for one reconciliation pass
"""

from telescope.watcher.reconciler import Reconciler
from telescope.watcher.schemas import TickStats
from telescope.watcher.service import WatcherService

__all__ = ["Reconciler", "TickStats", "WatcherService"]
