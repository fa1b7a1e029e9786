"""Persistent subscription state."""

from telescope.storage.ledger import LedgerError, SubscriptionLedger

__all__ = ["LedgerError", "SubscriptionLedger"]
