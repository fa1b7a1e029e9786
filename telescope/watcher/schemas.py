"""Result types for reconciliation passes."""

from dataclasses import asdict, dataclass
from typing import Any

from telescope.platforms.schemas import Platform


@dataclass
class TickStats:
    """
    Outcome of one reconciliation pass over a platform.

    Attributes:
        platform: Platform reconciled
        idle: Tracked creators without a session
        live: Tracked creators with a session
        checked: Status checks issued for live creators
        check_failures: Status checks that returned nothing
        started: Creators detected as newly live
        ended: Creators whose session ended or timed out
        unknown: Creators reported in an unrecognized state
        caught_up: Recipients sent a late "started" notification
        notifications_sent: Messages delivered
        notifications_failed: Messages the notifier could not deliver
        commit_failures: Ledger commits abandoned
        errors: Units of work aborted by an unexpected error
        aborted: True if the pass stopped before Phase A completed
    """

    platform: Platform
    idle: int = 0
    live: int = 0
    checked: int = 0
    check_failures: int = 0
    started: int = 0
    ended: int = 0
    unknown: int = 0
    caught_up: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    commit_failures: int = 0
    errors: int = 0
    aborted: bool = False

    def summary(self) -> dict[str, Any]:
        """Counters as log-friendly key/value pairs."""
        data = asdict(self)
        data.pop("platform")
        return data
