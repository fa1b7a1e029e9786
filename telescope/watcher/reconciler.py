"""
Reconciler merging platform snapshots with the subscription ledger.

One pass over a platform runs in two phases:

Phase A re-checks creators the ledger believes are live, by session id.
    Running      -> no-op (recipients without an anchor are caught up)
    Ended/TimedOut -> "ended" reply to every recipient, then clear
    Unknown      -> diagnostic reply to every recipient, state kept

Phase B bulk-probes the idle creators collected in Phase A and, for every
Running snapshot, sends a fresh "started" message to each subscriber and
records the message id as that recipient's anchor.

Within one (creator, recipient) unit the notification is always sent
before the ledger commit. A failed send skips the commit so the
recipient is retried on a later tick; a failed commit is logged and the
unit abandoned. No failure escapes a unit of work.
"""

import time
from collections.abc import Awaitable
from typing import Any

import structlog

from telescope.notifications.channels import Notifier
from telescope.observability.metrics import MetricsCollector, get_metrics
from telescope.platforms.base_adapter import BaseAdapter
from telescope.platforms.schemas import Creator, LiveSnapshot
from telescope.storage.ledger import LedgerError, SubscriptionLedger
from telescope.watcher.schemas import TickStats

logger = structlog.get_logger(__name__)


class Reconciler:
    """
    Drives notifications and ledger updates for one platform at a time.

    Log lines carry no platform field of their own; the caller binds it
    with ``log_context`` for the whole pass.

    Usage:
        reconciler = Reconciler(ledger, notifier)
        stats = await reconciler.reconcile(adapter)
    """

    def __init__(
        self,
        ledger: SubscriptionLedger,
        notifier: Notifier,
        metrics: MetricsCollector | None = None,
    ):
        self._ledger = ledger
        self._notifier = notifier
        self._metrics = metrics or get_metrics()

    async def reconcile(self, adapter: BaseAdapter) -> TickStats:
        """
        Run both phases for the adapter's platform.

        Args:
            adapter: Platform adapter to reconcile

        Returns:
            Counters describing what happened
        """
        platform = adapter.platform
        stats = TickStats(platform=platform)
        start_time = time.monotonic()

        # Materialize the scan before any platform or notifier I/O.
        idle: list[Creator] = []
        live: list[tuple[Creator, str]] = []
        try:
            async for creator, session_id in self._ledger.scan_tracked_creators(platform):
                if session_id is None:
                    idle.append(creator)
                else:
                    live.append((creator, session_id))
        except LedgerError as e:
            logger.error(
                "Tracked creator scan failed, skipping platform",
                error=str(e),
            )
            self._metrics.record_tick_error(platform, type(e).__name__)
            stats.aborted = True
            return stats

        stats.idle = len(idle)
        stats.live = len(live)
        self._metrics.set_tracked_creators(platform, idle=stats.idle, live=stats.live)

        # Phase A
        for creator, session_id in live:
            await self._run_unit(
                self._recheck(adapter, creator, session_id, stats),
                stats,
                "status check",
                creator=str(creator),
                session_id=session_id,
            )

        # Phase B
        if idle:
            await self._run_unit(
                self._detect_new_sessions(adapter, idle, stats),
                stats,
                "bulk probe",
                candidates=len(idle),
            )

        logger.debug(
            "Reconciliation pass finished",
            elapsed_seconds=round(time.monotonic() - start_time, 2),
            **stats.summary(),
        )
        return stats

    async def _run_unit(
        self,
        unit: Awaitable[Any],
        stats: TickStats,
        description: str,
        **context: Any,
    ) -> Any:
        """Await one unit of work. Returns its result, or None if it failed."""
        try:
            return await unit
        except LedgerError as e:
            stats.errors += 1
            logger.error(f"Ledger error during {description}", error=str(e), **context)
        except Exception as e:
            stats.errors += 1
            logger.exception(
                f"Unexpected error during {description}",
                error_type=type(e).__name__,
                **context,
            )
        return None

    # ── Phase A ─────────────────────────────────────────────────

    async def _recheck(
        self,
        adapter: BaseAdapter,
        creator: Creator,
        session_id: str,
        stats: TickStats,
    ) -> None:
        platform = adapter.platform
        stats.checked += 1

        snapshot = await adapter.get_status(session_id)
        self._metrics.record_status_check(platform, snapshot is not None)
        if snapshot is None:
            stats.check_failures += 1
            logger.warning(
                "Status check returned nothing, retrying next tick",
                creator=str(creator),
                session_id=session_id,
            )
            return

        if snapshot.state.is_running:
            await self._catch_up(adapter, creator, session_id, snapshot, stats)
        elif snapshot.state.is_terminal:
            await self._end_session(adapter, creator, snapshot, stats)
        else:
            await self._report_unknown(adapter, creator, snapshot, stats)

    async def _anchors(self, creator: Creator) -> list[tuple[str, int | None]]:
        return [item async for item in self._ledger.scan_anchors(creator)]

    async def _catch_up(
        self,
        adapter: BaseAdapter,
        creator: Creator,
        session_id: str,
        snapshot: LiveSnapshot,
        stats: TickStats,
    ) -> None:
        """Send "started" to recipients of a live creator that hold no anchor."""
        pending = [
            recipient
            for recipient, anchor in await self._anchors(creator)
            if anchor is None
        ]
        if not pending:
            return

        logger.info(
            "Catching up recipients of live session",
            creator=str(creator),
            session_id=session_id,
            recipients=len(pending),
        )
        self._metrics.record_transition(adapter.platform, "catch_up")
        text = adapter.format_message(snapshot)
        for recipient in pending:
            delivered = await self._run_unit(
                self._deliver_start(adapter, creator, recipient, session_id, text, snapshot, stats),
                stats,
                "catch-up",
                creator=str(creator),
                recipient=recipient,
            )
            if delivered:
                stats.caught_up += 1

    async def _end_session(
        self,
        adapter: BaseAdapter,
        creator: Creator,
        snapshot: LiveSnapshot,
        stats: TickStats,
    ) -> None:
        """
        Send "ended" to every recipient, committing each delivery separately.

        A recipient whose "ended" reply fails is not retried: the first
        successful commit for any other recipient clears the session id,
        so the next tick sees the creator as idle. The failed recipient
        keeps its anchor until the next session start overwrites it.
        """
        platform = adapter.platform
        stats.ended += 1
        self._metrics.record_transition(platform, "ended")
        logger.info(
            "Session ended",
            creator=str(creator),
            session_id=snapshot.session_id,
            state=snapshot.state.kind.value,
        )

        anchors = await self._anchors(creator)
        if not anchors:
            # Nobody left to notify; only the tracked entry needs clearing.
            await self._commit_end(creator, None, stats)
            return

        text = adapter.format_message(snapshot)
        for recipient, anchor in anchors:
            await self._run_unit(
                self._deliver_end(adapter, creator, recipient, anchor, text, stats),
                stats,
                "session end",
                creator=str(creator),
                recipient=recipient,
            )

    async def _deliver_end(
        self,
        adapter: BaseAdapter,
        creator: Creator,
        recipient: str,
        anchor: int | None,
        text: str,
        stats: TickStats,
    ) -> None:
        message_id = await self._notifier.send_reply(
            recipient, text, anchor, disable_preview=True
        )
        if not self._record_delivery(adapter, "ended", recipient, message_id, stats):
            return
        await self._commit_end(creator, recipient, stats)

    async def _commit_end(
        self,
        creator: Creator,
        recipient: str | None,
        stats: TickStats,
    ) -> None:
        try:
            written = await self._ledger.commit_session_end(creator, recipient)
        except LedgerError as e:
            stats.commit_failures += 1
            self._metrics.record_commit("session_end", "failed")
            logger.error(
                "Session end commit failed",
                creator=str(creator),
                recipient=recipient,
                error=str(e),
            )
            return
        self._metrics.record_commit("session_end", "ok" if written else "skipped")

    async def _report_unknown(
        self,
        adapter: BaseAdapter,
        creator: Creator,
        snapshot: LiveSnapshot,
        stats: TickStats,
    ) -> None:
        platform = adapter.platform
        stats.unknown += 1
        self._metrics.record_transition(platform, "unknown")
        logger.warning(
            "Session in unknown state, keeping it active",
            creator=str(creator),
            session_id=snapshot.session_id,
            raw_state=snapshot.state.raw,
        )

        text = adapter.format_message(snapshot)
        for recipient, anchor in await self._anchors(creator):
            await self._run_unit(
                self._deliver_unknown(adapter, recipient, anchor, text, stats),
                stats,
                "unknown-state notice",
                creator=str(creator),
                recipient=recipient,
            )

    async def _deliver_unknown(
        self,
        adapter: BaseAdapter,
        recipient: str,
        anchor: int | None,
        text: str,
        stats: TickStats,
    ) -> None:
        message_id = await self._notifier.send_reply(recipient, text, anchor)
        self._record_delivery(adapter, "unknown", recipient, message_id, stats)

    # ── Phase B ─────────────────────────────────────────────────

    async def _detect_new_sessions(
        self,
        adapter: BaseAdapter,
        idle: list[Creator],
        stats: TickStats,
    ) -> None:
        snapshots = await adapter.get_status_for_tracked(idle)

        # Several tracked keys may share one identity when a display name
        # changed between subscriptions.
        by_identity: dict[tuple[str, str], list[Creator]] = {}
        for creator in idle:
            by_identity.setdefault((creator.platform.value, creator.external_id), []).append(creator)

        seen: set[tuple[str, str]] = set()
        for snapshot in snapshots:
            identity = (snapshot.creator.platform.value, snapshot.creator.external_id)
            if not snapshot.state.is_running or identity in seen:
                continue
            seen.add(identity)

            tracked = by_identity.get(identity)
            if not tracked:
                logger.warning(
                    "Bulk probe returned an untracked creator",
                    creator=str(snapshot.creator),
                )
                continue

            for creator in tracked:
                await self._run_unit(
                    self._start_session(adapter, creator, snapshot, stats),
                    stats,
                    "session start",
                    creator=str(creator),
                    session_id=snapshot.session_id,
                )

    async def _start_session(
        self,
        adapter: BaseAdapter,
        creator: Creator,
        snapshot: LiveSnapshot,
        stats: TickStats,
    ) -> None:
        platform = adapter.platform
        stats.started += 1
        self._metrics.record_transition(platform, "started")
        logger.info(
            "Session started",
            creator=str(creator),
            session_id=snapshot.session_id,
            title=snapshot.title,
        )

        text = adapter.format_message(snapshot)
        for recipient in await self._ledger.scan_subscribers(creator):
            await self._run_unit(
                self._deliver_start(
                    adapter, creator, recipient, snapshot.session_id, text, snapshot, stats
                ),
                stats,
                "session start",
                creator=str(creator),
                recipient=recipient,
            )

    async def _deliver_start(
        self,
        adapter: BaseAdapter,
        creator: Creator,
        recipient: str,
        session_id: str,
        text: str,
        snapshot: LiveSnapshot,
        stats: TickStats,
    ) -> bool:
        """
        Send "started" to one recipient and record its anchor.

        Returns:
            True if the message was delivered, whether or not the commit
            succeeded
        """
        message_id = await self._notifier.send_new(recipient, text, snapshot.attachment)
        if not self._record_delivery(adapter, "started", recipient, message_id, stats):
            return False

        try:
            written = await self._ledger.commit_session_start(
                creator, recipient, session_id, message_id
            )
        except LedgerError as e:
            stats.commit_failures += 1
            self._metrics.record_commit("session_start", "failed")
            logger.error(
                "Session start commit failed, recipient will be retried",
                creator=str(creator),
                recipient=recipient,
                session_id=session_id,
                error=str(e),
            )
            return True
        self._metrics.record_commit("session_start", "ok" if written else "skipped")
        return True

    # ── Helpers ─────────────────────────────────────────────────

    def _record_delivery(
        self,
        adapter: BaseAdapter,
        kind: str,
        recipient: str,
        message_id: int | None,
        stats: TickStats,
    ) -> bool:
        """Count a send outcome. Returns True if the message was delivered."""
        delivered = message_id is not None
        self._metrics.record_notification(adapter.platform, kind, sent=delivered)
        if delivered:
            stats.notifications_sent += 1
        else:
            stats.notifications_failed += 1
            logger.warning(
                "Notification not delivered",
                kind=kind,
                recipient=recipient,
            )
        return delivered
