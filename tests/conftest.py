"""Pytest fixtures for telescope tests."""

import logging
from collections.abc import AsyncIterator, Callable, Sequence
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import structlog

from telescope.config.settings import Settings
from telescope.notifications.channels import Notifier
from telescope.observability.logging import HANDLER_NAME
from telescope.platforms.base_adapter import BaseAdapter
from telescope.platforms.schemas import (
    Attachment,
    Creator,
    LiveSnapshot,
    LiveState,
    Platform,
)
from telescope.storage.ledger import LedgerError


# ── In-memory doubles ───────────────────────────────────


class FakeLedger:
    """Dict-backed ledger with the same semantics as SubscriptionLedger.

    ``subs`` mirrors the Redis ``subs`` hash and ``anchors`` mirrors the
    per-creator hashes (0 = no anchor).
    """

    def __init__(self) -> None:
        self.subs: dict[str, str] = {}
        self.anchors: dict[str, dict[str, int]] = {}
        self.failing_commits: set[tuple[str, str | None]] = set()
        self.fail_scan = False
        self.commits: list[tuple[str, str, str | None]] = []
        self.connected = False

    def track(
        self,
        creator: Creator,
        *recipients: str,
        session_id: str = "",
        anchors: dict[str, int] | None = None,
    ) -> None:
        anchors = anchors or {}
        self.subs[creator.key] = session_id
        self.anchors[creator.key] = {r: anchors.get(r, 0) for r in recipients}

    def fail_commit(self, creator: Creator, recipient: str | None) -> None:
        self.failing_commits.add((creator.key, recipient))

    def state(self) -> tuple[dict[str, str], dict[str, dict[str, int]]]:
        return dict(self.subs), {k: dict(v) for k, v in self.anchors.items()}

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def health_check(self) -> bool:
        return self.connected

    async def scan_tracked_creators(
        self,
        platform: Platform,
    ) -> AsyncIterator[tuple[Creator, str | None]]:
        if self.fail_scan:
            raise LedgerError("scan failed")
        for key, session_id in list(self.subs.items()):
            creator = Creator.from_key(key)
            if creator.platform == platform:
                yield creator, session_id or None

    async def scan_anchors(self, creator: Creator) -> AsyncIterator[tuple[str, int | None]]:
        for recipient, anchor in list(self.anchors.get(creator.key, {}).items()):
            yield recipient, anchor or None

    async def scan_subscribers(self, creator: Creator) -> list[str]:
        return list(self.anchors.get(creator.key, {}))

    async def commit_session_start(
        self,
        creator: Creator,
        recipient: str,
        session_id: str,
        anchor: int,
    ) -> bool:
        if (creator.key, recipient) in self.failing_commits:
            raise LedgerError("simulated store failure")
        if recipient not in self.anchors.get(creator.key, {}):
            return False
        self.subs[creator.key] = session_id
        self.anchors[creator.key][recipient] = anchor
        self.commits.append(("start", creator.key, recipient))
        return True

    async def commit_session_end(
        self,
        creator: Creator,
        recipient: str | None = None,
    ) -> bool:
        if (creator.key, recipient) in self.failing_commits:
            raise LedgerError("simulated store failure")
        tracked = creator.key in self.subs
        subscribed = recipient is not None and recipient in self.anchors.get(creator.key, {})
        if not tracked and not subscribed:
            return False
        if tracked:
            self.subs[creator.key] = ""
        if subscribed:
            self.anchors[creator.key][recipient] = 0
        self.commits.append(("end", creator.key, recipient))
        return True


class FakeNotifier(Notifier):
    """Records every message and hands out increasing message ids."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.failing: set[str] = set()
        self._next_id = 100

    @property
    def name(self) -> str:
        return "fake"

    def _deliver(self, **message) -> int | None:
        if message["recipient"] in self.failing:
            return None
        self._next_id += 1
        self.sent.append({**message, "message_id": self._next_id})
        return self._next_id

    def to(self, recipient: str) -> list[dict]:
        return [m for m in self.sent if m["recipient"] == recipient]

    async def send_new(self, recipient, text, attachment=None):
        return self._deliver(kind="new", recipient=recipient, text=text, attachment=attachment)

    async def send_reply(self, recipient, text, reply_to, disable_preview=False):
        return self._deliver(
            kind="reply",
            recipient=recipient,
            text=text,
            reply_to=reply_to,
            disable_preview=disable_preview,
        )


class FakeAdapter(BaseAdapter):
    """Adapter serving canned snapshots.

    ``statuses`` maps session id -> snapshot (None simulates a failed fetch).
    ``running`` is returned, filtered to the probed creators, by the bulk probe.
    """

    def __init__(self, platform: Platform = Platform.BILIBILI_LIVE) -> None:
        super().__init__()
        self._platform = platform
        self.statuses: dict[str, LiveSnapshot | None] = {}
        self.running: list[LiveSnapshot] = []
        self.status_calls: list[str] = []
        self.probe_calls: list[list[Creator]] = []

    @property
    def platform(self) -> Platform:
        return self._platform

    async def get_status(self, session_id, language=None):
        self.status_calls.append(session_id)
        return self.statuses.get(session_id)

    async def get_status_for_tracked(self, creators: Sequence[Creator]):
        self.probe_calls.append(list(creators))
        ids = {c.external_id for c in creators}
        return [s for s in self.running if s.creator.external_id in ids]

    async def resolve_creator(self, path_id):
        return None

    def format_message(self, snapshot):
        return f"{snapshot.state.kind.value}:{snapshot.session_id}"


# ── Fixtures ────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _restore_logging():
    """Drop the handler installed by setup_logging() (the CLI calls it)."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler.get_name() == HANDLER_NAME:
            root.removeHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        redis_url="redis://localhost:6379/1",  # Use DB 1 for tests
        telegram_bot_token="123:test-token",
        twitter_auth_token="auth",
        twitter_csrf_token="csrf",
    )


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def mock_metrics() -> MagicMock:
    return MagicMock()


@pytest.fixture
def creator() -> Creator:
    return Creator(
        platform=Platform.BILIBILI_LIVE,
        external_id="21452505",
        display_name="Nana7mi",
    )


@pytest.fixture
def make_snapshot() -> Callable[..., LiveSnapshot]:
    """Factory for snapshots of a creator in a given state."""

    def _make(
        creator: Creator,
        session_id: str = "S1",
        state: LiveState | None = None,
    ) -> LiveSnapshot:
        return LiveSnapshot(
            session_id=session_id,
            url=f"https://live.bilibili.com/{creator.external_id}",
            title="Evening stream",
            creator=creator,
            attachment=Attachment(kind="photo", url="https://i0.hdslb.com/cover.jpg"),
            start_time=datetime(2026, 2, 7, 12, 0, 0, tzinfo=timezone.utc),
            state=state or LiveState.running(),
        )

    return _make


@pytest.fixture
def make_adapter() -> Callable[[Platform], FakeAdapter]:
    """Factory for fake adapters of any platform."""
    return FakeAdapter
