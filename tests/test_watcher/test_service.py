"""Tests for the WatcherService scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import structlog

from telescope.platforms.schemas import Creator, LiveState, Platform
from telescope.watcher.schemas import TickStats
from telescope.watcher.service import WatcherService


@pytest.fixture
def service(fake_ledger, fake_notifier, fake_adapter):
    with patch("telescope.watcher.service.get_metrics", return_value=MagicMock()):
        yield WatcherService(
            adapters={Platform.BILIBILI_LIVE: fake_adapter},
            ledger=fake_ledger,
            notifier=fake_notifier,
            poll_interval=0.01,
        )


class TestTick:
    """Tests for a single tick over all platforms."""

    @pytest.mark.asyncio
    async def test_tick_reconciles_every_platform(
        self, fake_ledger, fake_notifier, make_adapter, creator, make_snapshot,
    ):
        bilibili = make_adapter(Platform.BILIBILI_LIVE)
        twitter = make_adapter(Platform.TWITTER_SPACE)
        space_host = Creator(Platform.TWITTER_SPACE, "44196397", "elonmusk")
        fake_ledger.track(creator, "R")
        fake_ledger.track(space_host, "R")
        bilibili.running = [make_snapshot(creator, "S1")]
        twitter.running = [make_snapshot(space_host, "1YqKDqWqdPLxV")]

        with patch("telescope.watcher.service.get_metrics", return_value=MagicMock()):
            service = WatcherService(
                adapters={Platform.BILIBILI_LIVE: bilibili, Platform.TWITTER_SPACE: twitter},
                ledger=fake_ledger,
                notifier=fake_notifier,
                poll_interval=1,
            )
        results = await service.tick()

        assert set(results) == {Platform.BILIBILI_LIVE, Platform.TWITTER_SPACE}
        assert results[Platform.BILIBILI_LIVE].started == 1
        assert results[Platform.TWITTER_SPACE].started == 1
        assert len(fake_notifier.sent) == 2

    @pytest.mark.asyncio
    async def test_platform_failure_does_not_stop_tick(self, service):
        service._reconciler.reconcile = AsyncMock(side_effect=RuntimeError("boom"))

        results = await service.tick()

        assert results == {}
        service._metrics.record_tick_error.assert_called_once_with(
            Platform.BILIBILI_LIVE, "RuntimeError",
        )

    @pytest.mark.asyncio
    async def test_tick_records_duration(self, service):
        service._reconciler.reconcile = AsyncMock(
            return_value=TickStats(platform=Platform.BILIBILI_LIVE)
        )

        await service.tick()

        service._metrics.record_tick.assert_called_once()

    @pytest.mark.asyncio
    async def test_reconcile_runs_with_tick_and_platform_bound(self, service):
        seen: list[dict] = []

        async def reconcile(adapter):
            seen.append(structlog.contextvars.get_contextvars())
            return TickStats(platform=adapter.platform)

        service._reconciler.reconcile = reconcile

        await service.tick()
        await service.tick()

        assert [ctx["platform"] for ctx in seen] == ["Bilibili Live", "Bilibili Live"]
        assert len(seen[0]["tick"]) == 8
        assert seen[0]["tick"] != seen[1]["tick"]
        assert "tick" not in structlog.contextvars.get_contextvars()


class TestLifecycle:
    """Tests for start/stop/run_once."""

    @pytest.mark.asyncio
    async def test_failed_connect_leaves_service_stopped(self, service, fake_ledger):
        fake_ledger.connect = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            await service.start()

        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_run_once_connects_and_closes(self, service, fake_ledger):
        results = await service.run_once()

        assert Platform.BILIBILI_LIVE in results
        assert fake_ledger.connected is False

    @pytest.mark.asyncio
    async def test_start_ticks_until_stopped(self, service, fake_ledger, fake_adapter, creator):
        fake_ledger.track(creator, "R")

        task = asyncio.create_task(service.start())
        for _ in range(100):
            if len(fake_adapter.probe_calls) >= 2:
                break
            await asyncio.sleep(0.01)

        assert service.is_running is True
        await service.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert len(fake_adapter.probe_calls) >= 2
        assert service.is_running is False
        assert fake_ledger.connected is False

    @pytest.mark.asyncio
    async def test_stop_during_sleep_skips_next_tick(self, fake_ledger, fake_notifier, fake_adapter):
        with patch("telescope.watcher.service.get_metrics", return_value=MagicMock()):
            service = WatcherService(
                adapters={Platform.BILIBILI_LIVE: fake_adapter},
                ledger=fake_ledger,
                notifier=fake_notifier,
                poll_interval=60,
            )

        task = asyncio.create_task(service.start())
        await asyncio.sleep(0.01)
        await service.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert fake_adapter.probe_calls == []
        assert fake_adapter.status_calls == []


class TestHealthCheck:
    """Tests for the health report."""

    @pytest.mark.asyncio
    async def test_reports_dependencies(self, service, fake_ledger):
        await fake_ledger.connect()

        health = await service.health_check()

        assert health["running"] is False
        assert health["redis"] is True
        assert health["notifier"] == "fake"
        assert health["adapters"] == {"Bilibili Live": True}

    @pytest.mark.asyncio
    async def test_failing_adapter_reported_unhealthy(self, service, fake_adapter):
        fake_adapter.health_check = AsyncMock(side_effect=RuntimeError("down"))

        health = await service.health_check()

        assert health["adapters"] == {"Bilibili Live": False}
        service._metrics.set_adapter_health.assert_called_once_with(Platform.BILIBILI_LIVE, False)


class TestSessionEndThroughService:
    """End-to-end tick through the service with a live creator."""

    @pytest.mark.asyncio
    async def test_ended_session_cleared(self, service, fake_ledger, fake_adapter, creator, make_snapshot):
        fake_ledger.track(creator, "R", session_id="S1", anchors={"R": 5})
        fake_adapter.statuses["S1"] = make_snapshot(creator, "S1", LiveState.ended())

        results = await service.tick()

        assert results[Platform.BILIBILI_LIVE].ended == 1
        assert fake_ledger.subs[creator.key] == ""
