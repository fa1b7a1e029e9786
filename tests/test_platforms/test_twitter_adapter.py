"""Tests for the Twitter Space adapter."""

import json
from typing import Any

import httpx
import pytest
import respx

from telescope.platforms.schemas import Creator, LiveStateKind, Platform
from telescope.platforms.twitter_adapter import TwitterSpaceAdapter

AUDIO_SPACE_URL = "https://x.com/i/api/graphql/xVEzTKg_mLTHubK5ayL0HA/AudioSpaceById"
SPOTLIGHTS_URL = "https://x.com/i/api/graphql/ZQEuHPrIYlvh1NAyIQHP_w/ProfileSpotlightsQuery"
AVATAR_CONTENT_URL = "https://x.com/i/api/fleets/v1/avatar_content"
STREAM_STATUS_URL = "https://x.com/i/api/1.1/live_video_stream/status/28_1757"

SPACE_ID = "1YqKDgDbNYyKV"
LOCATION = "https://prod-fastly.pscp.tv/Transcoding/v1/hls/abc/non_transcode/ap-northeast-1/dynamic_playlist.m3u8?type=live"


def _space_payload(
    state: str = "Running",
    title: Any = "Late night chat",
    space_id: str = SPACE_ID,
    started_at: int = 1770465600000,
) -> dict:
    return {
        "data": {
            "audioSpace": {
                "metadata": {
                    "rest_id": space_id,
                    "state": state,
                    "title": title,
                    "media_key": "28_1757",
                    "started_at": started_at,
                    "is_space_available_for_replay": True,
                    "creator_results": {
                        "result": {
                            "rest_id": "44196397",
                            "legacy": {
                                "screen_name": "elonmusk",
                                "profile_image_url_https": "https://pbs.twimg.com/avatar.jpg",
                            },
                        }
                    },
                }
            }
        }
    }


def _avatar_content(*hosting: str, idle: tuple[str, ...] = ()) -> dict:
    users = {
        user_id: {
            "spaces": {
                "live_content": {
                    "audiospace": {"broadcast_id": SPACE_ID, "language": "en"},
                }
            }
        }
        for user_id in hosting
    }
    users.update({user_id: {"spaces": {}} for user_id in idle})
    return {"users": users, "refresh_delay_secs": 30}


@pytest.fixture
def adapter():
    return TwitterSpaceAdapter(auth_token="auth", csrf_token="csrf", batch_size=2)


@pytest.fixture
def tracked():
    return Creator(Platform.TWITTER_SPACE, "44196397", "elonmusk")


class TestSession:
    """Tests for the authenticated web session."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_session_credentials(self, adapter):
        route = respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload(state="Ended"))
        )

        await adapter.get_status(SPACE_ID)

        request = route.calls.last.request
        assert request.headers["x-csrf-token"] == "csrf"
        assert request.headers["Authorization"].startswith("Bearer ")
        assert "auth_token=auth" in request.headers["Cookie"]
        variables = json.loads(request.url.params["variables"])
        assert variables["id"] == SPACE_ID


class TestGetStatus:
    """Tests for re-checking a known Space."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_running_space_has_master_url(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload())
        )
        respx.get(STREAM_STATUS_URL).mock(
            return_value=httpx.Response(200, json={"source": {"location": LOCATION}})
        )

        snapshot = await adapter.get_status(SPACE_ID, language="en")

        assert snapshot.state.is_running
        assert snapshot.session_id == SPACE_ID
        assert snapshot.url == f"https://twitter.com/i/spaces/{SPACE_ID}"
        assert snapshot.creator == Creator(Platform.TWITTER_SPACE, "44196397", "elonmusk")
        assert snapshot.attachment.kind == "document"
        assert snapshot.language == "en"
        assert snapshot.available_for_replay is True
        assert snapshot.master_url.endswith("/master_playlist.m3u8")

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_stream_location_keeps_snapshot(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload())
        )
        respx.get(STREAM_STATUS_URL).mock(return_value=httpx.Response(200, json={}))

        snapshot = await adapter.get_status(SPACE_ID)

        assert snapshot.state.is_running
        assert snapshot.master_url is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("state,kind", [
        ("Ended", LiveStateKind.ENDED),
        ("TimedOut", LiveStateKind.TIMED_OUT),
        ("NotStarted", LiveStateKind.UNKNOWN),
    ])
    @respx.mock
    async def test_non_running_states(self, adapter, state, kind):
        stream = respx.get(STREAM_STATUS_URL)
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload(state=state))
        )

        snapshot = await adapter.get_status(SPACE_ID)

        assert snapshot.state.kind == kind
        assert snapshot.master_url is None
        assert not stream.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_deleted_space_is_none(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json={"data": {"audioSpace": {}}})
        )

        assert await adapter.get_status(SPACE_ID) is None
        assert adapter.stats.errors == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_unauthorized_is_none(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(return_value=httpx.Response(401, json={"errors": []}))

        assert await adapter.get_status(SPACE_ID) is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_wrongly_typed_field_is_none(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload(title=12345))
        )
        respx.get(STREAM_STATUS_URL).mock(
            return_value=httpx.Response(200, json={"source": {"location": LOCATION}})
        )

        assert await adapter.get_status(SPACE_ID) is None
        assert adapter.stats.errors == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_out_of_range_start_is_none(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload(state="Ended", started_at=10**20))
        )

        assert await adapter.get_status(SPACE_ID) is None
        assert adapter.stats.errors == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_stats_cover_only_the_latest_call(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(
            side_effect=[
                httpx.Response(500),
                httpx.Response(200, json=_space_payload(state="Ended")),
            ]
        )

        assert await adapter.get_status(SPACE_ID) is None
        assert adapter.stats.errors == 1

        assert await adapter.get_status(SPACE_ID) is not None
        assert adapter.stats.requests == 1
        assert adapter.stats.errors == 0


class TestGetStatusForTracked:
    """Tests for the bulk probe."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_hosted_running_spaces(self, adapter, tracked):
        avatar = respx.get(AVATAR_CONTENT_URL).mock(
            return_value=httpx.Response(200, json=_avatar_content("44196397", idle=("783214",)))
        )
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload())
        )
        respx.get(STREAM_STATUS_URL).mock(
            return_value=httpx.Response(200, json={"source": {"location": LOCATION}})
        )
        idle = Creator(Platform.TWITTER_SPACE, "783214", "Twitter")

        spaces = await adapter.get_status_for_tracked([tracked, idle])

        assert [s.session_id for s in spaces] == [SPACE_ID]
        assert spaces[0].language == "en"
        assert avatar.calls.last.request.url.params["user_ids"] == "44196397,783214"
        assert adapter.stats.snapshots == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_batches_user_ids(self, adapter):
        avatar = respx.get(AVATAR_CONTENT_URL).mock(
            return_value=httpx.Response(200, json=_avatar_content())
        )
        creators = [Creator(Platform.TWITTER_SPACE, str(i), f"user{i}") for i in range(5)]

        assert await adapter.get_status_for_tracked(creators) == []
        assert avatar.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_space_no_longer_running_is_skipped(self, adapter, tracked):
        respx.get(AVATAR_CONTENT_URL).mock(
            return_value=httpx.Response(200, json=_avatar_content("44196397"))
        )
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload(state="Ended"))
        )

        assert await adapter.get_status_for_tracked([tracked]) == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_batch_is_skipped(self, adapter, tracked):
        respx.get(AVATAR_CONTENT_URL).mock(
            return_value=httpx.Response(200, json={"errors": [{"code": 88}]})
        )

        assert await adapter.get_status_for_tracked([tracked]) == []
        assert adapter.stats.errors == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_space_does_not_hide_others(self, adapter, tracked):
        broken_id = "1OdKrBnaEPXKX"
        respx.get(AVATAR_CONTENT_URL).mock(
            return_value=httpx.Response(200, json={
                "users": {
                    "783214": {"spaces": {"live_content": {"audiospace": {"broadcast_id": broken_id}}}},
                    "44196397": {"spaces": {"live_content": {"audiospace": {"broadcast_id": SPACE_ID}}}},
                },
            })
        )

        def audio_space(request):
            space_id = json.loads(request.url.params["variables"])["id"]
            if space_id == broken_id:
                return httpx.Response(200, json=_space_payload(title=12345, space_id=broken_id))
            return httpx.Response(200, json=_space_payload())

        respx.get(AUDIO_SPACE_URL).mock(side_effect=audio_space)
        respx.get(STREAM_STATUS_URL).mock(
            return_value=httpx.Response(200, json={"source": {"location": LOCATION}})
        )
        broken = Creator(Platform.TWITTER_SPACE, "783214", "Twitter")

        spaces = await adapter.get_status_for_tracked([broken, tracked])

        assert [s.session_id for s in spaces] == [SPACE_ID]
        assert adapter.stats.errors == 1


class TestResolveCreator:
    """Tests for subscription-time lookups."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_resolves_user_id(self, adapter):
        route = respx.get(SPOTLIGHTS_URL).mock(
            return_value=httpx.Response(
                200,
                json={"data": {"user_result_by_screen_name": {"result": {"rest_id": "44196397"}}}},
            )
        )

        creator = await adapter.resolve_creator("elonmusk")

        assert creator == Creator(Platform.TWITTER_SPACE, "44196397", "elonmusk")
        variables = json.loads(route.calls.last.request.url.params["variables"])
        assert variables == {"screen_name": "elonmusk"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_unknown_user(self, adapter):
        respx.get(SPOTLIGHTS_URL).mock(
            return_value=httpx.Response(200, json={"data": {}})
        )

        assert await adapter.resolve_creator("nobody_here") is None


class TestFormatMessage:
    """Tests for notification text."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_started_includes_download_command(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload(title="Q&A"))
        )
        respx.get(STREAM_STATUS_URL).mock(
            return_value=httpx.Response(200, json={"source": {"location": LOCATION}})
        )

        text = adapter.format_message(await adapter.get_status(SPACE_ID))

        lines = text.split("\n")
        assert lines[0] == (
            "*elonmusk* \\([@elonmusk](https://twitter.com/elonmusk)\\)'s Twitter Space started"
        )
        assert lines[1] == f"[Q&A](https://twitter.com/i/spaces/{SPACE_ID})"
        assert lines[2] == "```shell"
        assert lines[3].startswith(f"twspace_dl -ei https://twitter.com/i/spaces/{SPACE_ID} -f ")
        assert lines[4] == "```"

    @pytest.mark.asyncio
    @respx.mock
    async def test_ended(self, adapter):
        respx.get(AUDIO_SPACE_URL).mock(
            return_value=httpx.Response(200, json=_space_payload(state="Ended"))
        )

        text = adapter.format_message(await adapter.get_status(SPACE_ID))

        assert text.endswith("'s Twitter Space ended")
