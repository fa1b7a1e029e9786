"""
Twitter Space adapter.

Talks to the authenticated web API (the same endpoints x.com uses) with a
logged-in session's ``auth_token`` and ``ct0`` cookies.

Endpoints:
    - GraphQL ``AudioSpaceById``: state and metadata of one Space
    - GraphQL ``ProfileSpotlightsQuery``: screen name -> user id
    - Fleets ``avatar_content``: which of up to 100 users are hosting a Space
    - ``live_video_stream/status``: HLS location of a running Space

Upstream states ``Running``, ``Ended`` and ``TimedOut`` map directly to
LiveState; any other value is surfaced as Unknown.
"""

import json
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from telescope.config.settings import get_settings
from telescope.notifications.markdown import bold, code_block, escape, link
from telescope.platforms.base_adapter import (
    BaseAdapter,
    MalformedPayloadError,
    chunked,
    dig,
    dig_str,
)
from telescope.platforms.http_client import HTTPClient
from telescope.platforms.schemas import (
    Attachment,
    Creator,
    LiveSnapshot,
    LiveState,
    Platform,
)

logger = logging.getLogger(__name__)

TWITTER_API_BASE = "https://x.com/i/api"
GRAPHQL_API = f"{TWITTER_API_BASE}/graphql"
FLEETS_API = f"{TWITTER_API_BASE}/fleets"
LIVE_VIDEO_STREAM_API = f"{TWITTER_API_BASE}/1.1/live_video_stream"

# Public bearer token of the x.com web client
WEB_BEARER_TOKEN = (
    "AAAAAAAAAAAAAAAAAAAAANRILgAAAAAAnNwIzUejRCOuH5E6I8xnZz4puTs"
    "%3D1Zv7ttfk8LF81IUq16cHjhLTvJu4FA33AGWWjCpTnA"
)

AUDIO_SPACE_BY_ID = ("xVEzTKg_mLTHubK5ayL0HA", "AudioSpaceById")
PROFILE_SPOTLIGHTS_QUERY = ("ZQEuHPrIYlvh1NAyIQHP_w", "ProfileSpotlightsQuery")

AUDIO_SPACE_FEATURES = {
    "spaces_2022_h2_clipping": True,
    "spaces_2022_h2_spaces_communities": True,
    "responsive_web_graphql_exclude_directive_enabled": True,
    "verified_phone_label_enabled": False,
    "creator_subscriptions_tweet_preview_api_enabled": True,
    "responsive_web_graphql_skip_user_profile_image_extensions_enabled": False,
    "tweetypie_unmention_optimization_enabled": True,
    "responsive_web_edit_tweet_api_enabled": True,
    "graphql_is_translatable_rweb_tweet_is_translatable_enabled": True,
    "view_counts_everywhere_api_enabled": True,
    "longform_notetweets_consumption_enabled": True,
    "responsive_web_twitter_article_tweet_consumption_enabled": False,
    "tweet_awards_web_tipping_enabled": False,
    "freedom_of_speech_not_reach_fetch_enabled": True,
    "standardized_nudges_misinfo": True,
    "tweet_with_visibility_results_prefer_gql_limited_actions_policy_enabled": True,
    "responsive_web_graphql_timeline_navigation_enabled": True,
    "longform_notetweets_rich_text_read_enabled": True,
    "longform_notetweets_inline_media_enabled": True,
    "responsive_web_media_download_video_enabled": False,
    "responsive_web_enhance_cards_enabled": False,
}

LIVE_PLAYLIST_SUFFIX = "dynamic_playlist.m3u8?type=live"
MASTER_PLAYLIST_SUFFIX = "master_playlist.m3u8"


def _compact(value: dict[str, Any]) -> str:
    return json.dumps(value, separators=(",", ":"))


class TwitterSpaceAdapter(BaseAdapter):
    """
    Twitter Space watcher.

    The bulk probe asks ``avatar_content`` which tracked users are hosting
    a Space (``batch_size`` users per request), then fetches each Space
    it reports to confirm the Running state.
    """

    def __init__(
        self,
        auth_token: str | None = None,
        csrf_token: str | None = None,
        batch_size: int | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        auth_token = auth_token or settings.twitter_auth_token or ""
        csrf_token = csrf_token or settings.twitter_csrf_token or ""

        super().__init__(
            headers={
                "Authorization": f"Bearer {WEB_BEARER_TOKEN}",
                "x-csrf-token": csrf_token,
            },
            cookies={"auth_token": auth_token, "ct0": csrf_token},
            timeout=timeout,
            max_retries=max_retries,
        )
        self._batch_size = min(batch_size or settings.twitter_batch_size, 100)

        if not auth_token or not csrf_token:
            logger.warning(
                "Twitter session tokens not configured. "
                "Space lookups will be rejected upstream."
            )

    @property
    def platform(self) -> Platform:
        return Platform.TWITTER_SPACE

    # Raw endpoints

    async def _audio_space_by_id(self, client: HTTPClient, space_id: str) -> Any | None:
        query_id, operation = AUDIO_SPACE_BY_ID
        variables = {
            "id": space_id,
            "isMetatagsQuery": True,
            "withReplays": True,
            "withListeners": True,
        }
        return await self._get_json(
            client,
            f"{GRAPHQL_API}/{query_id}/{operation}",
            params={
                "variables": _compact(variables),
                "features": _compact(AUDIO_SPACE_FEATURES),
            },
        )

    async def _profile_spotlights(self, client: HTTPClient, screen_name: str) -> Any | None:
        query_id, operation = PROFILE_SPOTLIGHTS_QUERY
        return await self._get_json(
            client,
            f"{GRAPHQL_API}/{query_id}/{operation}",
            params={"variables": _compact({"screen_name": screen_name})},
        )

    async def _avatar_content(self, client: HTTPClient, user_ids: Sequence[str]) -> Any | None:
        return await self._get_json(
            client,
            f"{FLEETS_API}/v1/avatar_content",
            params={"user_ids": ",".join(user_ids), "only_spaces": "true"},
        )

    async def _master_url(self, client: HTTPClient, media_key: str) -> str | None:
        result = await self._get_json(client, f"{LIVE_VIDEO_STREAM_API}/status/{media_key}")
        if result is None:
            return None
        try:
            location = dig_str(result, "source", "location")
        except MalformedPayloadError as e:
            logger.warning("No stream location for media %s: %s", media_key, e)
            return None
        return location.replace(LIVE_PLAYLIST_SUFFIX, MASTER_PLAYLIST_SUFFIX)

    # Normalization

    def _transform(
        self,
        space_id: str,
        metadata: dict[str, Any],
        language: str | None,
        master_url: str | None,
    ) -> LiveSnapshot:
        """
        Build a snapshot from ``audioSpace.metadata``.

        Raises:
            MalformedPayloadError: If a required field is missing
            ValidationError: If a field has the wrong type or is empty
            OverflowError, OSError: If ``started_at`` is out of range
        """
        creator = dig(metadata, "creator_results", "result")
        screen_name = dig_str(creator, "legacy", "screen_name")
        started_at = metadata.get("started_at")
        start_time = (
            datetime.fromtimestamp(started_at / 1000, tz=timezone.utc)
            if isinstance(started_at, int) and not isinstance(started_at, bool)
            else datetime.now(timezone.utc)
        )

        return LiveSnapshot(
            session_id=space_id,
            url=f"https://twitter.com/i/spaces/{space_id}",
            title=metadata.get("title") or "",
            creator=Creator(
                platform=self.platform,
                external_id=dig_str(creator, "rest_id"),
                display_name=screen_name,
            ),
            creator_profile_url=f"https://twitter.com/{screen_name}",
            attachment=Attachment(
                kind="document",
                url=dig_str(creator, "legacy", "profile_image_url_https"),
            ),
            start_time=start_time,
            state=LiveState.parse(dig_str(metadata, "state")),
            language=language or "und",
            available_for_replay=bool(metadata.get("is_space_available_for_replay", False)),
            master_url=master_url,
        )

    async def _fetch_space(
        self,
        client: HTTPClient,
        space_id: str,
        language: str | None,
    ) -> LiveSnapshot | None:
        payload = await self._audio_space_by_id(client, space_id)
        if payload is None:
            return None

        try:
            metadata = dig(payload, "data", "audioSpace", "metadata")
            state = LiveState.parse(dig_str(metadata, "state"))
            master_url = None
            if state.is_running:
                master_url = await self._master_url(client, dig_str(metadata, "media_key"))
            snapshot = self._transform(space_id, metadata, language, master_url)
        except (MalformedPayloadError, ValidationError, ValueError, OverflowError, OSError) as e:
            self._stats.errors += 1
            logger.error("Malformed AudioSpaceById payload for %s: %s", space_id, e)
            return None

        return snapshot

    # Adapter interface

    async def get_status(
        self,
        session_id: str,
        language: str | None = None,
    ) -> LiveSnapshot | None:
        self._reset_stats()
        async with self._client() as client:
            return await self._fetch_space(client, session_id, language)

    async def get_status_for_tracked(
        self,
        creators: Sequence[Creator],
    ) -> list[LiveSnapshot]:
        self._reset_stats()
        spaces: list[LiveSnapshot] = []
        user_ids = [creator.external_id for creator in creators]

        async with self._client() as client:
            for batch in chunked(user_ids, self._batch_size):
                result = await self._avatar_content(client, batch)
                if result is None:
                    continue

                users = result.get("users") if isinstance(result, dict) else None
                if not isinstance(users, dict):
                    logger.error("Malformed avatar_content payload: no users object")
                    self._stats.errors += 1
                    continue

                for user_id, value in users.items():
                    try:
                        audio_space = dig(value, "spaces", "live_content", "audiospace")
                        broadcast_id = dig_str(audio_space, "broadcast_id")
                    except MalformedPayloadError:
                        # Not hosting a Space right now
                        continue

                    language = audio_space.get("language")
                    space = await self._fetch_space(client, broadcast_id, language)
                    if space is not None and space.state.is_running:
                        spaces.append(space)
                        self._stats.snapshots += 1
                    elif space is not None:
                        logger.debug(
                            "Space %s of user %s is not running (%s)",
                            broadcast_id, user_id, space.state.kind.value,
                        )

        self._log_completed("probe")
        return spaces

    async def resolve_creator(self, path_id: str) -> Creator | None:
        async with self._client() as client:
            result = await self._profile_spotlights(client, path_id)
        if result is None:
            return None
        try:
            user_id = dig_str(result, "data", "user_result_by_screen_name", "result", "rest_id")
        except MalformedPayloadError:
            logger.info("Twitter user %s not found", path_id)
            return None
        return Creator(platform=self.platform, external_id=user_id, display_name=path_id)

    def format_message(self, snapshot: LiveSnapshot) -> str:
        screen_name = snapshot.creator.display_name
        name = bold(escape(screen_name))
        profile = link(
            snapshot.creator_profile_url or f"https://twitter.com/{screen_name}",
            escape(f"@{screen_name}"),
        )

        if snapshot.state.is_running:
            lines = [
                f"{name} \\({profile}\\)'s Twitter Space started",
                link(snapshot.url, escape(snapshot.title or snapshot.url)),
            ]
            if snapshot.master_url:
                lines.append(
                    code_block(
                        f"twspace_dl -ei {snapshot.url} -f {snapshot.master_url}",
                        "shell",
                    )
                )
            return "\n".join(lines)
        if snapshot.state.is_terminal:
            return f"{name} \\({profile}\\)'s Twitter Space ended"
        return escape(f"Unknown live state: {snapshot.state.raw}")
