"""
Bilibili Live adapter.

Uses the public ``getInfoByRoom`` web endpoint; no credentials needed.

Identity:
    - Creator id: canonical (long) room id
    - Session id: ``"<room_id>_<live_start_time>"`` so a room that went
      offline and came back between two ticks reports the old session as
      ended instead of silently continuing it

Upstream ``live_status``: 0 = offline, 1 = live, 2 = playlist rotation.
Anything other than 0/1 is surfaced as Unknown.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from telescope.notifications.markdown import bold, escape, link
from telescope.platforms.base_adapter import (
    BaseAdapter,
    MalformedPayloadError,
    dig,
    dig_int,
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

BILIBILI_LIVE_API = "https://api.live.bilibili.com"
GET_INFO_BY_ROOM = f"{BILIBILI_LIVE_API}/xlive/web-room/v1/index/getInfoByRoom"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36"
)


def make_session_id(room_id: str, start_ts: int) -> str:
    return f"{room_id}_{start_ts}"


def split_session_id(session_id: str) -> tuple[str, int | None]:
    """Split a session id into room id and start timestamp (if encoded)."""
    room_id, sep, start = session_id.partition("_")
    if sep and start.isdigit():
        return room_id, int(start)
    return room_id, None


class BilibiliAdapter(BaseAdapter):
    """
    Bilibili Live room watcher.

    The bulk probe issues one request per room; Bilibili offers no batch
    endpoint keyed by room id.
    """

    def __init__(self, timeout: float | None = None, max_retries: int | None = None):
        super().__init__(
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
            max_retries=max_retries,
        )

    @property
    def platform(self) -> Platform:
        return Platform.BILIBILI_LIVE

    async def _get_info_by_room(
        self,
        client: HTTPClient,
        room_id: str,
    ) -> dict[str, Any] | None:
        result = await self._get_json(client, GET_INFO_BY_ROOM, params={"room_id": room_id})
        if result is None:
            return None
        if not isinstance(result, dict) or result.get("code") != 0:
            code = result.get("code") if isinstance(result, dict) else None
            logger.warning(
                "Bilibili room %s not available (code=%s)", room_id, code,
            )
            return None
        data = result.get("data")
        if not isinstance(data, dict):
            logger.warning("Bilibili room %s returned no data", room_id)
            return None
        return data

    def _transform(
        self,
        data: dict[str, Any],
        session_id: str | None = None,
    ) -> LiveSnapshot | None:
        """
        Build a snapshot from a getInfoByRoom payload.

        Args:
            data: ``data`` object of the response
            session_id: Session being re-checked, or None when probing

        Returns:
            LiveSnapshot or None if the payload is malformed or out of range
        """
        try:
            room_id = str(dig_int(data, "room_info", "room_id"))
            uid = dig_int(data, "room_info", "uid")
            title = dig_str(data, "room_info", "title")
            status = dig_int(data, "room_info", "live_status")
            start_ts = dig_int(data, "room_info", "live_start_time")
            uname = dig_str(data, "anchor_info", "base_info", "uname")
            cover = dig(data, "room_info", "cover")
        except MalformedPayloadError as e:
            self._stats.errors += 1
            logger.error("Malformed Bilibili payload: %s", e)
            return None

        current_session = make_session_id(room_id, start_ts)
        if status == 1:
            state = LiveState.running()
        elif status == 0:
            state = LiveState.ended()
        else:
            state = LiveState.unknown(str(status))

        if session_id is not None:
            _, tracked_start = split_session_id(session_id)
            # The room is live again, but with a different broadcast
            if state.is_running and tracked_start is not None and tracked_start != start_ts:
                state = LiveState.ended()
            if tracked_start is not None:
                start_ts = tracked_start
        else:
            session_id = current_session

        try:
            return LiveSnapshot(
                session_id=session_id,
                url=f"https://live.bilibili.com/{room_id}",
                title=title,
                creator=Creator(
                    platform=self.platform,
                    external_id=room_id,
                    display_name=uname,
                ),
                creator_profile_url=f"https://space.bilibili.com/{uid}",
                attachment=Attachment(kind="photo", url=cover) if isinstance(cover, str) and cover else None,
                start_time=datetime.fromtimestamp(start_ts, tz=timezone.utc),
                state=state,
            )
        except (ValidationError, ValueError, OverflowError, OSError) as e:
            self._stats.errors += 1
            logger.error("Invalid Bilibili room %s payload: %s", room_id, e)
            return None

    async def get_status(
        self,
        session_id: str,
        language: str | None = None,
    ) -> LiveSnapshot | None:
        self._reset_stats()
        room_id, _ = split_session_id(session_id)
        async with self._client() as client:
            data = await self._get_info_by_room(client, room_id)
        if data is None:
            return None
        snapshot = self._transform(data, session_id=session_id)
        if snapshot is not None and language:
            snapshot.language = language
        return snapshot

    async def get_status_for_tracked(
        self,
        creators: Sequence[Creator],
    ) -> list[LiveSnapshot]:
        self._reset_stats()
        snapshots: list[LiveSnapshot] = []

        async with self._client() as client:
            for creator in creators:
                data = await self._get_info_by_room(client, creator.external_id)
                if data is None:
                    continue
                snapshot = self._transform(data)
                if snapshot is None:
                    continue
                if snapshot.state.is_running:
                    # Rooms subscribed by short id keep the id they are tracked under
                    if snapshot.creator.external_id != creator.external_id:
                        snapshot.creator = Creator(
                            platform=self.platform,
                            external_id=creator.external_id,
                            display_name=snapshot.creator.display_name,
                        )
                    snapshots.append(snapshot)
                    self._stats.snapshots += 1

        self._log_completed("probe")
        return snapshots

    async def resolve_creator(self, path_id: str) -> Creator | None:
        if not path_id.isdigit():
            return None
        async with self._client() as client:
            data = await self._get_info_by_room(client, path_id)
        if data is None:
            return None
        try:
            room_id = dig_int(data, "room_info", "room_id")
            uname = dig_str(data, "anchor_info", "base_info", "uname")
        except MalformedPayloadError as e:
            logger.error("Malformed Bilibili payload for room %s: %s", path_id, e)
            return None
        return Creator(platform=self.platform, external_id=str(room_id), display_name=uname)

    def format_message(self, snapshot: LiveSnapshot) -> str:
        name = bold(escape(snapshot.creator.display_name))
        profile_url = snapshot.creator_profile_url or snapshot.url
        uid = profile_url.rstrip("/").rsplit("/", 1)[-1]
        profile = link(profile_url, escape(uid))

        if snapshot.state.is_running:
            return (
                f"{name} \\({profile}\\)'s Bilibili Live started\n"
                f"{link(snapshot.url, escape(snapshot.title))}"
            )
        if snapshot.state.is_terminal:
            return f"{name} \\({profile}\\)'s Bilibili Live ended"
        return escape(f"Unknown live state: {snapshot.state.raw}")
