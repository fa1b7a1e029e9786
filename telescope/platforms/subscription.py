"""
Subscription URL resolution.

Turns a profile URL such as ``https://x.com/some_user`` or
``live.bilibili.com/21452505`` into a ``Creator`` by picking the platform
from the host alias, validating the path and asking the platform adapter
for the durable id.
"""

import re
from collections.abc import Mapping
from urllib.parse import urlsplit

from telescope.platforms.base_adapter import BaseAdapter
from telescope.platforms.schemas import Creator, Platform, UnsupportedPlatformError

_SCHEME = re.compile(r"^https?://", re.IGNORECASE)

PATH_PATTERNS: dict[Platform, re.Pattern[str]] = {
    Platform.TWITTER_SPACE: re.compile(r"^/(?P<id>\w{4,15})/?$"),
    Platform.BILIBILI_LIVE: re.compile(r"^/(?P<id>\d+)/?$"),
}


class InvalidSubscriptionError(ValueError):
    """Raised when a URL cannot be turned into a subscription."""


def parse_subscription_url(url: str) -> tuple[Platform, str]:
    """
    Split a profile URL into platform and path identifier.

    A missing scheme is tolerated.

    Raises:
        UnsupportedPlatformError: If the host is not a known alias
        InvalidSubscriptionError: If the URL or its path is malformed
    """
    url = url.strip()
    if not _SCHEME.match(url):
        url = f"https://{url}"

    parts = urlsplit(url)
    if not parts.hostname:
        raise InvalidSubscriptionError("Hostname not found")

    platform = Platform.from_host(parts.hostname)
    match = PATH_PATTERNS[platform].match(parts.path)
    if match is None:
        raise InvalidSubscriptionError(f"Invalid {platform.value} path: {parts.path!r}")
    return platform, match.group("id")


async def resolve_subscription(
    url: str,
    adapters: Mapping[Platform, BaseAdapter],
) -> Creator:
    """
    Resolve a profile URL into a Creator.

    Raises:
        UnsupportedPlatformError: If the host is unknown or its adapter is disabled
        InvalidSubscriptionError: If the URL is malformed or the user does not exist
    """
    platform, path_id = parse_subscription_url(url)
    adapter = adapters.get(platform)
    if adapter is None:
        raise UnsupportedPlatformError(f"{platform.value} is not enabled")

    creator = await adapter.resolve_creator(path_id)
    if creator is None:
        raise InvalidSubscriptionError(f"Unknown {platform.value} user: {path_id}")
    return creator
