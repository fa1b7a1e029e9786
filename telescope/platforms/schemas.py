"""
Shared live-state schema for all platform adapters.

Every adapter normalizes its upstream payloads into ``LiveSnapshot``
instances. The Reconciler only ever sees these types; raw JSON never
crosses the adapter boundary.

The ``Creator.key`` encoding (``"<platform>:<id>:<display name>"``) is the
Redis wire format and must stay stable for existing ledgers.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class UnsupportedPlatformError(ValueError):
    """Raised when a host or name does not map to a known platform."""


class InvalidCreatorKeyError(ValueError):
    """Raised when a stored creator key cannot be decoded."""


class Platform(str, Enum):
    """Supported live platforms. The value is the canonical display name."""

    TWITTER_SPACE = "Twitter Space"
    BILIBILI_LIVE = "Bilibili Live"

    @property
    def hosts(self) -> tuple[str, ...]:
        """URL host aliases accepted when creating a subscription."""
        return _PLATFORM_HOSTS[self]

    @classmethod
    def from_host(cls, host: str) -> "Platform":
        host = host.lower().rstrip(".")
        for platform in cls:
            if host in platform.hosts:
                return platform
        raise UnsupportedPlatformError(f"Unsupported platform: {host}")

    @classmethod
    def from_name(cls, name: str) -> "Platform":
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedPlatformError(f"Unsupported platform: {name}") from None


_PLATFORM_HOSTS: dict[Platform, tuple[str, ...]] = {
    Platform.TWITTER_SPACE: ("twitter.com", "www.twitter.com", "x.com", "www.x.com"),
    Platform.BILIBILI_LIVE: ("live.bilibili.com",),
}


@dataclass(frozen=True)
class Creator:
    """
    A trackable entity on a platform.

    Attributes:
        platform: Platform the creator broadcasts on
        external_id: Durable platform-native id (Twitter user id, Bilibili room id)
        display_name: Cached human-readable label, may go stale
    """

    platform: Platform
    external_id: str
    display_name: str

    @property
    def key(self) -> str:
        """Store key for this creator."""
        return f"{self.platform.value}:{self.external_id}:{self.display_name}"

    @classmethod
    def from_key(cls, key: str) -> "Creator":
        """
        Decode a store key.

        The display name is the last segment and may itself contain colons.

        Raises:
            InvalidCreatorKeyError: If the key is malformed or names an
                unknown platform.
        """
        parts = key.split(":", 2)
        if len(parts) != 3 or not parts[1] or not parts[2]:
            raise InvalidCreatorKeyError(f"Invalid creator key: {key!r}")
        platform_name, external_id, display_name = parts
        try:
            platform = Platform.from_name(platform_name)
        except UnsupportedPlatformError as e:
            raise InvalidCreatorKeyError(str(e)) from e
        return cls(platform=platform, external_id=external_id, display_name=display_name)

    def same_identity(self, other: "Creator") -> bool:
        """Two creators are the same entity if platform and id match."""
        return self.platform == other.platform and self.external_id == other.external_id

    def __str__(self) -> str:
        return f"{self.platform.value}: {self.display_name}"


class LiveStateKind(str, Enum):
    RUNNING = "running"
    ENDED = "ended"
    TIMED_OUT = "timed_out"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class LiveState:
    """
    Normalized live state.

    ``raw`` carries the upstream value for ``UNKNOWN`` states so it can be
    surfaced to recipients.
    """

    kind: LiveStateKind
    raw: str | None = None

    @classmethod
    def running(cls) -> "LiveState":
        return cls(LiveStateKind.RUNNING)

    @classmethod
    def ended(cls) -> "LiveState":
        return cls(LiveStateKind.ENDED)

    @classmethod
    def timed_out(cls) -> "LiveState":
        return cls(LiveStateKind.TIMED_OUT)

    @classmethod
    def unknown(cls, raw: str) -> "LiveState":
        return cls(LiveStateKind.UNKNOWN, raw)

    @classmethod
    def parse(cls, value: str) -> "LiveState":
        """Map an upstream state name (``Running``, ``Ended``, ``TimedOut``)."""
        known = {
            "Running": LiveStateKind.RUNNING,
            "Ended": LiveStateKind.ENDED,
            "TimedOut": LiveStateKind.TIMED_OUT,
        }
        kind = known.get(value)
        if kind is None:
            return cls.unknown(value)
        return cls(kind)

    @property
    def is_running(self) -> bool:
        return self.kind == LiveStateKind.RUNNING

    @property
    def is_terminal(self) -> bool:
        """Ended and TimedOut are handled identically by the watcher."""
        return self.kind in (LiveStateKind.ENDED, LiveStateKind.TIMED_OUT)

    @property
    def is_unknown(self) -> bool:
        return self.kind == LiveStateKind.UNKNOWN


class Attachment(BaseModel):
    """Media sent alongside a "started" notification."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["photo", "document"]
    url: str


class LiveSnapshot(BaseModel):
    """
    Point-in-time view of one live session.

    All platform adapters MUST output this structure.
    """

    session_id: str = Field(..., min_length=1, description="Platform-issued session id")
    url: str = Field(..., description="Canonical URL of the live session")
    title: str = ""
    creator: Creator
    creator_profile_url: str | None = None
    attachment: Attachment | None = None
    start_time: datetime = Field(default_factory=_utc_now)
    state: LiveState
    language: str = "und"
    available_for_replay: bool = False
    master_url: str | None = Field(
        default=None,
        description="HLS master playlist, only known while running",
    )
