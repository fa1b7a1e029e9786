"""
Base adapter interface and shared functionality for platform adapters.

Each platform adapter implements two probes used by the watcher:

- ``get_status(session_id)`` re-checks one known session
- ``get_status_for_tracked(creators)`` bulk-probes idle creators for
  newly started sessions

plus ``resolve_creator()`` for subscription-time lookups and
``format_message()`` for notification text. The base class provides:

- HTTP access through ``HTTPClient`` with failures degraded to ``None``
- Per-call statistics
- Safe extraction helpers for nested JSON payloads

Adapters never raise to their callers: any transport error, non-2xx
status, JSON decode error or missing field yields ``None`` (or omission
from a bulk result) and a log line.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from telescope.config.settings import get_settings
from telescope.platforms.http_client import HTTPClient, HTTPClientError, RetryConfig
from telescope.platforms.schemas import Creator, LiveSnapshot, Platform

logger = logging.getLogger(__name__)


class MalformedPayloadError(Exception):
    """Raised internally when an upstream payload lacks an expected field."""


@dataclass
class AdapterStats:
    """Statistics for one adapter call."""

    requests: int = 0
    snapshots: int = 0
    errors: int = 0
    start_time: float = field(default_factory=time.monotonic)

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.start_time


class BaseAdapter(ABC):
    """
    Abstract base class for platform adapters.

    Subclasses must implement:
        - platform: Platform enum value
        - get_status(): Re-check one session
        - get_status_for_tracked(): Bulk-probe idle creators
        - resolve_creator(): Look up a creator from a URL path segment
        - format_message(): Render notification text for a snapshot
    """

    def __init__(
        self,
        headers: dict[str, str] | None = None,
        cookies: dict[str, str] | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self._headers = headers or {}
        self._cookies = cookies or {}
        self._timeout = timeout or settings.http_timeout_seconds
        self._retry_config = RetryConfig(
            max_retries=settings.max_http_retries if max_retries is None else max_retries,
            max_backoff_seconds=settings.max_backoff_seconds,
        )
        self._stats = AdapterStats()

    @property
    @abstractmethod
    def platform(self) -> Platform:
        """Return the platform this adapter handles."""
        ...

    @property
    def name(self) -> str:
        """Human-readable adapter name."""
        return f"{self.platform.name.lower()}_adapter"

    @property
    def stats(self) -> AdapterStats:
        """Get statistics of the most recent call."""
        return self._stats

    @abstractmethod
    async def get_status(
        self,
        session_id: str,
        language: str | None = None,
    ) -> LiveSnapshot | None:
        """
        Fetch the current state of a known session.

        Args:
            session_id: Session (or room) identifier stored in the ledger
            language: Optional language hint carried into the snapshot

        Returns:
            LiveSnapshot, or None on any failure or when not found
        """
        ...

    @abstractmethod
    async def get_status_for_tracked(
        self,
        creators: Sequence[Creator],
    ) -> list[LiveSnapshot]:
        """
        Probe creators for newly started sessions.

        Returns:
            Snapshots in the Running state only. Creators without an
            active session are simply absent.
        """
        ...

    @abstractmethod
    async def resolve_creator(self, path_id: str) -> Creator | None:
        """
        Resolve a creator from the identifier found in a profile URL.

        Args:
            path_id: Screen name or room id taken from the URL path

        Returns:
            Creator, or None if the platform does not know it
        """
        ...

    @abstractmethod
    def format_message(self, snapshot: LiveSnapshot) -> str:
        """Render MarkdownV2 notification text for the snapshot's state."""
        ...

    def _client(self) -> HTTPClient:
        return HTTPClient(
            retry_config=self._retry_config,
            timeout=self._timeout,
            headers=self._headers,
            cookies=self._cookies,
        )

    async def _get_json(
        self,
        client: HTTPClient,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> Any | None:
        """GET and decode JSON, logging and returning None on failure."""
        self._stats.requests += 1
        try:
            return await client.get_json(url, params=params)
        except HTTPClientError as e:
            self._stats.errors += 1
            logger.error(
                "%s request failed: %s (status=%s)",
                self.name, e, e.status_code,
            )
            return None

    async def health_check(self) -> bool:
        """
        Check if the adapter can reach its platform.

        Override in subclasses for platform-specific health checks.
        """
        return True

    def _reset_stats(self) -> None:
        self._stats = AdapterStats()

    def _log_completed(self, operation: str) -> None:
        logger.info(
            f"{self.name} {operation} completed: "
            f"requests={self._stats.requests}, "
            f"snapshots={self._stats.snapshots}, "
            f"errors={self._stats.errors}, "
            f"elapsed={self._stats.elapsed_seconds:.2f}s"
        )


def dig(data: Any, *path: str | int) -> Any:
    """
    Walk a nested JSON structure.

    Raises:
        MalformedPayloadError: If any step is missing or of the wrong type
    """
    current = data
    for step in path:
        try:
            current = current[step]
        except (KeyError, IndexError, TypeError):
            raise MalformedPayloadError(
                f"missing field {'.'.join(str(p) for p in path)!r} at {step!r}"
            ) from None
    if current is None:
        raise MalformedPayloadError(
            f"null field {'.'.join(str(p) for p in path)!r}"
        )
    return current


def dig_str(data: Any, *path: str | int) -> str:
    value = dig(data, *path)
    if not isinstance(value, str):
        raise MalformedPayloadError(
            f"field {'.'.join(str(p) for p in path)!r} is not a string"
        )
    return value


def dig_int(data: Any, *path: str | int) -> int:
    value = dig(data, *path)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedPayloadError(
            f"field {'.'.join(str(p) for p in path)!r} is not an integer"
        )
    return value


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    """Split a sequence into consecutive chunks of at most ``size`` items."""
    return [items[i:i + size] for i in range(0, len(items), size)]
