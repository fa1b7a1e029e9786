"""
Subscription ledger backed by Redis.

Key layout:
- ``subs`` (hash): creator key -> current session id (``""`` when idle)
- ``<creator key>`` (hash): recipient id -> anchor message id (``0`` when none)
- ``chat:<recipient>`` (set): creator keys the recipient follows

A creator key is ``"<platform>:<external id>:<display name>"`` (see
``Creator.key``). Keys are decoded into ``Creator`` objects here and never
leave this module as raw strings.

Multi-field writes run as optimistic transactions: the creator hash is
WATCHed, membership is checked, then the writes are queued in MULTI/EXEC.
A concurrent subscribe or unsubscribe on the same creator aborts the
commit with ``LedgerError`` instead of resurrecting stale state.
"""

import logging
from collections.abc import AsyncIterator
from types import TracebackType

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from telescope.config.settings import get_settings
from telescope.platforms.schemas import Creator, InvalidCreatorKeyError, Platform

logger = logging.getLogger(__name__)

SUBS_KEY = "subs"
CHAT_KEY_PREFIX = "chat:"


class LedgerError(Exception):
    """Raised when a ledger read or commit cannot be completed."""


def chat_key(recipient: str) -> str:
    return f"{CHAT_KEY_PREFIX}{recipient}"


def _parse_anchor(value: str | None) -> int | None:
    if not value:
        return None
    try:
        anchor = int(value)
    except ValueError:
        logger.warning("Ignoring malformed anchor value %r", value)
        return None
    return anchor or None


class SubscriptionLedger:
    """
    Persistent subscription state for the watcher.

    Usage:
        async with SubscriptionLedger() as ledger:
            async for creator, session_id in ledger.scan_tracked_creators(platform):
                ...
    """

    def __init__(self, redis_url: str | None = None):
        """
        Initialize the ledger.

        Args:
            redis_url: Redis connection URL (default from settings)
        """
        self._redis_url = redis_url or str(get_settings().redis_url)
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._redis is not None:
            return
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Subscription ledger connected to Redis")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None
            logger.info("Subscription ledger connection closed")

    async def __aenter__(self) -> "SubscriptionLedger":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("Not connected to Redis. Call connect() first.")
        return self._redis

    # ── Reads used by the reconciler ────────────────────────────

    async def scan_tracked_creators(
        self,
        platform: Platform,
    ) -> AsyncIterator[tuple[Creator, str | None]]:
        """
        Enumerate tracked creators of one platform.

        Point-in-time scan (HSCAN): entries changed during the scan may or
        may not appear. Malformed keys are logged and skipped.

        Yields:
            (creator, current session id or None when idle)

        Raises:
            LedgerError: If Redis fails mid-scan
        """
        try:
            async for key, session_id in self.redis.hscan_iter(
                SUBS_KEY, match=f"{platform.value}:*"
            ):
                try:
                    creator = Creator.from_key(key)
                except InvalidCreatorKeyError as e:
                    logger.error("Skipping malformed tracked creator key %r: %s", key, e)
                    continue
                yield creator, session_id or None
        except RedisError as e:
            raise LedgerError(f"Scan of tracked {platform.value} creators failed: {e}") from e

    async def scan_anchors(
        self,
        creator: Creator,
    ) -> AsyncIterator[tuple[str, int | None]]:
        """
        Enumerate the recipients of a creator with their anchor message ids.

        Yields:
            (recipient id, anchor message id or None)

        Raises:
            LedgerError: If Redis fails mid-scan
        """
        try:
            async for recipient, anchor in self.redis.hscan_iter(creator.key):
                yield recipient, _parse_anchor(anchor)
        except RedisError as e:
            raise LedgerError(f"Scan of anchors for {creator} failed: {e}") from e

    async def scan_subscribers(self, creator: Creator) -> list[str]:
        """Return the recipients subscribed to a creator."""
        try:
            return list(await self.redis.hkeys(creator.key))
        except RedisError as e:
            raise LedgerError(f"Reading subscribers of {creator} failed: {e}") from e

    # ── Commits ─────────────────────────────────────────────────

    async def commit_session_start(
        self,
        creator: Creator,
        recipient: str,
        session_id: str,
        anchor: int,
    ) -> bool:
        """
        Record a delivered "started" notification.

        Sets the creator's current session id and the recipient's anchor
        in one transaction.

        Returns:
            True if written, False if the recipient no longer subscribes

        Raises:
            LedgerError: On concurrent modification or Redis failure
        """
        key = creator.key
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if not await pipe.hexists(key, recipient):
                    logger.info(
                        "Skipping session start for %s: %s no longer subscribed",
                        creator, recipient,
                    )
                    return False
                pipe.multi()
                pipe.hset(SUBS_KEY, key, session_id)
                pipe.hset(key, recipient, anchor)
                await pipe.execute()
        except WatchError as e:
            raise LedgerError(f"Concurrent modification of {creator}") from e
        except RedisError as e:
            raise LedgerError(f"Session start commit for {creator} failed: {e}") from e
        return True

    async def commit_session_end(
        self,
        creator: Creator,
        recipient: str | None = None,
    ) -> bool:
        """
        Clear the creator's session id and, if given, the recipient's anchor.

        Fields are only written while their owner still exists (the creator
        in the tracked index, the recipient in the creator's hash), so an
        unsubscribe racing a tick is never undone. Calling this twice is
        equivalent to calling it once.

        Returns:
            True if anything was written, False if neither field exists

        Raises:
            LedgerError: On concurrent modification or Redis failure
        """
        key = creator.key
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                tracked = await pipe.hexists(SUBS_KEY, key)
                subscribed = recipient is not None and await pipe.hexists(key, recipient)
                if not tracked and not subscribed:
                    return False
                pipe.multi()
                if tracked:
                    pipe.hset(SUBS_KEY, key, "")
                if subscribed:
                    pipe.hset(key, recipient, 0)
                await pipe.execute()
        except WatchError as e:
            raise LedgerError(f"Concurrent modification of {creator}") from e
        except RedisError as e:
            raise LedgerError(f"Session end commit for {creator} failed: {e}") from e
        return True

    # ── Subscription management ─────────────────────────────────

    async def add_subscription(self, creator: Creator, recipient: str) -> bool:
        """
        Subscribe a recipient to a creator.

        A newly tracked creator starts idle; an already live creator keeps
        its session id, and the new recipient is caught up on the next tick.

        Returns:
            True if the subscription is new, False if it already existed
        """
        key = creator.key
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hsetnx(SUBS_KEY, key, "")
                pipe.hsetnx(key, recipient, 0)
                pipe.sadd(chat_key(recipient), key)
                _, added, _ = await pipe.execute()
        except RedisError as e:
            raise LedgerError(f"Subscribing {recipient} to {creator} failed: {e}") from e

        if added:
            logger.info("Subscribed %s to %s", recipient, creator)
        return bool(added)

    async def remove_subscription(self, creator: Creator, recipient: str) -> bool:
        """
        Unsubscribe a recipient from a creator.

        Removes the creator from the tracked index together with its last
        subscriber.

        Returns:
            True if a subscription was removed, False if none existed
        """
        key = creator.key
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                subscribed = await pipe.hexists(key, recipient)
                remaining = await pipe.hlen(key)
                pipe.multi()
                pipe.srem(chat_key(recipient), key)
                if subscribed:
                    pipe.hdel(key, recipient)
                    remaining -= 1
                if remaining <= 0:
                    pipe.hdel(SUBS_KEY, key)
                await pipe.execute()
        except WatchError as e:
            raise LedgerError(f"Concurrent modification of {creator}") from e
        except RedisError as e:
            raise LedgerError(f"Unsubscribing {recipient} from {creator} failed: {e}") from e

        if subscribed:
            logger.info("Unsubscribed %s from %s", recipient, creator)
        return bool(subscribed)

    async def list_subscriptions(self, recipient: str) -> list[Creator]:
        """Return the creators a recipient follows, sorted by key."""
        try:
            keys = await self.redis.smembers(chat_key(recipient))
        except RedisError as e:
            raise LedgerError(f"Listing subscriptions of {recipient} failed: {e}") from e

        creators = []
        for key in sorted(keys):
            try:
                creators.append(Creator.from_key(key))
            except InvalidCreatorKeyError as e:
                logger.error("Skipping malformed subscription key %r: %s", key, e)
        return creators

    async def get_session(self, creator: Creator) -> str | None:
        """Return the creator's current session id, None when idle or untracked."""
        try:
            return await self.redis.hget(SUBS_KEY, creator.key) or None
        except RedisError as e:
            raise LedgerError(f"Reading session of {creator} failed: {e}") from e

    async def get_anchor(self, creator: Creator, recipient: str) -> int | None:
        try:
            return _parse_anchor(await self.redis.hget(creator.key, recipient))
        except RedisError as e:
            raise LedgerError(f"Reading anchor of {creator} for {recipient} failed: {e}") from e

    async def health_check(self) -> bool:
        """Check Redis reachability."""
        try:
            return bool(await self.redis.ping())
        except Exception as e:
            logger.warning("Ledger health check failed: %s", e)
            return False
