"""
Notifier implementations for live-session notifications.

Provides an ABC for notifiers plus a Telegram Bot API implementation.
A CircuitBreaker decorator wraps any notifier to stop hammering a
failing downstream service.

Every send returns the delivered message id, or ``None`` when delivery
failed. Failures never raise: the watcher treats ``None`` as "do not
commit, retry on a later tick".

Pattern: Decorator (CircuitBreaker wraps any Notifier).
"""

import enum
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from telescope.config.settings import Settings
from telescope.platforms.schemas import Attachment

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Abstract base for notification delivery."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this notifier (e.g. 'telegram')."""

    @abstractmethod
    async def send_new(
        self,
        recipient: str,
        text: str,
        attachment: Attachment | None = None,
    ) -> int | None:
        """Send a fresh message.

        Args:
            recipient: Destination chat id.
            text: MarkdownV2 text (used as caption when an attachment is sent).
            attachment: Optional photo or document.

        Returns:
            Message id of the delivered message, or None on failure.
        """

    @abstractmethod
    async def send_reply(
        self,
        recipient: str,
        text: str,
        reply_to: int | None,
        disable_preview: bool = False,
    ) -> int | None:
        """Send a message threaded under ``reply_to`` when given.

        Returns:
            Message id of the delivered message, or None on failure.
        """


class TelegramNotifier(Notifier):
    """Delivers notifications through the Telegram Bot API.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling)
    matching the project's HTTP pattern.
    """

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
    ) -> None:
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "telegram"

    def _method_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._bot_token}/{method}"

    def _build_new_payload(
        self,
        recipient: str,
        text: str,
        attachment: Attachment | None,
    ) -> tuple[str, dict[str, Any]]:
        """Pick the Bot API method and payload for a fresh message."""
        payload: dict[str, Any] = {
            "chat_id": recipient,
            "parse_mode": "MarkdownV2",
        }
        if attachment is None:
            payload["text"] = text
            payload["link_preview_options"] = {"is_disabled": True}
            return "sendMessage", payload

        payload["caption"] = text
        if attachment.kind == "photo":
            payload["photo"] = attachment.url
            return "sendPhoto", payload
        payload["document"] = attachment.url
        return "sendDocument", payload

    def _build_reply_payload(
        self,
        recipient: str,
        text: str,
        reply_to: int | None,
        disable_preview: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "chat_id": recipient,
            "text": text,
            "parse_mode": "MarkdownV2",
        }
        if reply_to:
            payload["reply_parameters"] = {
                "message_id": reply_to,
                "allow_sending_without_reply": True,
            }
        if disable_preview:
            payload["link_preview_options"] = {"is_disabled": True}
        return payload

    async def _call(self, method: str, payload: dict[str, Any]) -> int | None:
        recipient = payload.get("chat_id")
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._method_url(method), json=payload)
                if not resp.is_success:
                    logger.warning(
                        "Telegram %s returned %d for chat %s: %s",
                        method, resp.status_code, recipient, resp.text[:200],
                    )
                    return None
                body = resp.json()
        except httpx.TimeoutException:
            logger.warning("Telegram %s timed out for chat %s", method, recipient)
            return None
        except Exception as e:
            logger.warning("Telegram %s failed for chat %s: %s", method, recipient, e)
            return None

        if not isinstance(body, dict) or not body.get("ok"):
            logger.warning(
                "Telegram %s rejected for chat %s: %s",
                method, recipient,
                body.get("description") if isinstance(body, dict) else body,
            )
            return None

        result = body.get("result")
        message_id = result.get("message_id") if isinstance(result, dict) else None
        if not isinstance(message_id, int):
            logger.warning("Telegram %s returned no message_id for chat %s", method, recipient)
            return None
        return message_id

    async def send_new(
        self,
        recipient: str,
        text: str,
        attachment: Attachment | None = None,
    ) -> int | None:
        method, payload = self._build_new_payload(recipient, text, attachment)
        return await self._call(method, payload)

    async def send_reply(
        self,
        recipient: str,
        text: str,
        reply_to: int | None,
        disable_preview: bool = False,
    ) -> int | None:
        payload = self._build_reply_payload(recipient, text, reply_to, disable_preview)
        return await self._call("sendMessage", payload)


class CircuitState(enum.Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(Notifier):
    """Wraps a Notifier with circuit breaker protection.

    State machine: CLOSED → OPEN → HALF_OPEN → CLOSED.

    - CLOSED: All sends pass through. Consecutive failures tracked.
    - OPEN: Sends rejected immediately (returned as failures). After
      recovery_timeout, moves to HALF_OPEN.
    - HALF_OPEN: Single probe send allowed. Success → CLOSED, failure → OPEN.
    """

    def __init__(
        self,
        notifier: Notifier,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ) -> None:
        self._notifier = notifier
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: float = 0.0

    @property
    def name(self) -> str:
        return self._notifier.name

    @property
    def state(self) -> CircuitState:
        return self._state

    def _allow(self, recipient: str) -> bool:
        if self._state != CircuitState.OPEN:
            return True
        if time.monotonic() - self._last_failure_time >= self._recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            logger.info(
                "Circuit breaker %s: OPEN → HALF_OPEN (recovery probe)",
                self.name,
            )
            return True
        logger.debug(
            "Circuit breaker %s: OPEN, rejecting send to %s",
            self.name, recipient,
        )
        return False

    def _record(self, message_id: int | None) -> int | None:
        if message_id is not None:
            if self._state == CircuitState.HALF_OPEN:
                logger.info(
                    "Circuit breaker %s: HALF_OPEN → CLOSED (probe succeeded)",
                    self.name,
                )
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            return message_id

        self._consecutive_failures += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: HALF_OPEN → OPEN (probe failed)",
                self.name,
            )
        elif self._consecutive_failures >= self._failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker %s: CLOSED → OPEN after %d failures",
                self.name, self._consecutive_failures,
            )
        return None

    async def send_new(
        self,
        recipient: str,
        text: str,
        attachment: Attachment | None = None,
    ) -> int | None:
        if not self._allow(recipient):
            return None
        return self._record(await self._notifier.send_new(recipient, text, attachment))

    async def send_reply(
        self,
        recipient: str,
        text: str,
        reply_to: int | None,
        disable_preview: bool = False,
    ) -> int | None:
        if not self._allow(recipient):
            return None
        return self._record(
            await self._notifier.send_reply(recipient, text, reply_to, disable_preview)
        )


def create_notifier(settings: Settings) -> Notifier:
    """Build the Telegram notifier wrapped in a circuit breaker.

    Raises:
        ValueError: If no Telegram bot token is configured
    """
    if not settings.telegram_configured:
        raise ValueError("TELEGRAM_BOT_TOKEN is not configured")

    notifier = TelegramNotifier(
        bot_token=settings.telegram_bot_token,
        api_base=settings.telegram_api_base,
        timeout=settings.http_timeout_seconds,
    )
    return CircuitBreaker(
        notifier,
        failure_threshold=settings.notify_circuit_breaker_threshold,
        recovery_timeout=settings.notify_circuit_breaker_recovery_seconds,
    )
