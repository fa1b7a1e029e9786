"""Notification delivery for live-session transitions.

Components:
- Notifier: Interface returning a message id (or None on failure)
- TelegramNotifier: Telegram Bot API delivery
- CircuitBreaker: Resilience wrapper for any notifier
- markdown: MarkdownV2 escaping helpers used to render notification text
"""

from telescope.notifications.channels import (
    CircuitBreaker,
    CircuitState,
    Notifier,
    TelegramNotifier,
    create_notifier,
)

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "Notifier",
    "TelegramNotifier",
    "create_notifier",
]
