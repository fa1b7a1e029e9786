"""
Platform adapters normalizing live services into LiveSnapshot.

Components:
- Platform / Creator / LiveState / LiveSnapshot / Attachment: shared schema
- BaseAdapter: interface every platform implements
- TwitterSpaceAdapter / BilibiliAdapter: concrete platforms
  (import from their modules or build them with ``registry.create_adapters``)
- resolve_subscription: profile URL -> Creator
"""

from telescope.platforms.base_adapter import AdapterStats, BaseAdapter
from telescope.platforms.schemas import (
    Attachment,
    Creator,
    InvalidCreatorKeyError,
    LiveSnapshot,
    LiveState,
    LiveStateKind,
    Platform,
    UnsupportedPlatformError,
)

__all__ = [
    "AdapterStats",
    "Attachment",
    "BaseAdapter",
    "Creator",
    "InvalidCreatorKeyError",
    "LiveSnapshot",
    "LiveState",
    "LiveStateKind",
    "Platform",
    "UnsupportedPlatformError",
]
