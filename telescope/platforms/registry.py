"""
Adapter construction.

One adapter instance per enabled platform is built at startup and
passed explicitly into the watcher.
"""

import logging

from telescope.config.settings import Settings
from telescope.platforms.base_adapter import BaseAdapter
from telescope.platforms.bilibili_adapter import BilibiliAdapter
from telescope.platforms.schemas import Platform
from telescope.platforms.twitter_adapter import TwitterSpaceAdapter

logger = logging.getLogger(__name__)


def create_adapters(settings: Settings) -> dict[Platform, BaseAdapter]:
    """Create adapters based on available configuration."""
    adapters: dict[Platform, BaseAdapter] = {}

    if settings.twitter_configured:
        adapters[Platform.TWITTER_SPACE] = TwitterSpaceAdapter(
            auth_token=settings.twitter_auth_token,
            csrf_token=settings.twitter_csrf_token,
            batch_size=settings.twitter_batch_size,
        )
        logger.info("Twitter Space adapter enabled")
    else:
        logger.warning("Twitter session not configured, Twitter Space adapter disabled")

    if settings.bilibili_enabled:
        adapters[Platform.BILIBILI_LIVE] = BilibiliAdapter()
        logger.info("Bilibili Live adapter enabled")

    return adapters
