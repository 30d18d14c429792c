"""
Adapters for platforms without an integration yet, and the adapter registry.
"""
from typing import Dict, List, Optional, Any

from .base import SourceAdapter, Candidate
from .twitch_indexer import TwitchAdapter
from .youtube_indexer import YouTubeAdapter
from ..utils.logger import setup_indexer_logger

logger = setup_indexer_logger('registry')


class TikTokAdapter(SourceAdapter):
    """TikTok has no public search API we can use; always returns no candidates."""

    platform = 'tiktok'

    async def fetch_candidates(self, query: str, max_results: int, order: Optional[str] = None) -> List[Candidate]:
        logger.debug(f"TikTok search not implemented, skipping '{query}'")
        return []

    async def fetch_channel_items(self, channel_external_id: str, max_results: int) -> List[Candidate]:
        return []


class TwitterAdapter(SourceAdapter):
    """Placeholder for X/Twitter video search; always returns no candidates."""

    platform = 'twitter'

    async def fetch_candidates(self, query: str, max_results: int, order: Optional[str] = None) -> List[Candidate]:
        logger.debug(f"Twitter search not implemented, skipping '{query}'")
        return []

    async def fetch_channel_items(self, channel_external_id: str, max_results: int) -> List[Candidate]:
        return []


ADAPTER_CLASSES = {
    'youtube': YouTubeAdapter,
    'twitch': TwitchAdapter,
    'tiktok': TikTokAdapter,
    'twitter': TwitterAdapter,
}


def build_adapters(config: Dict[str, Any]) -> Dict[str, SourceAdapter]:
    """Instantiate an adapter per configured platform.

    Platforms whose credentials are missing are skipped with a warning so one
    unconfigured platform never prevents the others from running.
    """
    platforms_config = config.get('platforms', {})
    platforms = config.get('ingestion', {}).get('platforms') or list(platforms_config)

    adapters: Dict[str, SourceAdapter] = {}
    for platform in platforms:
        adapter_cls = ADAPTER_CLASSES.get(platform)
        if adapter_cls is None:
            logger.warning(f"Unknown platform '{platform}' in config, skipping")
            continue
        platform_config = platforms_config.get(platform, {}) or {}
        try:
            if hasattr(adapter_cls, 'from_config'):
                adapters[platform] = adapter_cls.from_config(platform_config)
            else:
                adapters[platform] = adapter_cls(platform_config.get('relevance_keywords'))
        except ValueError as e:
            logger.warning(f"Skipping {platform} adapter: {e}")
    return adapters
