"""
Source adapter contract shared by every platform indexer.

An adapter turns a platform's API into normalized Candidate records. It returns
an empty list when a query has no results and raises ProviderUnavailable for
network, auth or quota failures so the orchestrator can skip the platform for
the current pass. Relevance heuristics are exposed as data (relevance_keywords)
and applied by the quality filter, never hidden inside the adapter.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any


@dataclass
class Candidate:
    """An unvalidated, unpersisted content record returned by a source adapter."""
    platform: str
    external_id: str
    title: str
    description: str = ""
    channel_external_id: Optional[str] = None
    channel_title: Optional[str] = None
    view_count: int = 0
    duration: Optional[int] = None  # seconds
    published_at: Optional[datetime] = None
    thumbnail_url: Optional[str] = None
    video_url: Optional[str] = None
    embed_url: Optional[str] = None

    def to_content_fields(self) -> Dict[str, Any]:
        """Column values for a new Content row (enrichment fields are added by the orchestrator)."""
        published_at = self.published_at
        if published_at is not None and published_at.tzinfo is not None:
            published_at = published_at.astimezone(timezone.utc).replace(tzinfo=None)
        return {
            'platform': self.platform,
            'external_id': self.external_id,
            'title': self.title,
            'description': self.description,
            'channel_external_id': self.channel_external_id,
            'channel_title': self.channel_title,
            'view_count': self.view_count or 0,
            'duration': self.duration,
            'publish_date': published_at,
            'thumbnail_url': self.thumbnail_url,
            'video_url': self.video_url,
            'embed_url': self.embed_url,
        }


@dataclass
class ChannelInfo:
    """Channel metadata as reported by a platform."""
    platform: str
    external_id: str
    title: str
    description: str = ""
    thumbnail_url: Optional[str] = None
    banner_url: Optional[str] = None
    subscriber_count: int = 0
    video_count: int = 0

    def to_channel_fields(self) -> Dict[str, Any]:
        return {
            'description': self.description,
            'thumbnail_url': self.thumbnail_url,
            'banner_url': self.banner_url,
            'subscriber_count': self.subscriber_count,
            'video_count': self.video_count,
        }


class SourceAdapter(ABC):
    """Abstract base class for platform source adapters"""

    platform: str = ""

    def __init__(self, relevance_keywords: Optional[List[str]] = None):
        self.relevance_keywords: List[str] = list(relevance_keywords or [])

    @abstractmethod
    async def fetch_candidates(self, query: str, max_results: int, order: Optional[str] = None) -> List[Candidate]:
        """
        Search the platform.

        Args:
            query: Free-text search query
            max_results: Upper bound on returned candidates
            order: Optional platform ordering hint (e.g. 'viewCount', 'relevance')

        Returns:
            Normalized candidates; empty list when nothing matches
        """

    @abstractmethod
    async def fetch_channel_items(self, channel_external_id: str, max_results: int) -> List[Candidate]:
        """List recent items of one channel; empty list when the channel has none."""

    async def fetch_channel(self, channel_external_id: str) -> Optional[ChannelInfo]:
        """Channel metadata, or None when the platform cannot provide it."""
        return None

    async def close(self):
        """Release network resources held by the adapter."""
