"""
Channel models.

Contains:
- Channel: owner of content items on a platform, keyed by (platform, external_id)
- Category: editorial categories assigned by the classification cascade
"""

from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, Text, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class Channel(Base):
    """
    A channel (YouTube channel, Twitch broadcaster, ...) that owns content items.

    Attributes:
        platform / external_id: Platform-scoped identity
        title, thumbnail_url, banner_url, description: Display metadata
        subscriber_count / video_count: Platform counters at last sync
        priority_tag: 'premium' or 'recommended' channels are polled preferentially
        priority: Ordering among channels sharing a tag (higher first)
        last_sync_at: Last time the orchestrator listed this channel's items
    """
    __tablename__ = 'channels'

    id = Column(Integer, primary_key=True)
    platform = Column(String(20), nullable=False)
    external_id = Column(String(255), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    thumbnail_url = Column(String(1000))
    banner_url = Column(String(1000))
    subscriber_count = Column(BigInteger, default=0)
    video_count = Column(Integer, default=0)
    priority_tag = Column(String(20))
    priority = Column(Integer, default=0, nullable=False)
    last_sync_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    content = relationship("Content", back_populates="channel")
    subscriptions = relationship("Subscription", back_populates="channel", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('platform', 'external_id', name='uq_channels_platform_external_id'),
        Index('idx_channels_priority_tag', 'priority_tag'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'platform': self.platform,
            'external_id': self.external_id,
            'title': self.title,
            'thumbnail_url': self.thumbnail_url,
            'subscriber_count': self.subscriber_count,
            'video_count': self.video_count,
            'priority_tag': self.priority_tag,
            'priority': self.priority,
        }


class Category(Base):
    """Editorial category; the classification cascade only assigns known ids."""
    __tablename__ = 'categories'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text)
