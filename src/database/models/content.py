"""
Content models for the ingestion pipeline.

Contains:
- Content: one normalized short-form video, keyed by (platform, external_id)
"""

from sqlalchemy import (
    Column, Integer, BigInteger, String, Float, DateTime, JSON, ForeignKey,
    Text, Boolean, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class Content(Base):
    """
    A content item ingested from a source platform.

    Identity is the (platform, external_id) pair, unique across the catalog and
    never changed after creation. Category assignments, summary and the
    is_notified flag are filled or replaced after creation; the pipeline never
    deletes rows.

    Attributes:
        platform: Source platform ('youtube', 'twitch', ...)
        external_id: Platform-scoped identifier of the video
        channel_external_id / channel_title: Owner as reported by the platform
        channel_id: Owning Channel row, when known
        view_count: Views at ingestion time
        duration: Length in seconds
        category_ids: Assigned Category ids (JSON list, possibly empty)
        relevance / classification_confidence: Classifier scores, [0,100] and [0,1]
        classification_source: Provider that classified the item, or 'keyword_fallback'
        summary / language: Generated summary and ISO 639-1 language code
        featured / featured_order: Editorial flag and ordering hint
        is_notified: Idempotence flag guarding subscriber fan-out
    """
    __tablename__ = 'content'

    id = Column(Integer, primary_key=True)
    platform = Column(String(20), nullable=False)
    external_id = Column(String(255), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    thumbnail_url = Column(String(1000))
    video_url = Column(String(1000))
    embed_url = Column(String(1000))

    channel_id = Column(Integer, ForeignKey('channels.id'), nullable=True)
    channel_external_id = Column(String(255))
    channel_title = Column(String(500))

    view_count = Column(BigInteger, default=0, nullable=False)
    duration = Column(Integer)
    publish_date = Column(DateTime)

    category_ids = Column(JSON, default=list, nullable=False)
    relevance = Column(Float)
    classification_confidence = Column(Float)
    classification_source = Column(String(50))

    summary = Column(Text)
    language = Column(String(10))
    summary_source = Column(String(50))

    featured = Column(Boolean, default=False, nullable=False)
    featured_order = Column(Integer)

    is_notified = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_updated = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    channel = relationship("Channel", back_populates="content")

    __table_args__ = (
        UniqueConstraint('platform', 'external_id', name='uq_content_platform_external_id'),
        Index('idx_content_channel', 'channel_id'),
        Index('idx_content_publish_date', 'publish_date'),
        Index('idx_content_featured', 'featured', 'featured_order'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'platform': self.platform,
            'external_id': self.external_id,
            'title': self.title,
            'description': self.description,
            'thumbnail_url': self.thumbnail_url,
            'video_url': self.video_url,
            'embed_url': self.embed_url,
            'channel_id': self.channel_id,
            'channel_external_id': self.channel_external_id,
            'channel_title': self.channel_title,
            'view_count': self.view_count,
            'duration': self.duration,
            'publish_date': self.publish_date.isoformat() if self.publish_date else None,
            'category_ids': list(self.category_ids or []),
            'relevance': self.relevance,
            'classification_confidence': self.classification_confidence,
            'classification_source': self.classification_source,
            'summary': self.summary,
            'language': self.language,
            'featured': self.featured,
            'featured_order': self.featured_order,
            'is_notified': self.is_notified,
        }

    def __repr__(self):
        return f"<Content(platform={self.platform}, external_id={self.external_id}, title={self.title[:40]!r})>"
