"""
Subscriber models.

Contains:
- User: a subscriber with an optional email address
- Subscription: a user's interest in a Channel
- Notification: durable record that a user was told about a content item
- SiteSetting: runtime key/value settings (e.g. 'video.search.exclude')
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Boolean, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    email = Column(String(255))
    created_at = Column(DateTime, default=utcnow, nullable=False)

    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")


class Subscription(Base):
    """A user's subscription to a channel; read-only from the pipeline's side."""
    __tablename__ = 'subscriptions'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    channel_id = Column(Integer, ForeignKey('channels.id', ondelete='CASCADE'), nullable=False)
    notifications_enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="subscriptions")
    channel = relationship("Channel", back_populates="subscriptions")

    __table_args__ = (
        UniqueConstraint('user_id', 'channel_id', name='uq_subscriptions_user_channel'),
        Index('idx_subscriptions_channel', 'channel_id'),
    )


class Notification(Base):
    """
    One row per (user, content item). The unique constraint backs the
    is_notified flag so a replayed fan-out cannot create a second row.
    """
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    channel_id = Column(Integer, ForeignKey('channels.id', ondelete='CASCADE'), nullable=True)
    content_id = Column(Integer, ForeignKey('content.id', ondelete='CASCADE'), nullable=False)
    type = Column(String(50), nullable=False, default='new_video')
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'content_id', name='uq_notifications_user_content'),
        Index('idx_notifications_user_read', 'user_id', 'is_read'),
    )


class SiteSetting(Base):
    __tablename__ = 'site_settings'

    key = Column(String(100), primary_key=True)
    value = Column(Text)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
