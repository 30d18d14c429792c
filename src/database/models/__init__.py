"""
Database models for the short-form video ingestion pipeline.

- **Content**: one normalized video keyed by (platform, external_id)
- **Channel** / **Category**: content owners and editorial categories
- **User** / **Subscription** / **Notification**: subscribers and the durable
  per-(user, item) notification records created by fan-out
- **SiteSetting**: runtime key/value settings read at the start of each pass
- **ScheduledJob**: persisted cron jobs driving the scheduler
"""

from .base import Base, utcnow, ClassificationSource
from .content import Content
from .channels import Channel, Category
from .subscriptions import User, Subscription, Notification, SiteSetting
from .tasks import ScheduledJob

__all__ = [
    'Base',
    'utcnow',
    'ClassificationSource',
    'Content',
    'Channel',
    'Category',
    'User',
    'Subscription',
    'Notification',
    'SiteSetting',
    'ScheduledJob',
]
