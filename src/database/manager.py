from contextlib import contextmanager
from typing import List, Dict, Optional, Any, Iterable

from sqlalchemy import Text, cast, update, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from .models import (
    Content,
    Channel,
    Category,
    User,
    Subscription,
    Notification,
    SiteSetting,
    ScheduledJob,
    ClassificationSource,
    utcnow,
)
from ..utils.error_codes import DuplicateItem, PersistenceFailure
from ..utils.logger import setup_indexer_logger

logger = setup_indexer_logger('database')

# Columns that identify a content item and may not change after creation
IMMUTABLE_CONTENT_FIELDS = {'id', 'platform', 'external_id'}

SCHEDULED_JOB_FIELDS = {
    'cron_expression', 'enabled', 'description', 'last_run', 'next_run',
    'max_items_to_process', 'last_run_result',
}


class CatalogStore:
    """Read/write access to the catalog for the ingestion pipeline and the scheduler.

    Every method opens its own short-lived session, so a store can be shared by
    concurrent passes. Returned rows are detached with their columns loaded.
    """

    def __init__(self, session_factory=None):
        if session_factory is None:
            from .session import get_session_factory
            session_factory = get_session_factory()
        self._session_factory = session_factory
        self.logger = logger

    @contextmanager
    def _session(self):
        """Session scope; store errors not handled by the caller surface as PersistenceFailure."""
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceFailure(f"Catalog store error: {e}") from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Content items
    # ------------------------------------------------------------------

    def find_by_external_id(self, platform: str, external_id: str) -> Optional[Content]:
        with self._session() as session:
            return session.query(Content).filter(
                Content.platform == platform,
                Content.external_id == external_id
            ).first()

    def exists(self, platform: str, external_id: str) -> bool:
        with self._session() as session:
            return session.query(
                session.query(Content.id).filter(
                    Content.platform == platform,
                    Content.external_id == external_id
                ).exists()
            ).scalar()

    def get_item(self, content_id: int) -> Optional[Content]:
        with self._session() as session:
            return session.get(Content, content_id)

    def list_items(self, platform: Optional[str] = None, channel_id: Optional[int] = None,
                   featured_only: bool = False, limit: int = 50, offset: int = 0) -> List[Content]:
        """Newest items first, for display."""
        with self._session() as session:
            query = session.query(Content)
            if platform:
                query = query.filter(Content.platform == platform)
            if channel_id is not None:
                query = query.filter(Content.channel_id == channel_id)
            if featured_only:
                query = query.filter(Content.featured.is_(True)).order_by(Content.featured_order)
            return query.order_by(Content.publish_date.desc(), Content.id.desc()) \
                .offset(offset).limit(limit).all()

    def insert_item(self, item: Dict[str, Any]) -> Content:
        """Insert a new content item.

        Raises:
            DuplicateItem: an item with the same (platform, external_id) exists
            PersistenceFailure: any other store error
        """
        with self._session() as session:
            content = Content(**item)
            try:
                session.add(content)
                session.commit()
                return content
            except IntegrityError as e:
                session.rollback()
                if self.exists(item.get('platform'), item.get('external_id')):
                    raise DuplicateItem(
                        f"{item.get('platform')}:{item.get('external_id')} already in catalog",
                        {'platform': item.get('platform'), 'external_id': item.get('external_id')}
                    ) from e
                raise PersistenceFailure(f"Constraint violation inserting item: {e.orig}") from e
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceFailure(f"Could not insert item: {e}") from e

    def update_item(self, content_id: int, patch: Dict[str, Any]) -> Optional[Content]:
        """Apply a partial update; identity columns are rejected."""
        forbidden = IMMUTABLE_CONTENT_FIELDS.intersection(patch)
        if forbidden:
            raise ValueError(f"Cannot update identity fields: {sorted(forbidden)}")

        with self._session() as session:
            content = session.get(Content, content_id)
            if content is None:
                return None
            for key, value in patch.items():
                if not hasattr(Content, key):
                    raise ValueError(f"Unknown content field: {key}")
                setattr(content, key, value)
            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceFailure(f"Could not update item {content_id}: {e}") from e
            return content

    def claim_notification(self, content_id: int) -> bool:
        """Atomically flip is_notified from false to true.

        Returns True for exactly one caller per item; every later or concurrent
        caller gets False.
        """
        with self._session() as session:
            try:
                result = session.execute(
                    update(Content)
                    .where(Content.id == content_id, Content.is_notified.is_(False))
                    .values(is_notified=True, last_updated=utcnow())
                )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceFailure(f"Could not claim notification for item {content_id}: {e}") from e
            return result.rowcount == 1

    def list_items_needing_enrichment(self, degraded_summary_prefix: str, limit: int = 50) -> List[Content]:
        """Items whose summary is missing or degraded, or whose categories are empty or came from the keyword fallback."""
        with self._session() as session:
            return session.query(Content).filter(
                or_(
                    Content.summary.is_(None),
                    Content.summary == '',
                    Content.summary.like(f"{degraded_summary_prefix}%"),
                    Content.classification_source.is_(None),
                    Content.classification_source == ClassificationSource.KEYWORD_FALLBACK,
                    cast(Content.category_ids, Text) == '[]',
                )
            ).order_by(Content.created_at.desc()).limit(limit).all()

    # ------------------------------------------------------------------
    # Channels and categories
    # ------------------------------------------------------------------

    def find_channel_by_external_id(self, platform: str, external_id: str) -> Optional[Channel]:
        with self._session() as session:
            return session.query(Channel).filter(
                Channel.platform == platform,
                Channel.external_id == external_id
            ).first()

    def get_channel(self, channel_id: int) -> Optional[Channel]:
        with self._session() as session:
            return session.get(Channel, channel_id)

    def get_or_create_channel(self, platform: str, external_id: str, title: str, **attrs) -> Channel:
        """Return the channel, creating it when absent. Safe against a concurrent insert."""
        existing = self.find_channel_by_external_id(platform, external_id)
        if existing:
            return existing

        with self._session() as session:
            channel = Channel(platform=platform, external_id=external_id, title=title or external_id, **attrs)
            try:
                session.add(channel)
                session.commit()
                self.logger.info(f"Created channel {platform}:{external_id} ({channel.title})")
                return channel
            except IntegrityError:
                session.rollback()
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceFailure(f"Could not create channel {platform}:{external_id}: {e}") from e

        existing = self.find_channel_by_external_id(platform, external_id)
        if existing is None:
            raise PersistenceFailure(f"Channel {platform}:{external_id} could not be created")
        return existing

    def touch_channel(self, channel_id: int):
        with self._session() as session:
            session.execute(update(Channel).where(Channel.id == channel_id).values(last_sync_at=utcnow()))
            session.commit()

    def list_priority_channels(self, platform: Optional[str] = None,
                               tags: Iterable[str] = ('premium', 'recommended')) -> List[Channel]:
        """Tagged channels in tag order, highest priority first within a tag."""
        tags = list(tags)
        with self._session() as session:
            query = session.query(Channel).filter(Channel.priority_tag.in_(tags))
            if platform:
                query = query.filter(Channel.platform == platform)
            channels = query.order_by(Channel.priority.desc(), Channel.id).all()
        return sorted(channels, key=lambda c: tags.index(c.priority_tag))

    def get_categories(self) -> List[Category]:
        with self._session() as session:
            return session.query(Category).order_by(Category.id).all()

    # ------------------------------------------------------------------
    # Subscribers and notifications
    # ------------------------------------------------------------------

    def list_subscriptions(self, channel_id: int) -> List[Subscription]:
        """Subscriptions of a channel with their users loaded."""
        with self._session() as session:
            return session.query(Subscription) \
                .options(joinedload(Subscription.user)) \
                .filter(Subscription.channel_id == channel_id) \
                .order_by(Subscription.id) \
                .all()

    def get_user(self, user_id: int) -> Optional[User]:
        with self._session() as session:
            return session.get(User, user_id)

    def insert_notification(self, user_id: int, content_id: int, message: str,
                            channel_id: Optional[int] = None,
                            notification_type: str = 'new_video') -> Optional[Notification]:
        """Insert a notification record. Returns None when (user, item) already has one."""
        with self._session() as session:
            notification = Notification(
                user_id=user_id,
                channel_id=channel_id,
                content_id=content_id,
                type=notification_type,
                message=message,
            )
            try:
                session.add(notification)
                session.commit()
                return notification
            except IntegrityError:
                session.rollback()
                self.logger.debug(f"Notification for user {user_id} / item {content_id} already exists")
                return None
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceFailure(f"Could not insert notification for user {user_id}: {e}") from e

    def count_notifications(self, content_id: Optional[int] = None, user_id: Optional[int] = None) -> int:
        with self._session() as session:
            query = session.query(func.count(Notification.id))
            if content_id is not None:
                query = query.filter(Notification.content_id == content_id)
            if user_id is not None:
                query = query.filter(Notification.user_id == user_id)
            return query.scalar()

    # ------------------------------------------------------------------
    # Site settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._session() as session:
            setting = session.get(SiteSetting, key)
            if setting is None or setting.value is None:
                return default
            return setting.value

    def set_setting(self, key: str, value: str):
        with self._session() as session:
            setting = session.get(SiteSetting, key)
            if setting is None:
                session.add(SiteSetting(key=key, value=value))
            else:
                setting.value = value
            session.commit()

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def list_scheduled_jobs(self) -> List[ScheduledJob]:
        with self._session() as session:
            return session.query(ScheduledJob).order_by(ScheduledJob.id).all()

    def get_scheduled_job(self, job_id: int) -> Optional[ScheduledJob]:
        with self._session() as session:
            return session.get(ScheduledJob, job_id)

    def get_scheduled_job_by_name(self, task_name: str) -> Optional[ScheduledJob]:
        with self._session() as session:
            return session.query(ScheduledJob).filter(ScheduledJob.task_name == task_name).first()

    def create_scheduled_job(self, task_name: str, cron_expression: str, enabled: bool = True,
                             description: Optional[str] = None,
                             max_items_to_process: int = 50) -> ScheduledJob:
        with self._session() as session:
            job = ScheduledJob(
                task_name=task_name,
                cron_expression=cron_expression,
                enabled=enabled,
                description=description,
                max_items_to_process=max_items_to_process,
            )
            try:
                session.add(job)
                session.commit()
                return job
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceFailure(f"Could not create scheduled job {task_name}: {e}") from e

    def update_scheduled_job(self, job_id: int, patch: Dict[str, Any]) -> Optional[ScheduledJob]:
        unknown = set(patch) - SCHEDULED_JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown scheduled job fields: {sorted(unknown)}")

        with self._session() as session:
            job = session.get(ScheduledJob, job_id)
            if job is None:
                return None
            for key, value in patch.items():
                setattr(job, key, value)
            try:
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceFailure(f"Could not update scheduled job {job_id}: {e}") from e
            return job

    def delete_scheduled_job(self, job_id: int) -> bool:
        with self._session() as session:
            job = session.get(ScheduledJob, job_id)
            if job is None:
                return False
            session.delete(job)
            session.commit()
            return True
