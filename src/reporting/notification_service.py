"""
Notification fan-out for newly ingested items.

The item's is_notified flag is claimed with an atomic conditional update
before anything else happens; only the caller that flips it creates
notification records, so replays and concurrent passes are no-ops. Each
subscriber gets a durable Notification row; email delivery is best-effort on
top of it and a failure for one subscriber never stops the others.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from src.database.manager import CatalogStore
from src.utils.error_codes import ErrorCode, DeliveryFailure, PersistenceFailure, create_error_result
from src.utils.logger import setup_worker_logger

logger = setup_worker_logger('notification_service')

DEFAULT_MESSAGE_TEMPLATE = "Nuevo video de {channel}: {title}"


@dataclass
class FanoutResult:
    subscriber_count: int = 0
    delivered: int = 0
    already_notified: bool = False
    notifications_created: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NotificationFanout:
    """Creates notification records for a channel's subscribers and triggers email delivery."""

    def __init__(self, store: CatalogStore, delivery=None,
                 message_template: str = DEFAULT_MESSAGE_TEMPLATE,
                 notification_type: str = 'new_video'):
        self.store = store
        self.delivery = delivery
        self.message_template = message_template
        self.notification_type = notification_type

    def format_message(self, item, channel) -> str:
        channel_title = getattr(channel, 'title', None) or item.channel_title or ''
        return self.message_template.format(channel=channel_title, title=item.title)

    async def notify_new_item(self, item, channel) -> FanoutResult:
        """
        Notify the subscribers of channel about item, at most once per item.

        Args:
            item: Persisted Content row
            channel: Owning Channel row, or None when the owner is unknown

        Returns:
            FanoutResult; already_notified=True means another call claimed the item first

        Raises:
            PersistenceFailure: the notified flag could not be claimed
        """
        if channel is None:
            # Left unclaimed so a later call that knows the owner can still notify
            return FanoutResult()
        if not self.store.claim_notification(item.id):
            logger.debug(f"Item {item.id} already notified, skipping fan-out")
            return FanoutResult(already_notified=True)

        result = FanoutResult()

        subscriptions = self.store.list_subscriptions(channel.id)
        result.subscriber_count = len(subscriptions)
        if not subscriptions:
            return result

        message = self.format_message(item, channel)
        for subscription in subscriptions:
            try:
                notification = self.store.insert_notification(
                    user_id=subscription.user_id,
                    content_id=item.id,
                    message=message,
                    channel_id=channel.id,
                    notification_type=self.notification_type,
                )
            except PersistenceFailure as e:
                logger.error(f"Could not record notification for user {subscription.user_id}: {e}")
                result.errors.append(create_error_result(
                    e.error_code, e.message, dict(e.details, user_id=subscription.user_id)))
                continue
            if notification is not None:
                result.notifications_created += 1

            await self._deliver(subscription, item, channel, result)

        logger.info(
            f"Item {item.id}: {result.notifications_created}/{result.subscriber_count} notifications, "
            f"{result.delivered} emails, {len(result.errors)} errors"
        )
        return result

    async def _deliver(self, subscription, item, channel, result: FanoutResult):
        user = subscription.user
        if self.delivery is None or not subscription.notifications_enabled or user is None or not user.email:
            return

        try:
            sent = await self.delivery.send_notification_email(
                user.email, item.title, item.id, channel.title, item.thumbnail_url
            )
        except DeliveryFailure as e:
            result.errors.append(create_error_result(e.error_code, e.message, dict(e.details, user_id=user.id)))
            return
        except Exception as e:
            logger.error(f"Unexpected delivery error for user {user.id}: {e}", exc_info=True)
            result.errors.append(create_error_result(
                ErrorCode.DELIVERY_FAILURE, f"Email to user {user.id} failed: {e}", {'user_id': user.id}))
            return

        if sent:
            result.delivered += 1
        else:
            result.errors.append(create_error_result(
                ErrorCode.DELIVERY_FAILURE, f"Email to user {user.id} was not sent", {'user_id': user.id}))
