"""
Tests for notification fan-out idempotence and per-subscriber failure isolation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.database.models import User, Subscription
from src.reporting.notification_service import NotificationFanout
from src.utils.error_codes import DeliveryFailure, ErrorCode


def insert_item(store, channel, external_id="vid1"):
    return store.insert_item({
        'platform': 'youtube',
        'external_id': external_id,
        'title': 'Atletico de Madrid vs Sevilla highlights',
        'channel_id': channel.id,
        'channel_title': channel.title,
        'view_count': 5000,
    })


class TestNotifyNewItem:

    @pytest.mark.asyncio
    async def test_one_notification_per_subscriber(self, store, channel_with_subscribers):
        channel, users = channel_with_subscribers
        delivery = MagicMock()
        delivery.send_notification_email = AsyncMock(return_value=True)
        fanout = NotificationFanout(store, delivery)
        item = insert_item(store, channel)

        result = await fanout.notify_new_item(item, channel)

        assert result.already_notified is False
        assert result.subscriber_count == 2
        assert result.notifications_created == 2
        # bob has email notifications disabled
        assert result.delivered == 1
        delivery.send_notification_email.assert_awaited_once_with(
            'alice@example.com', item.title, item.id, channel.title, None
        )
        assert store.count_notifications(content_id=item.id) == 2

    @pytest.mark.asyncio
    async def test_second_call_is_noop(self, store, channel_with_subscribers):
        channel, users = channel_with_subscribers
        delivery = MagicMock()
        delivery.send_notification_email = AsyncMock(return_value=True)
        fanout = NotificationFanout(store, delivery)
        item = insert_item(store, channel)

        await fanout.notify_new_item(item, channel)
        second = await fanout.notify_new_item(item, channel)

        assert second.already_notified is True
        assert second.notifications_created == 0
        assert delivery.send_notification_email.await_count == 1
        for user in users:
            assert store.count_notifications(content_id=item.id, user_id=user.id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_calls_notify_once(self, store, channel_with_subscribers):
        channel, _ = channel_with_subscribers
        fanout = NotificationFanout(store)
        item = insert_item(store, channel)

        results = await asyncio.gather(*[fanout.notify_new_item(item, channel) for _ in range(5)])

        assert sum(1 for r in results if not r.already_notified) == 1
        assert store.count_notifications(content_id=item.id) == 2

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_block_others(self, store, seed, channel_with_subscribers):
        channel, _ = channel_with_subscribers
        carol = seed(User(username="carol", email="carol@example.com"))
        seed(Subscription(user_id=carol.id, channel_id=channel.id, notifications_enabled=True))

        async def send(address, *args):
            if address == 'alice@example.com':
                raise DeliveryFailure("smtp down", {'address': address})
            return True

        delivery = MagicMock()
        delivery.send_notification_email = AsyncMock(side_effect=send)
        item = insert_item(store, channel)

        result = await NotificationFanout(store, delivery).notify_new_item(item, channel)

        assert result.notifications_created == 3
        assert result.delivered == 1
        assert len(result.errors) == 1
        assert result.errors[0]['error_code'] == ErrorCode.DELIVERY_FAILURE.value
        # records exist for everyone even though one delivery failed
        assert store.count_notifications(content_id=item.id) == 3
        assert store.get_item(item.id).is_notified is True

    @pytest.mark.asyncio
    async def test_unsent_email_recorded(self, store, channel_with_subscribers):
        channel, _ = channel_with_subscribers
        delivery = MagicMock()
        delivery.send_notification_email = AsyncMock(return_value=False)
        item = insert_item(store, channel)

        result = await NotificationFanout(store, delivery).notify_new_item(item, channel)

        assert result.delivered == 0
        assert len(result.errors) == 1

    @pytest.mark.asyncio
    async def test_no_channel_leaves_item_unclaimed(self, store, channel_with_subscribers):
        channel, _ = channel_with_subscribers
        item = insert_item(store, channel)
        fanout = NotificationFanout(store)

        result = await fanout.notify_new_item(item, None)

        assert result.already_notified is False
        assert result.subscriber_count == 0
        assert store.get_item(item.id).is_notified is False

        # once the owner is known the subscribers are still notified
        later = await fanout.notify_new_item(item, channel)
        assert later.notifications_created == 2
        assert store.get_item(item.id).is_notified is True

    def test_message_template(self, store, channel_with_subscribers):
        channel, _ = channel_with_subscribers
        item = insert_item(store, channel)
        fanout = NotificationFanout(store, message_template="{channel} :: {title}")
        assert fanout.format_message(item, channel) == "Atleti Fans :: Atletico de Madrid vs Sevilla highlights"
