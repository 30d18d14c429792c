"""
Tests for CatalogStore against an in-memory SQLite catalog.
"""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.database.manager import CatalogStore
from src.database.models import Channel, Content, ClassificationSource
from src.utils.error_codes import DuplicateItem, PersistenceFailure


def item_fields(external_id="vid1", **overrides):
    fields = {
        'platform': 'youtube',
        'external_id': external_id,
        'title': 'Atletico de Madrid vs Sevilla highlights',
        'view_count': 5000,
    }
    fields.update(overrides)
    return fields


class TestContentItems:

    def test_insert_and_find(self, store):
        item = store.insert_item(item_fields())
        assert item.id is not None
        assert item.is_notified is False
        found = store.find_by_external_id('youtube', 'vid1')
        assert found.id == item.id
        assert store.exists('youtube', 'vid1') is True
        assert store.exists('twitch', 'vid1') is False

    def test_duplicate_insert_rejected(self, store):
        store.insert_item(item_fields())
        with pytest.raises(DuplicateItem):
            store.insert_item(item_fields(title="Other title"))
        assert len(store.list_items()) == 1

    def test_same_external_id_on_other_platform_allowed(self, store):
        store.insert_item(item_fields())
        store.insert_item(item_fields(platform='twitch'))
        assert len(store.list_items()) == 2

    def test_update_item(self, store):
        item = store.insert_item(item_fields())
        updated = store.update_item(item.id, {'summary': 'Resumen del partido', 'category_ids': [1, 2]})
        assert updated.summary == 'Resumen del partido'
        assert store.get_item(item.id).category_ids == [1, 2]

    def test_identity_fields_are_immutable(self, store):
        item = store.insert_item(item_fields())
        with pytest.raises(ValueError):
            store.update_item(item.id, {'external_id': 'other'})

    def test_update_missing_item_returns_none(self, store):
        assert store.update_item(999, {'summary': 'x'}) is None


class TestClaimNotification:
    """The notified flag is a single conditional update."""

    def test_first_claim_wins(self, store):
        item = store.insert_item(item_fields())
        assert store.claim_notification(item.id) is True
        assert store.claim_notification(item.id) is False
        assert store.get_item(item.id).is_notified is True

    def test_unknown_item_cannot_be_claimed(self, store):
        assert store.claim_notification(12345) is False


class TestChannels:

    def test_get_or_create_channel_is_idempotent(self, store):
        first = store.get_or_create_channel('youtube', 'UC1', 'Canal', subscriber_count=10)
        second = store.get_or_create_channel('youtube', 'UC1', 'Otro nombre')
        assert first.id == second.id
        assert second.title == 'Canal'

    def test_priority_channels_order(self, store, seed):
        seed(
            Channel(platform='youtube', external_id='r1', title='R1', priority_tag='recommended', priority=9),
            Channel(platform='youtube', external_id='p1', title='P1', priority_tag='premium', priority=1),
            Channel(platform='youtube', external_id='p2', title='P2', priority_tag='premium', priority=5),
            Channel(platform='twitch', external_id='t1', title='T1', priority_tag='premium', priority=5),
            Channel(platform='youtube', external_id='n1', title='N1'),
        )
        channels = store.list_priority_channels('youtube', ['premium', 'recommended'])
        assert [c.external_id for c in channels] == ['p2', 'p1', 'r1']


class TestNotifications:

    def test_duplicate_notification_is_noop(self, store, channel_with_subscribers):
        channel, (alice, _) = channel_with_subscribers
        item = store.insert_item(item_fields(channel_id=channel.id))
        assert store.insert_notification(alice.id, item.id, "msg", channel.id) is not None
        assert store.insert_notification(alice.id, item.id, "msg", channel.id) is None
        assert store.count_notifications(content_id=item.id) == 1

    def test_list_subscriptions_loads_users(self, store, channel_with_subscribers):
        channel, _ = channel_with_subscribers
        subscriptions = store.list_subscriptions(channel.id)
        assert [s.user.username for s in subscriptions] == ['alice', 'bob']


class TestEnrichmentSelection:

    def test_degraded_items_listed(self, store):
        store.insert_item(item_fields('a', summary='[auto] Contenido sobre Atlético de Madrid: x',
                                      classification_source='deepseek'))
        store.insert_item(item_fields('b', summary='Un resumen generado por un proveedor real',
                                      classification_source=ClassificationSource.KEYWORD_FALLBACK))
        store.insert_item(item_fields('c', summary='Un resumen generado por un proveedor real',
                                      classification_source='anthropic', category_ids=[1]))
        store.insert_item(item_fields('d', summary=None, classification_source='anthropic'))

        ids = {item.external_id for item in store.list_items_needing_enrichment('[auto] ')}
        assert ids == {'a', 'b', 'd'}

    def test_provider_item_without_categories_listed(self, store):
        store.insert_item(item_fields('e', summary='Un resumen generado por un proveedor real',
                                      classification_source='anthropic', category_ids=[]))
        store.insert_item(item_fields('f', summary='Un resumen generado por un proveedor real',
                                      classification_source='anthropic', category_ids=[2]))

        ids = [item.external_id for item in store.list_items_needing_enrichment('[auto] ')]
        assert ids == ['e']


class TestSettings:

    def test_set_and_get(self, store):
        assert store.get_setting('video.search.exclude') is None
        store.set_setting('video.search.exclude', 'Real Madrid,Barcelona')
        store.set_setting('video.search.exclude', 'Real Madrid')
        assert store.get_setting('video.search.exclude') == 'Real Madrid'


class TestScheduledJobs:

    def test_crud(self, store):
        job = store.create_scheduled_job('update_videos', '0 0 12 * * *', max_items_to_process=30)
        assert store.get_scheduled_job_by_name('update_videos').id == job.id

        updated = store.update_scheduled_job(job.id, {'enabled': False})
        assert updated.enabled is False

        with pytest.raises(ValueError):
            store.update_scheduled_job(job.id, {'task_name': 'renamed'})

        assert store.delete_scheduled_job(job.id) is True
        assert store.list_scheduled_jobs() == []


class TestStoreErrors:

    def setup_method(self):
        self.session = MagicMock()
        self.session.query.side_effect = OperationalError("SELECT", {}, Exception("server closed the connection"))
        self.session.get.side_effect = OperationalError("SELECT", {}, Exception("server closed the connection"))
        self.store = CatalogStore(lambda: self.session)

    def test_read_errors_become_persistence_failure(self):
        with pytest.raises(PersistenceFailure):
            self.store.exists('youtube', 'vid1')
        with pytest.raises(PersistenceFailure):
            self.store.list_subscriptions(1)
        with pytest.raises(PersistenceFailure):
            self.store.get_setting('video.search.exclude')

    def test_session_rolled_back_and_closed(self):
        with pytest.raises(PersistenceFailure):
            self.store.get_categories()
        self.session.rollback.assert_called_once()
        self.session.close.assert_called_once()

    def test_caller_errors_pass_through(self, store):
        with pytest.raises(ValueError):
            store.update_item(1, {'external_id': 'other'})
