"""
End-to-end ingestion passes over an in-memory catalog with fake adapters.
"""

import random

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeAdapter, FakeProvider, make_candidate
from src.database.models import Channel, ClassificationSource
from src.enrichment.classification import ClassificationCascade
from src.enrichment.summary import SummaryCascade, DEGRADED_SUMMARY_PREFIX, TEMPLATE_SOURCE
from src.ingestion.content_pipeline import (
    ContentPipeline,
    PassLimits,
    SourceSelector,
    EXCLUSION_SETTING_KEY,
)
from src.ingestion.quality_filter import QualityPolicy
from src.reporting.notification_service import NotificationFanout
from src.utils.error_codes import ErrorCode, PersistenceFailure, ProviderUnavailable


QUALITY_CONFIG = {
    'min_view_counts': {'youtube': 1000, 'twitch': 100},
    'exclusion_terms': ['Real Madrid', 'Madrid'],
    'disambiguation': [
        {'term': 'madrid', 'subject_keywords': ['atletico', 'atlético', 'atleti']},
    ],
}


def make_pipeline(store, adapters, quality_config=None, classifier=None, summarizer=None,
                  ingestion_config=None):
    return ContentPipeline(
        store,
        adapters,
        QualityPolicy.from_config(quality_config or QUALITY_CONFIG),
        classifier or ClassificationCascade([]),
        summarizer or SummaryCascade([]),
        NotificationFanout(store),
        ingestion_config,
    )


SEARCH = [SourceSelector('youtube', query='atletico')]


class TestIngestionPass:

    @pytest.mark.asyncio
    async def test_relevant_item_is_added_and_subscribers_notified(self, store, categories,
                                                                   channel_with_subscribers):
        channel, users = channel_with_subscribers
        adapter = FakeAdapter(candidates=[make_candidate()])
        pipeline = make_pipeline(store, {'youtube': adapter})

        stats = await pipeline.run_ingestion_pass(SEARCH)

        assert stats.total_candidates == 1
        assert stats.added == 1
        assert stats.skipped_duplicate == 0
        assert stats.skipped_low_quality == 0
        assert stats.errors == []
        assert stats.notifications_created == 2

        item = store.find_by_external_id('youtube', 'vid1')
        assert item.channel_id == channel.id
        assert item.is_notified is True
        assert store.count_notifications(content_id=item.id) == 2

    @pytest.mark.asyncio
    async def test_excluded_term_is_skipped(self, store, categories):
        adapter = FakeAdapter(candidates=[make_candidate(title="Real Madrid vs Barcelona")])
        pipeline = make_pipeline(store, {'youtube': adapter})

        stats = await pipeline.run_ingestion_pass(SEARCH)

        assert stats.skipped_low_quality == 1
        assert stats.added == 0
        assert store.list_items() == []

    @pytest.mark.asyncio
    async def test_below_view_floor_is_skipped(self, store, categories):
        adapter = FakeAdapter(candidates=[make_candidate(view_count=999)])
        pipeline = make_pipeline(store, {'youtube': adapter})

        stats = await pipeline.run_ingestion_pass(SEARCH)

        assert stats.skipped_low_quality == 1
        assert store.exists('youtube', 'vid1') is False

    @pytest.mark.asyncio
    async def test_second_pass_counts_duplicates(self, store, categories, channel_with_subscribers):
        adapter = FakeAdapter(candidates=[make_candidate("vid1"), make_candidate("vid2")])
        pipeline = make_pipeline(store, {'youtube': adapter})

        first = await pipeline.run_ingestion_pass(SEARCH)
        second = await pipeline.run_ingestion_pass(SEARCH)

        assert first.added == 2
        assert second.added == 0
        assert second.skipped_duplicate == first.added
        assert second.notifications_created == 0
        # no extra notifications on the re-run
        assert store.count_notifications() == 4

    @pytest.mark.asyncio
    async def test_same_item_twice_in_one_pass(self, store, categories):
        adapter = FakeAdapter(candidates=[make_candidate("vid1"), make_candidate("vid1")])
        pipeline = make_pipeline(store, {'youtube': adapter})

        stats = await pipeline.run_ingestion_pass(SEARCH)

        assert stats.added == 1
        assert stats.skipped_duplicate == 1

    @pytest.mark.asyncio
    async def test_fallback_enrichment_when_no_providers(self, store, categories):
        adapter = FakeAdapter(candidates=[make_candidate(title="Atletico de Madrid: resumen del partido")])
        pipeline = make_pipeline(store, {'youtube': adapter})

        await pipeline.run_ingestion_pass(SEARCH)

        item = store.find_by_external_id('youtube', 'vid1')
        assert item.classification_source == ClassificationSource.KEYWORD_FALLBACK
        assert item.summary.startswith(DEGRADED_SUMMARY_PREFIX)
        assert item.summary_source == TEMPLATE_SOURCE

    @pytest.mark.asyncio
    async def test_provider_answers_are_stored(self, store, categories):
        partidos = categories[0]
        classifier = ClassificationCascade([FakeProvider(
            'primary', classify_answer={'category_ids': [partidos.id], 'relevance': 90, 'confidence': 0.9})])
        summarizer = SummaryCascade([FakeProvider(
            'primary', summarize_answer={'summary': 'Resumen del partido contra el Sevilla.', 'language': 'es'})])
        adapter = FakeAdapter(candidates=[make_candidate()])
        pipeline = make_pipeline(store, {'youtube': adapter}, classifier=classifier, summarizer=summarizer)

        await pipeline.run_ingestion_pass(SEARCH)

        item = store.find_by_external_id('youtube', 'vid1')
        assert item.category_ids == [partidos.id]
        assert item.classification_source == 'primary'
        assert item.summary == 'Resumen del partido contra el Sevilla.'
        assert item.language == 'es'

    @pytest.mark.asyncio
    async def test_unavailable_platform_is_skipped_for_the_pass(self, store, categories):
        down = FakeAdapter(raise_error=ProviderUnavailable("quota exceeded", {'platform': 'youtube'}))
        twitch = FakeAdapter(platform='twitch', candidates=[make_candidate("t1", platform='twitch',
                                                                           channel_external_id=None)])
        pipeline = make_pipeline(store, {'youtube': down, 'twitch': twitch})
        sources = [
            SourceSelector('youtube', query='atletico'),
            SourceSelector('youtube', query='atleti'),
            SourceSelector('twitch', query='atletico'),
        ]

        stats = await pipeline.run_ingestion_pass(sources)

        assert len(down.search_calls) == 1
        assert stats.skipped_sources == 2
        assert stats.added == 1
        assert stats.errors[0]['error_code'] == ErrorCode.PROVIDER_UNAVAILABLE.value

    @pytest.mark.asyncio
    async def test_unknown_platform_is_recorded(self, store, categories):
        pipeline = make_pipeline(store, {})

        stats = await pipeline.run_ingestion_pass([SourceSelector('vimeo', query='atletico')])

        assert stats.added == 0
        assert stats.errors[0]['error_code'] == ErrorCode.UNKNOWN_SOURCE.value

    @pytest.mark.asyncio
    async def test_persistence_error_does_not_abort_pass(self, store, categories, monkeypatch):
        adapter = FakeAdapter(candidates=[make_candidate("vid1"), make_candidate("vid2")])
        pipeline = make_pipeline(store, {'youtube': adapter})
        original_insert = store.insert_item

        def flaky_insert(fields):
            if fields['external_id'] == 'vid1':
                raise PersistenceFailure("database is locked")
            return original_insert(fields)

        monkeypatch.setattr(store, 'insert_item', flaky_insert)

        stats = await pipeline.run_ingestion_pass(SEARCH)

        assert stats.added == 1
        assert stats.error_count == 1
        assert stats.errors[0]['error_code'] == ErrorCode.PERSISTENCE_FAILURE.value
        assert store.exists('youtube', 'vid2') is True

    @pytest.mark.asyncio
    async def test_unexpected_store_error_does_not_abort_pass(self, store, categories, monkeypatch):
        adapter = FakeAdapter(candidates=[make_candidate("vid1"), make_candidate("vid2")])
        pipeline = make_pipeline(store, {'youtube': adapter})
        original_exists = store.exists

        def flaky_exists(platform, external_id):
            if external_id == 'vid1':
                raise OperationalError("SELECT content", {}, Exception("server closed the connection"))
            return original_exists(platform, external_id)

        monkeypatch.setattr(store, 'exists', flaky_exists)

        stats = await pipeline.run_ingestion_pass(SEARCH)

        assert stats.added == 1
        assert stats.errors[0]['error_code'] == ErrorCode.UNKNOWN_ERROR.value
        assert stats.errors[0]['error_details'] == {'item': 'youtube:vid1'}
        assert store.exists('youtube', 'vid2') is True

    @pytest.mark.asyncio
    async def test_subscriber_lookup_failure_keeps_item(self, store, categories, channel_with_subscribers,
                                                        monkeypatch):
        adapter = FakeAdapter(candidates=[make_candidate("vid1"), make_candidate("vid2")])
        pipeline = make_pipeline(store, {'youtube': adapter})
        original_list = store.list_subscriptions
        failures = {'left': 1}

        def flaky_list(channel_id):
            if failures['left'] > 0:
                failures['left'] -= 1
                raise PersistenceFailure("could not list subscriptions")
            return original_list(channel_id)

        monkeypatch.setattr(store, 'list_subscriptions', flaky_list)

        stats = await pipeline.run_ingestion_pass(SEARCH)

        assert stats.added == 2
        assert stats.error_count == 1
        assert stats.errors[0]['error_code'] == ErrorCode.PERSISTENCE_FAILURE.value
        assert store.count_notifications(content_id=store.find_by_external_id('youtube', 'vid2').id) == 2

    @pytest.mark.asyncio
    async def test_failing_adapter_does_not_stop_other_sources(self, store, categories):
        broken = FakeAdapter(raise_error=KeyError('items'))
        twitch = FakeAdapter(platform='twitch', candidates=[make_candidate("t1", platform='twitch',
                                                                           channel_external_id=None)])
        pipeline = make_pipeline(store, {'youtube': broken, 'twitch': twitch})
        sources = [SourceSelector('youtube', query='atletico'), SourceSelector('twitch', query='atletico')]

        stats = await pipeline.run_ingestion_pass(sources)

        assert stats.added == 1
        assert stats.skipped_sources == 1
        assert stats.errors[0]['error_code'] == ErrorCode.UNKNOWN_ERROR.value
        assert stats.errors[0]['error_details'] == {'source': sources[0].describe()}

    @pytest.mark.asyncio
    async def test_category_lookup_failure_still_ingests(self, store, monkeypatch):
        adapter = FakeAdapter(candidates=[make_candidate()])
        pipeline = make_pipeline(store, {'youtube': adapter})

        def broken_categories():
            raise PersistenceFailure("could not load categories")

        def broken_setting(key, default=None):
            raise PersistenceFailure("could not load setting")

        monkeypatch.setattr(store, 'get_categories', broken_categories)
        monkeypatch.setattr(store, 'get_setting', broken_setting)

        stats = await pipeline.run_ingestion_pass(SEARCH)

        assert stats.added == 1
        assert stats.error_count == 1
        assert store.find_by_external_id('youtube', 'vid1').category_ids == []

    @pytest.mark.asyncio
    async def test_max_items_caps_the_pass(self, store, categories):
        adapter = FakeAdapter(candidates=[make_candidate(f"vid{i}") for i in range(5)])
        pipeline = make_pipeline(store, {'youtube': adapter})

        stats = await pipeline.run_ingestion_pass(SEARCH, PassLimits(max_results_per_source=10, max_items=2))

        assert stats.added == 2
        assert len(store.list_items()) == 2

    @pytest.mark.asyncio
    async def test_site_setting_overrides_exclusion_terms(self, store, categories):
        store.set_setting(EXCLUSION_SETTING_KEY, "Sevilla, Betis")
        adapter = FakeAdapter(candidates=[make_candidate(),
                                          make_candidate("vid2", title="Real Madrid vs Barcelona")])
        pipeline = make_pipeline(store, {'youtube': adapter})

        stats = await pipeline.run_ingestion_pass(SEARCH)

        # Sevilla is now excluded and Real Madrid no longer is
        assert stats.skipped_low_quality == 1
        assert store.exists('youtube', 'vid1') is False
        assert store.exists('youtube', 'vid2') is True

    @pytest.mark.asyncio
    async def test_unknown_channel_is_created(self, store, categories):
        adapter = FakeAdapter(candidates=[make_candidate(channel_external_id="UC_new", channel_title="Rojiblancos")])
        pipeline = make_pipeline(store, {'youtube': adapter})

        stats = await pipeline.run_ingestion_pass(SEARCH)

        channel = store.find_channel_by_external_id('youtube', 'UC_new')
        assert channel is not None
        assert channel.title == "Rojiblancos"
        assert store.find_by_external_id('youtube', 'vid1').channel_id == channel.id
        # nobody subscribes to a channel created this pass
        assert stats.notifications_created == 0

    @pytest.mark.asyncio
    async def test_channel_selector_lists_each_channel(self, store, categories):
        adapter = FakeAdapter(channel_items={
            'UC_a': [make_candidate("a1", channel_external_id="UC_a")],
            'UC_b': [make_candidate("b1", channel_external_id="UC_b")],
        })
        pipeline = make_pipeline(store, {'youtube': adapter})

        stats = await pipeline.run_ingestion_pass([SourceSelector('youtube', channel_ids=['UC_a', 'UC_b'])])

        assert stats.added == 2
        assert adapter.search_calls == []


class TestDefaultSources:

    def test_priority_channels_then_search(self, store, seed):
        seed(
            Channel(platform='youtube', external_id='UC_rec', title='Rec', priority_tag='recommended'),
            Channel(platform='youtube', external_id='UC_prem', title='Prem', priority_tag='premium'),
        )
        pipeline = make_pipeline(store, {'youtube': FakeAdapter()}, ingestion_config={
            'search_terms': ['atletico de madrid'],
            'search_orders': ['viewCount'],
        })

        sources = pipeline.build_default_sources(random.Random(1))

        assert sources[0].channel_ids == ['UC_prem', 'UC_rec']
        assert sources[1].query == 'atletico de madrid'
        assert sources[1].order == 'viewCount'

    @pytest.mark.asyncio
    async def test_scheduled_import_returns_stats_dict(self, store, categories):
        adapter = FakeAdapter(candidates=[make_candidate(f"vid{i}") for i in range(5)])
        pipeline = make_pipeline(store, {'youtube': adapter}, ingestion_config={
            'search_terms': ['atletico'],
            'max_results': 50,
        })

        result = await pipeline.run_scheduled_import(max_items=3)

        assert result['added'] == 3
        assert result['error_count'] == 0
        # per-source fetch size never exceeds the item cap
        assert adapter.search_calls[0][1] == 3
