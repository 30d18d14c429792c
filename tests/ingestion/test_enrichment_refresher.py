"""
Tests for re-enrichment of items that only got fallback results.
"""

import pytest

from conftest import FakeProvider
from src.database.models import ClassificationSource
from src.enrichment.classification import ClassificationCascade
from src.enrichment.summary import SummaryCascade, DEGRADED_SUMMARY_PREFIX, TEMPLATE_SOURCE
from src.ingestion.enrichment_refresher import EnrichmentRefresher, needs_classification


def insert_degraded(store, external_id="vid1", **overrides):
    fields = {
        'platform': 'youtube',
        'external_id': external_id,
        'title': 'Atletico de Madrid vs Sevilla highlights',
        'description': 'Resumen del partido',
        'view_count': 5000,
        'category_ids': [],
        'relevance': 50.0,
        'classification_confidence': 0.5,
        'classification_source': ClassificationSource.KEYWORD_FALLBACK,
        'summary': DEGRADED_SUMMARY_PREFIX + 'Contenido sobre Atlético de Madrid: highlights',
        'language': 'en',
        'summary_source': TEMPLATE_SOURCE,
    }
    fields.update(overrides)
    return store.insert_item(fields)


class TestNeedsClassification:

    def test_fallback_source(self, store):
        item = insert_degraded(store)
        assert needs_classification(item) is True

    def test_provider_classified_item(self, store, categories):
        item = insert_degraded(store, category_ids=[categories[0].id], classification_source='primary')
        assert needs_classification(item) is False

    def test_provider_source_without_categories(self, store):
        item = insert_degraded(store, classification_source='primary')
        assert needs_classification(item) is True


class TestRefresh:

    @pytest.mark.asyncio
    async def test_provider_answers_replace_fallbacks(self, store, categories):
        partidos = categories[0]
        item = insert_degraded(store)
        refresher = EnrichmentRefresher(
            store,
            ClassificationCascade([FakeProvider(
                'primary', classify_answer={'category_ids': [partidos.id], 'relevance': 80, 'confidence': 0.8})]),
            SummaryCascade([FakeProvider(
                'primary', summarize_answer={'summary': 'El Atlético gana al Sevilla en casa.', 'language': 'es'})]),
        )

        stats = await refresher.refresh(limit=10)

        assert stats['total'] == 1
        assert stats['summaries_updated'] == 1
        assert stats['categories_updated'] == 1
        assert stats['still_degraded'] == 0
        refreshed = store.get_item(item.id)
        assert refreshed.summary == 'El Atlético gana al Sevilla en casa.'
        assert refreshed.language == 'es'
        assert refreshed.category_ids == [partidos.id]
        assert refreshed.classification_source == 'primary'

    @pytest.mark.asyncio
    async def test_fallback_never_overwrites_fallback(self, store, categories):
        item = insert_degraded(store)
        before = store.get_item(item.id)
        refresher = EnrichmentRefresher(store, ClassificationCascade([]), SummaryCascade([]))

        stats = await refresher.refresh()

        assert stats['still_degraded'] == 1
        assert stats['summaries_updated'] == 0
        assert stats['categories_updated'] == 0
        after = store.get_item(item.id)
        assert after.summary == before.summary
        assert after.last_updated == before.last_updated

    @pytest.mark.asyncio
    async def test_failing_provider_counts_as_degraded(self, store, categories):
        insert_degraded(store)
        provider = FakeProvider('primary', classify_answer=RuntimeError("boom"),
                                summarize_answer=RuntimeError("boom"))
        refresher = EnrichmentRefresher(store, ClassificationCascade([provider]), SummaryCascade([provider]))

        stats = await refresher.refresh()

        assert stats['still_degraded'] == 1
        assert stats['failed'] == 0
        assert provider.summarize_calls == 1

    @pytest.mark.asyncio
    async def test_nothing_to_refresh(self, store, categories):
        summarizer = SummaryCascade([FakeProvider('primary')])
        refresher = EnrichmentRefresher(store, ClassificationCascade([]), summarizer)

        stats = await refresher.refresh()

        assert stats == {
            'total': 0,
            'summaries_updated': 0,
            'categories_updated': 0,
            'still_degraded': 0,
            'failed': 0,
        }
        assert summarizer.providers[0].summarize_calls == 0

    @pytest.mark.asyncio
    async def test_store_error_counts_as_failed(self, store, categories, monkeypatch):
        insert_degraded(store)
        refresher = EnrichmentRefresher(
            store,
            ClassificationCascade([]),
            SummaryCascade([FakeProvider(
                'primary', summarize_answer={'summary': 'El Atlético gana al Sevilla en casa.', 'language': 'es'})]),
        )

        def broken_update(content_id, patch):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, 'update_item', broken_update)

        stats = await refresher.refresh()

        assert stats['failed'] == 1
