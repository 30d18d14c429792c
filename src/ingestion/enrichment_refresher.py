"""
Re-enrichment pass for items that only ever got fallback enrichment.

Picks items whose summary is missing or carries the degraded prefix, and items
classified by the keyword fallback, and re-runs the matching cascade. Stored
values are replaced only when a real provider answered; a fallback result is
never written over a fallback result.
"""
import time
from typing import Any, Dict, Optional

from tqdm import tqdm

from src.database.manager import CatalogStore
from src.database.models import ClassificationSource
from src.enrichment.classification import ClassificationCascade
from src.enrichment.summary import SummaryCascade, DEGRADED_SUMMARY_PREFIX, TEMPLATE_SOURCE, is_degraded_summary
from src.utils.config import get_pipeline_config
from src.utils.error_codes import PipelineError
from src.utils.logger import setup_worker_logger, log_pass_completion

logger = setup_worker_logger('enrichment_refresher')


def needs_classification(item) -> bool:
    return (item.classification_source is None
            or ClassificationSource.is_fallback(item.classification_source)
            or not item.category_ids)


class EnrichmentRefresher:

    def __init__(self, store: CatalogStore, classifier: ClassificationCascade, summarizer: SummaryCascade):
        self.store = store
        self.classifier = classifier
        self.summarizer = summarizer

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None,
                    store: Optional[CatalogStore] = None) -> 'EnrichmentRefresher':
        from src.ingestion.content_pipeline import build_cascades

        config = get_pipeline_config(config)
        classifier, summarizer = build_cascades(config.get('enrichment', {}))
        return cls(store or CatalogStore(), classifier, summarizer)

    async def close(self):
        from src.ingestion.content_pipeline import close_cascades
        await close_cascades(self.classifier, self.summarizer)

    async def refresh(self, limit: int = 50) -> Dict[str, Any]:
        """
        Retry enrichment for up to `limit` degraded items.

        Returns:
            {total, summaries_updated, categories_updated, still_degraded, failed}
        """
        start_time = time.time()
        stats = {
            'total': 0,
            'summaries_updated': 0,
            'categories_updated': 0,
            'still_degraded': 0,
            'failed': 0,
        }

        items = self.store.list_items_needing_enrichment(DEGRADED_SUMMARY_PREFIX, limit)
        stats['total'] = len(items)
        if not items:
            logger.info("No items need re-enrichment")
            return stats

        categories = self.store.get_categories()

        with tqdm(total=len(items), desc="Refreshing", unit="video") as pbar:
            for item in items:
                pbar.set_description(f"Refreshing: {(item.title or '')[:30]}...")
                try:
                    degraded = await self._refresh_item(item, categories, stats)
                except PipelineError as e:
                    logger.error(f"Re-enrichment failed for item {item.id}: {e.message}")
                    stats['failed'] += 1
                except Exception as e:
                    logger.error(f"Unexpected error re-enriching item {item.id}: {e}", exc_info=True)
                    stats['failed'] += 1
                else:
                    if degraded:
                        stats['still_degraded'] += 1
                pbar.update(1)

        log_pass_completion('enrichment_refresher', stats, time.time() - start_time)
        return stats

    async def _refresh_item(self, item, categories, stats: Dict[str, int]) -> bool:
        """Returns True if some part of the item is still degraded afterwards."""
        patch: Dict[str, Any] = {}
        degraded = False

        if is_degraded_summary(item.summary):
            summary = await self.summarizer.summarize(item.title, item.description)
            if summary.source != TEMPLATE_SOURCE:
                patch.update(summary.to_content_fields())
                stats['summaries_updated'] += 1
            else:
                degraded = True

        if needs_classification(item):
            classification = await self.classifier.classify(item.title, item.description, categories)
            if not classification.is_fallback:
                patch.update(classification.to_content_fields())
                stats['categories_updated'] += 1
            else:
                degraded = True

        if patch:
            self.store.update_item(item.id, patch)
            logger.debug(f"Item {item.id} refreshed: {sorted(patch)}")
        return degraded
