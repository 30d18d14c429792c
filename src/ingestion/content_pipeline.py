#!/usr/bin/env python3
"""
Content Ingestion Pipeline Orchestrator

One ingestion pass, per source selector and in order:
- fetch candidates from the platform adapter
- quality filter (view floor, always-allow channels, exclusion terms, relevance keywords)
- dedup against the catalog (and against items already seen this pass)
- classification cascade, then summary cascade
- persist the Content row (channel created on first sight)
- notification fan-out, guarded by the item's notified flag

A pass never aborts on a single candidate: failures are recorded in
PassStats.errors and the next candidate is processed. An unavailable platform
is skipped for the rest of the pass.

Usage:
    python -m src.ingestion.content_pipeline run [--platform youtube] [--query "..."] [--max-items 30]
    python -m src.ingestion.content_pipeline refresh --limit 50
    python -m src.ingestion.content_pipeline jobs
    python -m src.ingestion.content_pipeline set-job update_videos --cron "0 0 13 * * *"
    python -m src.ingestion.content_pipeline serve
    python -m src.ingestion.content_pipeline init-db
"""
import argparse
import asyncio
import json
import random
import signal
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from src.database.manager import CatalogStore
from src.database.models import Channel
from src.enrichment.classification import ClassificationCascade
from src.enrichment.providers import build_providers
from src.enrichment.summary import SummaryCascade
from src.ingestion.base import Candidate, SourceAdapter
from src.ingestion.deduplicator import Deduplicator
from src.ingestion.quality_filter import QualityPolicy, evaluate
from src.ingestion.stub_indexers import build_adapters
from src.reporting.email_service import EmailDeliveryProvider
from src.reporting.notification_service import NotificationFanout
from src.utils.config import get_pipeline_config, split_csv
from src.utils.error_codes import (
    ErrorCode,
    PipelineError,
    ProviderUnavailable,
    DuplicateItem,
    PersistenceFailure,
    create_error_result,
)
from src.utils.logger import setup_worker_logger, log_pass_completion

logger = setup_worker_logger('content_pipeline')

EXCLUSION_SETTING_KEY = 'video.search.exclude'


@dataclass
class SourceSelector:
    """A platform plus either a search query or an explicit list of channel ids."""
    platform: str
    query: Optional[str] = None
    channel_ids: List[str] = field(default_factory=list)
    order: Optional[str] = None

    def describe(self) -> str:
        if self.channel_ids:
            return f"{self.platform}:channels[{len(self.channel_ids)}]"
        return f"{self.platform}:search[{self.query!r}, order={self.order}]"


@dataclass
class PassLimits:
    max_results_per_source: int = 50
    max_items: Optional[int] = None  # stop once this many items were added


@dataclass
class PassStats:
    total_candidates: int = 0
    added: int = 0
    skipped_duplicate: int = 0
    skipped_low_quality: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    skipped_sources: int = 0
    notifications_created: int = 0

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def record_error(self, error: Exception, **details):
        if isinstance(error, PipelineError):
            self.errors.append(create_error_result(error.error_code, error.message, dict(error.details, **details)))
        else:
            self.errors.append(create_error_result(ErrorCode.UNKNOWN_ERROR, str(error), details))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_candidates': self.total_candidates,
            'added': self.added,
            'skipped_duplicate': self.skipped_duplicate,
            'skipped_low_quality': self.skipped_low_quality,
            'skipped_sources': self.skipped_sources,
            'notifications_created': self.notifications_created,
            'error_count': self.error_count,
            'errors': list(self.errors),
        }


def build_cascades(enrichment_config: Dict[str, Any]) -> Tuple[ClassificationCascade, SummaryCascade]:
    """Classification and summary cascades sharing provider instances."""
    timeout = float(enrichment_config.get('timeout_seconds', 8))
    provider_configs = enrichment_config.get('providers') or {}
    cache = {}
    classifier = ClassificationCascade(
        build_providers(enrichment_config.get('classification_providers') or [], provider_configs, timeout, cache),
        keyword_table=enrichment_config.get('category_keywords'),
        timeout=timeout,
    )
    summarizer = SummaryCascade(
        build_providers(enrichment_config.get('summary_providers') or [], provider_configs, timeout, cache),
        template=enrichment_config.get('fallback_summary_template') or 'Contenido sobre Atlético de Madrid: {title}',
        languages=enrichment_config.get('languages'),
        default_language=enrichment_config.get('default_language', 'en'),
        timeout=timeout,
    )
    return classifier, summarizer


async def close_cascades(*cascades):
    closed = set()
    for cascade in cascades:
        for provider in cascade.providers:
            if id(provider) not in closed and hasattr(provider, 'close'):
                closed.add(id(provider))
                await provider.close()


class ContentPipeline:
    """Orchestrates ingestion passes over the configured source adapters."""

    def __init__(self, store: CatalogStore, adapters: Dict[str, SourceAdapter], policy: QualityPolicy,
                 classifier: ClassificationCascade, summarizer: SummaryCascade,
                 fanout: Optional[NotificationFanout] = None,
                 ingestion_config: Optional[Dict[str, Any]] = None):
        self.store = store
        self.adapters = adapters
        self.policy = policy
        self.classifier = classifier
        self.summarizer = summarizer
        self.fanout = fanout or NotificationFanout(store)
        self.ingestion_config = ingestion_config or {}

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None,
                    store: Optional[CatalogStore] = None) -> 'ContentPipeline':
        config = get_pipeline_config(config)
        store = store or CatalogStore()
        adapters = build_adapters(config)
        policy = QualityPolicy.from_config(
            config.get('quality', {}),
            {platform: adapter.relevance_keywords for platform, adapter in adapters.items()},
        )
        classifier, summarizer = build_cascades(config.get('enrichment', {}))
        notifications = config.get('notifications', {})
        fanout = NotificationFanout(
            store,
            delivery=EmailDeliveryProvider.from_config(notifications),
            message_template=notifications.get('message_template', 'Nuevo video de {channel}: {title}'),
            notification_type=notifications.get('notification_type', 'new_video'),
        )
        return cls(store, adapters, policy, classifier, summarizer, fanout, config.get('ingestion', {}))

    async def close(self):
        for adapter in self.adapters.values():
            await adapter.close()
        await close_cascades(self.classifier, self.summarizer)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def build_default_sources(self, rng: Optional[random.Random] = None) -> List[SourceSelector]:
        """
        Priority channels first (premium, then recommended), then one search per
        platform with a randomly drawn term and order so repeated runs see
        different results.
        """
        rng = rng or random.Random()
        tags = self.ingestion_config.get('priority_tags') or ['premium', 'recommended']
        terms = self.ingestion_config.get('search_terms') or []
        orders = self.ingestion_config.get('search_orders') or [None]

        sources: List[SourceSelector] = []
        for platform in self.adapters:
            try:
                channels = self.store.list_priority_channels(platform, tags)
            except PersistenceFailure as e:
                logger.warning(f"Could not load priority channels for {platform}: {e.message}")
                channels = []
            if channels:
                sources.append(SourceSelector(platform, channel_ids=[c.external_id for c in channels]))
            if terms:
                sources.append(SourceSelector(platform, query=rng.choice(terms), order=rng.choice(orders)))
        return sources

    def load_policy(self) -> QualityPolicy:
        """Policy for this pass; the site setting overrides configured exclusion terms."""
        override = self.store.get_setting(EXCLUSION_SETTING_KEY)
        if override is None:
            return self.policy
        terms = split_csv(override)
        logger.debug(f"Using {len(terms)} exclusion terms from site setting")
        return self.policy.with_exclusion_terms(terms)

    async def _fetch(self, adapter: SourceAdapter, selector: SourceSelector, max_results: int,
                     stats: PassStats) -> List[Candidate]:
        """
        Raises:
            ProviderUnavailable: the platform could not be reached for a search selector
        """
        if not selector.channel_ids:
            return await adapter.fetch_candidates(selector.query or '', max_results, order=selector.order)

        candidates: List[Candidate] = []
        for index, channel_id in enumerate(selector.channel_ids):
            try:
                candidates.extend(await adapter.fetch_channel_items(channel_id, max_results))
            except ProviderUnavailable as e:
                # Nothing fetched yet means the platform itself is down
                if index == 0 and not candidates:
                    raise
                logger.warning(f"Skipping channel {selector.platform}:{channel_id}: {e.message}")
                stats.record_error(e, channel_external_id=channel_id)
                continue
            try:
                channel = self.store.find_channel_by_external_id(selector.platform, channel_id)
                if channel is not None:
                    self.store.touch_channel(channel.id)
            except PersistenceFailure as e:
                logger.warning(f"Could not update sync time of {selector.platform}:{channel_id}: {e.message}")
        return candidates

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def run_ingestion_pass(self, sources: List[SourceSelector], limits: Optional[PassLimits] = None,
                                 task_name: Optional[str] = None) -> PassStats:
        """
        Run one ingestion pass over the given sources, in order.

        Safe to run repeatedly or concurrently with overlapping sources: items
        already in the catalog are counted as skipped_duplicate and notified
        items are never notified again.

        Args:
            sources: Selectors processed sequentially
            limits: Per-source fetch size and overall cap on added items
            task_name: Scheduled job that triggered the pass, for logging

        Returns:
            PassStats for the pass
        """
        limits = limits or PassLimits()
        stats = PassStats()
        start_time = time.time()

        try:
            policy = self.load_policy()
        except PersistenceFailure as e:
            logger.warning(f"Exclusion setting unavailable, using configured terms: {e.message}")
            policy = self.policy
        dedup = Deduplicator(self.store)
        try:
            categories = self.store.get_categories()
        except PersistenceFailure as e:
            # Classification still runs, it just cannot assign any category
            logger.error(f"Could not load categories: {e.message}")
            stats.record_error(e)
            categories = []
        channel_cache: Dict[Tuple[str, str], Optional[Channel]] = {}
        unavailable: set = set()

        logger.info(f"Starting ingestion pass over {len(sources)} sources")

        for selector in sources:
            if limits.max_items is not None and stats.added >= limits.max_items:
                logger.info(f"Reached max_items={limits.max_items}, stopping pass")
                break

            adapter = self.adapters.get(selector.platform)
            if adapter is None:
                stats.errors.append(create_error_result(
                    ErrorCode.UNKNOWN_SOURCE, f"No adapter for platform '{selector.platform}'",
                    {'source': selector.describe()}))
                continue
            if selector.platform in unavailable:
                stats.skipped_sources += 1
                continue

            try:
                candidates = await self._fetch(adapter, selector, limits.max_results_per_source, stats)
            except ProviderUnavailable as e:
                logger.warning(f"Platform {selector.platform} unavailable, skipping for this pass: {e.message}")
                unavailable.add(selector.platform)
                stats.skipped_sources += 1
                stats.record_error(e, source=selector.describe())
                continue
            except Exception as e:
                logger.error(f"Fetching {selector.describe()} failed: {e}", exc_info=True)
                stats.skipped_sources += 1
                stats.record_error(e, source=selector.describe())
                continue

            logger.info(f"{selector.describe()}: {len(candidates)} candidates")
            for candidate in candidates:
                if limits.max_items is not None and stats.added >= limits.max_items:
                    break
                try:
                    await self._process_candidate(candidate, adapter, policy, dedup, categories, channel_cache, stats)
                except Exception as e:
                    key = f"{candidate.platform}:{candidate.external_id}"
                    logger.error(f"Processing {key} failed: {e}", exc_info=True)
                    stats.record_error(e, item=key)

        duration = time.time() - start_time
        log_pass_completion('content_pipeline', stats.to_dict(), duration, task_name)
        return stats

    async def _process_candidate(self, candidate: Candidate, adapter: SourceAdapter, policy: QualityPolicy,
                                 dedup: Deduplicator, categories: list,
                                 channel_cache: Dict[Tuple[str, str], Optional[Channel]], stats: PassStats):
        stats.total_candidates += 1
        key = f"{candidate.platform}:{candidate.external_id}"

        decision = evaluate(candidate, policy)
        if not decision.accepted:
            logger.debug(f"Rejected {key} ({decision.reason}{': ' + decision.detail if decision.detail else ''})")
            stats.skipped_low_quality += 1
            return

        try:
            if dedup.exists(candidate.platform, candidate.external_id):
                stats.skipped_duplicate += 1
                return
        except PersistenceFailure as e:
            stats.record_error(e, item=key)
            return
        dedup.remember(candidate.platform, candidate.external_id)

        try:
            classification = await self.classifier.classify(candidate.title, candidate.description, categories)
            summary = await self.summarizer.summarize(candidate.title, candidate.description)
        except Exception as e:
            logger.error(f"Enrichment failed for {key}: {e}", exc_info=True)
            stats.errors.append(create_error_result(ErrorCode.ENRICHMENT_FAILURE, str(e), {'item': key}))
            return

        channel = None
        try:
            channel = await self._resolve_channel(adapter, candidate, channel_cache)
        except PersistenceFailure as e:
            logger.warning(f"Could not resolve channel for {key}: {e.message}")
            stats.record_error(e, item=key)

        fields = candidate.to_content_fields()
        fields.update(classification.to_content_fields())
        fields.update(summary.to_content_fields())
        fields['channel_id'] = channel.id if channel is not None else None

        try:
            item = self.store.insert_item(fields)
        except DuplicateItem:
            # Another pass inserted it between the dedup check and the write
            stats.skipped_duplicate += 1
            return
        except PersistenceFailure as e:
            logger.error(f"Could not persist {key}: {e.message}")
            stats.record_error(e, item=key)
            return

        stats.added += 1
        logger.info(
            f"Added {key} '{candidate.title[:60]}' "
            f"(categories={classification.category_ids}, classification={classification.source}, "
            f"summary={summary.source})"
        )

        try:
            result = await self.fanout.notify_new_item(item, channel)
        except PipelineError as e:
            stats.record_error(e, item=key)
            return
        stats.notifications_created += result.notifications_created
        stats.errors.extend(result.errors)

    async def _resolve_channel(self, adapter: SourceAdapter, candidate: Candidate,
                               channel_cache: Dict[Tuple[str, str], Optional[Channel]]) -> Optional[Channel]:
        """Catalog channel owning the candidate, created on first sight."""
        if not candidate.channel_external_id:
            return None
        cache_key = (candidate.platform, candidate.channel_external_id)
        if cache_key in channel_cache:
            return channel_cache[cache_key]

        channel = self.store.find_channel_by_external_id(*cache_key)
        if channel is None:
            info = None
            try:
                info = await adapter.fetch_channel(candidate.channel_external_id)
            except ProviderUnavailable as e:
                logger.warning(f"Channel details unavailable for {cache_key}: {e.message}")
            attrs = info.to_channel_fields() if info else {}
            title = (info.title if info else None) or candidate.channel_title or candidate.channel_external_id
            channel = self.store.get_or_create_channel(candidate.platform, candidate.channel_external_id, title, **attrs)

        channel_cache[cache_key] = channel
        return channel

    # ------------------------------------------------------------------
    # Scheduled entry point
    # ------------------------------------------------------------------

    async def run_scheduled_import(self, max_items: int = 50) -> Dict[str, Any]:
        """Ingestion pass over the default sources, capped at max_items added items."""
        max_results = int(self.ingestion_config.get('max_results', 50))
        limits = PassLimits(max_results_per_source=min(max_results, max_items), max_items=max_items)
        stats = await self.run_ingestion_pass(self.build_default_sources(), limits, task_name='scheduled_import')
        return stats.to_dict()


def build_scheduler(pipeline: ContentPipeline, refresher, config: Dict[str, Any]):
    """Scheduler wired to the pipeline and re-enrichment actions."""
    from src.automation.executors import PipelineExecutor
    from src.automation.scheduled_task_manager import ScheduledTaskManager

    executor = PipelineExecutor({
        'import_premium_videos': pipeline.run_scheduled_import,
        'update_videos': pipeline.run_scheduled_import,
        'refresh_enrichment': refresher.refresh,
    })
    return ScheduledTaskManager(pipeline.store, executor, config)


# ----------------------------------------------------------------------
# CLI
# ----------------------------------------------------------------------

def _selectors_from_args(args, pipeline: ContentPipeline) -> List[SourceSelector]:
    platforms = args.platform or list(pipeline.adapters)
    if args.channel:
        return [SourceSelector(p, channel_ids=args.channel) for p in platforms]
    if args.query:
        return [SourceSelector(p, query=args.query, order=args.order) for p in platforms]
    return [s for s in pipeline.build_default_sources() if s.platform in platforms]


async def _serve(pipeline: ContentPipeline, config: Dict[str, Any]):
    from src.ingestion.enrichment_refresher import EnrichmentRefresher

    refresher = EnrichmentRefresher.from_config(config, store=pipeline.store)
    manager = build_scheduler(pipeline, refresher, config)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    await manager.start()
    try:
        await stop_event.wait()
    finally:
        await manager.stop()
        await refresher.close()


async def main_async(args) -> int:
    config = get_pipeline_config()

    if args.command == 'init-db':
        from src.database.session import init_db
        init_db()
        logger.info("Database tables created")
        return 0

    store = CatalogStore()

    if args.command == 'jobs':
        for job in store.list_scheduled_jobs():
            print(json.dumps(job.to_dict(), ensure_ascii=False))
        return 0

    if args.command == 'set-job':
        from src.automation.executors import PipelineExecutor
        from src.automation.scheduled_task_manager import ScheduledTaskManager

        job = store.get_scheduled_job_by_name(args.task_name)
        if job is None:
            logger.error(f"No scheduled job named {args.task_name}")
            return 1
        patch: Dict[str, Any] = {}
        if args.cron:
            patch['cron_expression'] = args.cron
        if args.enable:
            patch['enabled'] = True
        if args.disable:
            patch['enabled'] = False
        if args.max_items is not None:
            patch['max_items_to_process'] = args.max_items
        if not patch:
            logger.error("Nothing to update")
            return 1
        manager = ScheduledTaskManager(store, PipelineExecutor({}), config)
        try:
            job = await manager.update_scheduled_job(job.id, patch)
        except ValueError as e:
            logger.error(str(e))
            return 1
        print(json.dumps(job.to_dict(), ensure_ascii=False))
        return 0

    if args.command == 'refresh':
        from src.ingestion.enrichment_refresher import EnrichmentRefresher

        refresher = EnrichmentRefresher.from_config(config, store=store)
        try:
            result = await refresher.refresh(args.limit)
        finally:
            await refresher.close()
        print(json.dumps(result, indent=2))
        return 0

    pipeline = ContentPipeline.from_config(config, store=store)
    try:
        if args.command == 'serve':
            await _serve(pipeline, config)
            return 0

        sources = _selectors_from_args(args, pipeline)
        limits = PassLimits(
            max_results_per_source=args.max_results or int(config['ingestion'].get('max_results', 50)),
            max_items=args.max_items,
        )
        stats = await pipeline.run_ingestion_pass(sources, limits, task_name='manual')
        print(json.dumps(stats.to_dict(), indent=2, ensure_ascii=False))
        return 0
    finally:
        await pipeline.close()


def main():
    parser = argparse.ArgumentParser(
        description='Video ingestion pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One pass over premium channels plus a random search term
  %(prog)s run

  # Search a single platform
  %(prog)s run --platform youtube --query "Atletico de Madrid goles" --max-items 10

  # Retry degraded summaries/classifications
  %(prog)s refresh --limit 100

  # Move the midday job to 13:00 UTC
  %(prog)s set-job update_videos --cron "0 0 13 * * *"
        """
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Run one ingestion pass')
    run_parser.add_argument('--platform', action='append', help='Platform to ingest (repeatable)')
    run_parser.add_argument('--query', help='Search query instead of the default sources')
    run_parser.add_argument('--channel', action='append', help='Channel external id (repeatable)')
    run_parser.add_argument('--order', help='Search order hint (viewCount, relevance, date)')
    run_parser.add_argument('--max-results', type=int, help='Candidates fetched per source')
    run_parser.add_argument('--max-items', type=int, help='Stop after adding this many items')

    refresh_parser = subparsers.add_parser('refresh', help='Retry degraded enrichment')
    refresh_parser.add_argument('--limit', type=int, default=50)

    subparsers.add_parser('jobs', help='List scheduled jobs')

    job_parser = subparsers.add_parser('set-job', help='Update a scheduled job')
    job_parser.add_argument('task_name')
    job_parser.add_argument('--cron', help='Cron expression (5 fields, or 6 with leading seconds)')
    toggle = job_parser.add_mutually_exclusive_group()
    toggle.add_argument('--enable', action='store_true')
    toggle.add_argument('--disable', action='store_true')
    job_parser.add_argument('--max-items', type=int)

    subparsers.add_parser('serve', help='Run the scheduler until interrupted')
    subparsers.add_parser('init-db', help='Create database tables')

    args = parser.parse_args()
    return asyncio.run(main_async(args))


if __name__ == '__main__':
    sys.exit(main())
