"""
Scheduled Task Manager

Runs the named recurring jobs stored in the scheduled_jobs table:
- import_premium_videos / update_videos: ingestion passes
- refresh_enrichment: retries degraded summaries and classifications

Each enabled job owns exactly one timer (an asyncio task that sleeps until
the next cron fire and then runs the job to completion). Timers are only
started, stopped or replaced through _replace_timer, which holds a per-name
lock, so reconfiguring a job is always stop-then-start. A run in flight is
shielded from timer cancellation: disabling a job stops future fires but lets
the current run finish.

See config/config.yaml under 'scheduled_tasks' for the seeded defaults.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .schedule_types import CronSchedule, ScheduleState, validate_cron_expression
from .executors import BaseExecutor, ExecutionResult
from ..database.manager import CatalogStore
from ..database.models import ScheduledJob
from ..utils.error_codes import PersistenceFailure

logger = logging.getLogger(__name__)


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ScheduledTaskManager:
    """
    Owns the mapping task_name -> timer for persisted ScheduledJob rows.

    Args:
        store: CatalogStore used for ScheduledJob persistence
        executor: Runs the action behind a task name
        config: Full config dict (reads 'scheduled_tasks')
        sleep: Awaitable sleep used by timers
    """

    def __init__(self, store: CatalogStore, executor: BaseExecutor,
                 config: Optional[Dict[str, Any]] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 timeout_seconds: int = 3600):
        scheduled_config = (config or {}).get('scheduled_tasks', {})
        self.store = store
        self.executor = executor
        self.enabled = scheduled_config.get('enabled', True)
        self.timezone = scheduled_config.get('timezone', 'UTC')
        self.default_jobs: List[Dict[str, Any]] = list(scheduled_config.get('defaults') or [])
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

        self._timers: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self.states: Dict[str, ScheduleState] = {}
        self.started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Load persisted jobs (seeding defaults into an empty table) and start enabled timers"""
        if not self.enabled:
            logger.info("Scheduled task manager is disabled")
            return

        jobs = self.store.list_scheduled_jobs()
        if not jobs and self.default_jobs:
            jobs = self._seed_defaults()

        self.started = True
        active = 0
        for job in jobs:
            if await self._replace_timer(job.task_name, job):
                active += 1
        logger.info(f"Scheduled task manager started: {active}/{len(jobs)} jobs active")

    async def stop(self, timeout: float = 60):
        """Stop every timer, then wait (bounded) for runs in flight"""
        logger.info("Stopping scheduled task manager")
        self.started = False
        for task_name in list(self._timers):
            await self._replace_timer(task_name, None)

        if self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} running jobs to complete")
            try:
                await asyncio.wait_for(self.wait_for_running(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Timeout waiting for running jobs, cancelling")
                for run in list(self._in_flight):
                    run.cancel()
        logger.info("Scheduled task manager stopped")

    async def wait_for_running(self):
        """Wait until every run currently in flight has finished"""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _seed_defaults(self) -> List[ScheduledJob]:
        jobs = []
        for definition in self.default_jobs:
            if not validate_cron_expression(definition.get('cron_expression')):
                logger.error(f"Skipping default job with invalid cron: {definition}")
                continue
            jobs.append(self.store.create_scheduled_job(
                task_name=definition['task_name'],
                cron_expression=definition['cron_expression'],
                enabled=definition.get('enabled', True),
                description=definition.get('description'),
                max_items_to_process=definition.get('max_items_to_process', 50),
            ))
        logger.info(f"Seeded {len(jobs)} default scheduled jobs")
        return jobs

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _lock_for(self, task_name: str) -> asyncio.Lock:
        lock = self._locks.get(task_name)
        if lock is None:
            lock = self._locks[task_name] = asyncio.Lock()
        return lock

    async def _replace_timer(self, task_name: str, job: Optional[ScheduledJob]) -> bool:
        """
        Stop the timer for task_name (if any), then start one for job when it
        is enabled, valid and the manager is running. The only place timers
        are created or cancelled.

        Returns:
            True if a timer is running for task_name afterwards
        """
        async with self._lock_for(task_name):
            existing = self._timers.pop(task_name, None)
            if existing is not None and not existing.done():
                existing.cancel()
                try:
                    await existing
                except asyncio.CancelledError:
                    pass
                logger.debug(f"Stopped timer for {task_name}")

            if job is None or not job.enabled or not self.started:
                return False

            try:
                schedule = CronSchedule(job.cron_expression, self.timezone)
            except ValueError as e:
                logger.error(f"Not starting {task_name}: {e}")
                return False

            next_run = schedule.next_run_time()
            self._record_next_run(job.id, next_run)
            self._timers[task_name] = asyncio.create_task(
                self._timer_loop(task_name, schedule, next_run), name=f"scheduled-{task_name}"
            )
            logger.info(f"Started timer for {task_name} ({job.cron_expression}), next run {next_run.isoformat()}")
            return True

    async def _timer_loop(self, task_name: str, schedule: CronSchedule, next_run: datetime):
        while True:
            self.states.setdefault(task_name, ScheduleState()).next_run_time = next_run
            await self._sleep(max(0.0, (next_run - datetime.now(timezone.utc)).total_seconds()))

            try:
                # Cancelling the timer while waiting here leaves the run itself untouched
                run = self._spawn_run(task_name, trigger='timer')
                await asyncio.shield(run)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Timer fire for {task_name} failed: {e}", exc_info=True)

            # Ticks follow the previous one, so an early wake-up never repeats a tick
            next_run = schedule.next_run_time(max(next_run, datetime.now(timezone.utc)))
            try:
                job = self.store.get_scheduled_job_by_name(task_name)
                if job is not None:
                    self._record_next_run(job.id, next_run)
            except Exception as e:
                logger.error(f"Could not look up job {task_name} to persist next_run: {e}")

    def _record_next_run(self, job_id: int, next_run: Optional[datetime]):
        try:
            self.store.update_scheduled_job(job_id, {'next_run': _to_naive_utc(next_run)})
        except PersistenceFailure as e:
            logger.error(f"Could not persist next_run for job {job_id}: {e}")

    def is_timer_active(self, task_name: str) -> bool:
        timer = self._timers.get(task_name)
        return timer is not None and not timer.done()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _spawn_run(self, task_name: str, trigger: str) -> asyncio.Task:
        run = asyncio.create_task(self._execute_job(task_name, trigger), name=f"run-{task_name}")
        self._in_flight.add(run)
        run.add_done_callback(self._in_flight.discard)
        return run

    async def _execute_job(self, task_name: str, trigger: str) -> ExecutionResult:
        state = self.states.setdefault(task_name, ScheduleState())
        state.is_running = True
        logger.info(f"INITIALIZING TASK {task_name} ({trigger})")

        job = None
        start_time = datetime.now(timezone.utc)
        try:
            job = self.store.get_scheduled_job_by_name(task_name)
            result = await self.executor.execute(
                config={
                    'task_name': task_name,
                    'max_items': job.max_items_to_process if job else None,
                },
                context={'trigger': trigger},
                timeout_seconds=self.timeout_seconds,
            )
        except Exception as e:
            logger.error(f"Executor error for {task_name}: {e}", exc_info=True)
            result = ExecutionResult(success=False, start_time=start_time,
                                     end_time=datetime.now(timezone.utc), error=str(e))
        finally:
            state.is_running = False

        state.last_run_time = result.end_time
        state.last_run_result = result.status
        state.last_duration_seconds = result.duration_seconds

        if result.success:
            logger.info(f"COMPLETED TASK {task_name}: success in {result.duration_seconds:.1f}s")
        else:
            logger.error(f"COMPLETED TASK {task_name}: failed - {result.error}")

        if job is not None:
            try:
                self.store.update_scheduled_job(job.id, {
                    'last_run': _to_naive_utc(result.start_time),
                    'last_run_result': result.to_record(),
                })
            except PersistenceFailure as e:
                logger.error(f"Could not persist last_run for {task_name}: {e}")
        return result

    async def trigger_task(self, task_name: str) -> Dict[str, Any]:
        """Run a job now and record lastRun; may overlap a timer fire of the same job"""
        job = self.store.get_scheduled_job_by_name(task_name)
        if job is None:
            return {
                'status': 'error',
                'message': f'Task {task_name} not found'
            }

        logger.info(f"Manual trigger requested for task: {task_name}")
        result = await self._spawn_run(task_name, trigger='manual')
        return {
            'status': result.status,
            'message': f'Task {task_name} {"completed" if result.success else "failed"}',
            'result': result.to_record(),
        }

    # ------------------------------------------------------------------
    # Job administration
    # ------------------------------------------------------------------

    def list_scheduled_jobs(self) -> List[ScheduledJob]:
        return self.store.list_scheduled_jobs()

    async def update_scheduled_job(self, job_id: int, patch: Dict[str, Any]) -> Optional[ScheduledJob]:
        """
        Persist a change to a job and restart its timer.

        Raises:
            ValueError: invalid cron expression or unknown field
        """
        if 'cron_expression' in patch and not validate_cron_expression(patch['cron_expression']):
            raise ValueError(f"Invalid cron expression: {patch['cron_expression']!r}")

        job = self.store.get_scheduled_job(job_id)
        if job is None:
            return None

        patch = dict(patch)
        enabled = patch.get('enabled', job.enabled)
        cron_expression = patch.get('cron_expression', job.cron_expression)
        if not enabled:
            patch['next_run'] = None
        elif 'cron_expression' in patch or 'enabled' in patch:
            patch['next_run'] = _to_naive_utc(CronSchedule(cron_expression, self.timezone).next_run_time())

        job = self.store.update_scheduled_job(job_id, patch)
        await self._replace_timer(job.task_name, job)
        logger.info(f"Updated job {job.task_name}: {sorted(patch)}")
        return job

    async def set_enabled(self, task_name: str, enabled: bool) -> Dict[str, Any]:
        """Enable or disable a job by name"""
        job = self.store.get_scheduled_job_by_name(task_name)
        if job is None:
            return {
                'status': 'error',
                'message': f'Task {task_name} not found'
            }
        await self.update_scheduled_job(job.id, {'enabled': enabled})
        return {
            'status': 'success',
            'message': f'Task {task_name} {"enabled" if enabled else "disabled"}'
        }

    async def remove_job(self, job_id: int) -> bool:
        """Stop the job's timer, then delete its row"""
        job = self.store.get_scheduled_job(job_id)
        if job is None:
            return False
        await self._replace_timer(job.task_name, None)
        return self.store.delete_scheduled_job(job_id)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_task_status(self, task_name: str) -> Optional[Dict[str, Any]]:
        job = self.store.get_scheduled_job_by_name(task_name)
        if job is None:
            return None
        state = self.states.get(task_name, ScheduleState())
        status = job.to_dict()
        status.update({
            'timer_active': self.is_timer_active(task_name),
            'is_running': state.is_running,
            'last_duration_seconds': state.last_duration_seconds,
        })
        return status

    def get_status(self) -> Dict[str, Any]:
        jobs = self.store.list_scheduled_jobs()
        return {
            'enabled': self.enabled,
            'started': self.started,
            'task_count': len(jobs),
            'active_timers': sum(1 for job in jobs if self.is_timer_active(job.task_name)),
            'running_count': len(self._in_flight),
            'tasks': {job.task_name: self.get_task_status(job.task_name) for job in jobs},
        }
