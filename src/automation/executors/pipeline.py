"""
Pipeline Executor - Runs an in-process pipeline action for a scheduled job
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from .base import BaseExecutor, ExecutionResult

logger = logging.getLogger(__name__)

# Action signature: async fn(max_items) -> stats dict
PipelineAction = Callable[[int], Awaitable[Dict[str, Any]]]

# Older job names still found in persisted job tables
TASK_ALIASES = {
    'daily_import': 'import_premium_videos',
    'midday_update': 'update_videos',
}


class PipelineExecutor(BaseExecutor):
    """
    Executes a named pipeline action.

    Config options:
    - task_name: Name of the job; resolved through TASK_ALIASES
    - max_items: Cap passed to the action
    """

    def __init__(self, actions: Dict[str, PipelineAction]):
        self.actions = dict(actions)

    def resolve(self, task_name: str) -> Optional[PipelineAction]:
        return self.actions.get(TASK_ALIASES.get(task_name, task_name))

    async def execute(
        self,
        config: Dict[str, Any],
        context: Dict[str, Any],
        timeout_seconds: int = 3600
    ) -> ExecutionResult:
        """Run the action; exceptions and timeouts are reported in the result, never raised"""
        start_time = datetime.now(timezone.utc)
        task_name = config.get('task_name', '')
        action = self.resolve(task_name)

        if action is None:
            return ExecutionResult(
                success=False,
                start_time=start_time,
                end_time=datetime.now(timezone.utc),
                error=f"Unknown task: {task_name}"
            )

        max_items = int(config.get('max_items') or 50)
        logger.info(f"Running {task_name} ({context.get('trigger', 'timer')}, max_items={max_items})")

        try:
            if timeout_seconds:
                output = await asyncio.wait_for(action(max_items), timeout=timeout_seconds)
            else:
                output = await action(max_items)
        except asyncio.TimeoutError:
            return ExecutionResult(
                success=False,
                start_time=start_time,
                end_time=datetime.now(timezone.utc),
                error=f"Timeout after {timeout_seconds}s"
            )
        except Exception as e:
            logger.error(f"Task {task_name} raised: {e}", exc_info=True)
            return ExecutionResult(
                success=False,
                start_time=start_time,
                end_time=datetime.now(timezone.utc),
                error=str(e)
            )

        return ExecutionResult(
            success=True,
            start_time=start_time,
            end_time=datetime.now(timezone.utc),
            output=output or {}
        )
