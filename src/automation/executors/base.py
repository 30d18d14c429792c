"""
Executor interface for scheduled jobs
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from datetime import datetime


@dataclass
class ExecutionResult:
    """Outcome of one scheduled or manual run"""
    success: bool
    start_time: datetime
    end_time: datetime
    output: Optional[Dict[str, Any]] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def status(self) -> str:
        return 'success' if self.success else 'failed'

    def to_record(self) -> Dict[str, Any]:
        """JSON-safe summary stored as the job's last_run_result"""
        record = {
            'status': self.status,
            'finished_at': self.end_time.isoformat(),
            'duration_seconds': round(self.duration_seconds, 3),
            'output': self.output or {},
        }
        if self.error:
            record['error'] = self.error
        return record


class BaseExecutor(ABC):
    """Runs the action behind a job name"""

    @abstractmethod
    async def execute(
        self,
        config: Dict[str, Any],
        context: Dict[str, Any],
        timeout_seconds: int = 3600
    ) -> ExecutionResult:
        """
        Args:
            config: Job settings (task_name, max_items)
            context: Run context, e.g. {'trigger': 'timer' | 'manual'}
            timeout_seconds: Maximum execution time; 0 or None disables it
        """
