"""
Schedule Types for the Scheduled Task Manager

Jobs are scheduled with cron expressions:
- 5 fields: minute hour day-of-month month day-of-week
- 6 fields: second minute hour day-of-month month day-of-week ('0 0 12 * * *' = daily at noon)

Run times are computed in the configured timezone and returned as aware UTC.
"""
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Optional
import logging

from croniter import croniter
import pytz

logger = logging.getLogger(__name__)


@dataclass
class ScheduleState:
    """Runtime state for a scheduled job"""
    last_run_time: Optional[datetime] = None
    last_run_result: Optional[str] = None  # 'success', 'failed', 'error'
    last_duration_seconds: Optional[float] = None
    is_running: bool = False
    next_run_time: Optional[datetime] = None


def _seconds_first(expression: str) -> bool:
    return len(expression.split()) == 6


def validate_cron_expression(expression: Optional[str]) -> bool:
    """Whether expression is a valid 5- or 6-field cron expression"""
    if not expression or not isinstance(expression, str):
        return False
    if len(expression.split()) not in (5, 6):
        return False
    try:
        croniter(expression, datetime.now(timezone.utc), second_at_beginning=_seconds_first(expression))
    except (ValueError, KeyError) as e:
        logger.debug(f"Invalid cron expression {expression!r}: {e}")
        return False
    return True


class BaseSchedule:
    """Base class for schedule implementations"""

    def next_run_time(self, after: Optional[datetime] = None) -> datetime:
        """Calculate the next scheduled run time strictly after `after` (default: now)"""
        raise NotImplementedError


class CronSchedule(BaseSchedule):
    """
    Cron-expression schedule.

    Raises:
        ValueError: the expression is not a valid 5- or 6-field cron expression
    """

    def __init__(self, expression: str, tz: str = 'UTC'):
        if not validate_cron_expression(expression):
            raise ValueError(f"Invalid cron expression: {expression!r}")
        self.expression = expression
        self.tz = pytz.timezone(tz)

    def next_run_time(self, after: Optional[datetime] = None) -> datetime:
        after = after or datetime.now(timezone.utc)
        if after.tzinfo is None:
            after = after.replace(tzinfo=timezone.utc)
        local_start = after.astimezone(self.tz)
        itr = croniter(self.expression, local_start, second_at_beginning=_seconds_first(self.expression))
        return itr.get_next(datetime).astimezone(timezone.utc)

    def __repr__(self):
        return f"<CronSchedule({self.expression!r}, tz={self.tz.zone})>"
