"""
Scheduler models.

Contains:
- ScheduledJob: a named recurring job (cron expression, enabled flag, run bookkeeping)
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON

from .base import Base, utcnow


class ScheduledJob(Base):
    """
    A named recurring task persisted so that rescheduling or toggling takes
    effect without a restart.

    Attributes:
        task_name: Unique name; selects the action the scheduler runs
        cron_expression: 5-field cron, or 6-field with leading seconds
        enabled: Whether a timer should be running for this job
        last_run / next_run: Naive UTC bookkeeping timestamps
        max_items_to_process: Cap on items processed per run
        last_run_result: Summary of the last run ('success', 'failed', 'error') and stats
    """
    __tablename__ = 'scheduled_jobs'

    id = Column(Integer, primary_key=True)
    task_name = Column(String(100), nullable=False, unique=True)
    cron_expression = Column(String(100), nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    description = Column(Text)
    last_run = Column(DateTime)
    next_run = Column(DateTime)
    max_items_to_process = Column(Integer, default=50, nullable=False)
    last_run_result = Column(JSON)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'task_name': self.task_name,
            'cron_expression': self.cron_expression,
            'enabled': self.enabled,
            'description': self.description,
            'last_run': self.last_run.isoformat() if self.last_run else None,
            'next_run': self.next_run.isoformat() if self.next_run else None,
            'max_items_to_process': self.max_items_to_process,
            'last_run_result': self.last_run_result,
        }
