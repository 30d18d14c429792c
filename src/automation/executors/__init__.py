"""
Task Executors for the Scheduled Task Manager

- PipelineExecutor: runs in-process pipeline actions (ingestion pass, re-enrichment)
"""
from .base import BaseExecutor, ExecutionResult
from .pipeline import PipelineExecutor, TASK_ALIASES

__all__ = ['BaseExecutor', 'ExecutionResult', 'PipelineExecutor', 'TASK_ALIASES']
