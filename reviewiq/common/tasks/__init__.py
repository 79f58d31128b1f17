"""
Task Scheduling

Celery beat integration for the review batch jobs. The FastAPI process
runs the same jobs in-process unless ``orchestrator.enabled`` is off.
"""

from .config import TaskConfig, load_task_config

__all__ = [
    'TaskConfig',
    'load_task_config',
]
