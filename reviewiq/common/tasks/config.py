"""
Task Configuration Module

Broker and worker settings for running the review batch jobs under
Celery beat instead of the in-process orchestrator loop.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List

DEFAULT_BROKER_URL = "redis://localhost:6379/1"
DEFAULT_RESULT_BACKEND = "redis://localhost:6379/2"


@dataclass
class TaskConfig:
    """
    Configuration for the task scheduling system.

    Attributes:
        broker_url: URL for the message broker
        result_backend: URL for the result backend
        worker_concurrency: Number of worker processes
        task_serializer: Format for serializing task messages
        result_serializer: Format for serializing results
        accept_content: List of content types to accept
        timezone: Timezone the beat schedule is expressed in
        enable_utc: Whether to use UTC as the default timezone
        task_time_limit: Hard time limit per job in seconds
        additional_options: Additional Celery configuration options
    """
    broker_url: str = DEFAULT_BROKER_URL
    result_backend: str = DEFAULT_RESULT_BACKEND
    worker_concurrency: int = 1
    task_serializer: str = "json"
    result_serializer: str = "json"
    accept_content: List[str] = field(default_factory=lambda: ["json"])
    timezone: str = "Asia/Seoul"
    enable_utc: bool = False
    task_time_limit: int = 3600
    additional_options: Dict[str, Any] = field(default_factory=dict)

    def to_celery_config(self) -> Dict[str, Any]:
        """
        Convert the task configuration to a Celery configuration dictionary.

        Returns:
            Dictionary of Celery configuration options
        """
        config = {
            "broker_url": self.broker_url,
            "result_backend": self.result_backend,
            "worker_concurrency": self.worker_concurrency,
            "task_serializer": self.task_serializer,
            "result_serializer": self.result_serializer,
            "accept_content": self.accept_content,
            "timezone": self.timezone,
            "enable_utc": self.enable_utc,
            "task_time_limit": self.task_time_limit,
            "worker_prefetch_multiplier": 1,
        }
        config.update(self.additional_options)
        return config


def load_task_config(timezone: str = "Asia/Seoul") -> TaskConfig:
    """Task configuration with ``TASK_*`` environment overrides applied."""
    config = TaskConfig(timezone=timezone)
    if "TASK_BROKER_URL" in os.environ:
        config.broker_url = os.environ["TASK_BROKER_URL"]
    if "TASK_RESULT_BACKEND" in os.environ:
        config.result_backend = os.environ["TASK_RESULT_BACKEND"]
    if "TASK_WORKER_CONCURRENCY" in os.environ:
        config.worker_concurrency = int(os.environ["TASK_WORKER_CONCURRENCY"])
    return config
