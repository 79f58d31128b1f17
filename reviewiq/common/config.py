"""
Centralized Configuration for ReviewIQ

Typed configuration for the scheduling backend. Values come from
defaults, then an optional YAML/JSON file, then environment variables
of the form ``REVIEWIQ_<SECTION>__<FIELD>`` (highest priority).

Every tuning constant of the scheduling policy lives here as a default
so that deployments can adjust it without touching code.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from reviewiq.common.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "REVIEWIQ_"
ENV_NESTED_DELIMITER = "__"


class DatabaseConfig(BaseModel):
    """Database configuration"""
    url: str = "sqlite+aiosqlite:///./reviewiq.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30


class RedisConfig(BaseModel):
    """Redis configuration"""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    key_prefix: str = "reviewiq:"
    socket_timeout: float = 5.0

    @property
    def connection_string(self) -> str:
        """Get the Redis connection string"""
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class CacheConfig(BaseModel):
    """Cache configuration; TTLs are in seconds."""
    backend: str = "memory"
    max_size: int = 10000
    schedule_ttl: int = 15 * 60
    overdue_ttl: int = 60
    batch_ttl: int = 10 * 60
    prediction_ttl: int = 10 * 60
    realtime_ttl: int = 2 * 60
    analytics_ttl: int = 7 * 24 * 60 * 60

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        if v not in ("memory", "redis"):
            raise ValueError("Cache backend must be 'memory' or 'redis'")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    use_json: bool = False
    log_file: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        allowed = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v.upper()


class ForgettingConfig(BaseModel):
    """Forgetting-curve adjustment bounds"""
    failure_penalty: float = 0.5
    min_adjustment: float = 0.1
    max_adjustment: float = 2.0
    max_retention: float = 0.95
    profile_window: int = 20
    min_reviews_for_tuning: int = 5


class SchedulingConfig(BaseModel):
    """Priority scheduling defaults"""
    retention_weight: float = 0.35
    difficulty_weight: float = 0.25
    overdue_weight: float = 0.20
    frequency_weight: float = 0.10
    recency_weight: float = 0.10
    start_hour: int = 9
    end_hour: int = 22
    max_items: int = 20
    horizon_hours: int = 24
    slot_minutes: int = 15
    compressed_slot_minutes: int = 5
    due_ramp_ceiling: float = 50.0
    default_difficulty: float = 5.0
    default_days_since_review: int = 7

    def weights(self) -> Dict[str, float]:
        return {
            "retention": self.retention_weight,
            "difficulty": self.difficulty_weight,
            "overdue": self.overdue_weight,
            "frequency": self.frequency_weight,
            "recency": self.recency_weight,
        }


class DifficultyConfig(BaseModel):
    """Adaptive difficulty policy"""
    profile_weight: float = 0.4
    feedback_weight: float = 0.3
    pattern_weight: float = 0.2
    trend_weight: float = 0.1
    factor_bound: float = 9.0
    feedback_window_days: int = 30
    pattern_window_days: int = 7
    trend_window_days: int = 7
    trend_sample_size: int = 5
    retry_rate_threshold: float = 0.3
    frustration_threshold: float = 0.4
    trigger_window_hours: int = 24
    trigger_min_feedbacks: int = 5
    trigger_negative_ratio: float = 0.8
    automatic_step: float = 1.0
    recent_performance_size: int = 20

    @model_validator(mode='after')
    def validate_weights(self):
        weights = (self.profile_weight, self.feedback_weight, self.pattern_weight, self.trend_weight)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            raise ValueError("Difficulty factor weights must be non-negative with a positive sum")
        return self


class OrchestratorConfig(BaseModel):
    """Batch orchestrator configuration"""
    enabled: bool = True
    batch_size: int = 50
    min_batch_size: int = 10
    max_batch_size: int = 100
    batch_size_step: int = 10
    max_concurrent_jobs: int = 3
    timezone: str = "Asia/Seoul"
    batch_pause_seconds: float = 0.1
    seconds_per_user_estimate: float = 2.0
    active_user_days: int = 30
    recent_activity_hours: int = 1
    refresh_user_limit: int = 100
    stale_schedule_hours: int = 4
    schedule_max_items: int = 20
    overdue_scan_limit: int = 1000
    slow_job_seconds: float = 30.0
    fast_job_seconds: float = 5.0
    min_cache_hit_rate: float = 0.8
    max_memory_pressure: float = 0.8
    duration_window: int = 20
    daily_time: Tuple[int, int] = (2, 0)
    cleanup_time: Tuple[int, int] = (1, 0)
    weekly_weekday: int = 6
    hourly_interval_seconds: int = 60 * 60
    overdue_interval_seconds: int = 5 * 60
    tuning_interval_seconds: int = 10 * 60

    @model_validator(mode='after')
    def validate_batch_bounds(self):
        if not (0 < self.min_batch_size <= self.batch_size <= self.max_batch_size):
            raise ValueError("batch_size must lie within [min_batch_size, max_batch_size]")
        return self


class AppConfig(BaseModel):
    """Application configuration"""
    env: str = "development"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    forgetting: ForgettingConfig = Field(default_factory=ForgettingConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    difficulty: DifficultyConfig = Field(default_factory=DifficultyConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)

    @property
    def is_testing(self) -> bool:
        return self.env == "testing"


class ConfigLoader:
    """
    Configuration loader for the application.

    Loads configuration from:
    1. Default values
    2. Config file (``CONFIG_PATH``)
    3. Environment variables (highest priority)
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        load_dotenv()
        self.environ = os.environ if environ is None else environ
        self.config_path = config_path or self.environ.get("CONFIG_PATH")
        self._config: Optional[AppConfig] = None

    def load(self) -> AppConfig:
        if self._config is not None:
            return self._config

        values: Dict[str, Any] = {}
        if self.config_path:
            values = self._load_from_file(self.config_path)
        _deep_merge(values, self._load_from_env())

        try:
            self._config = AppConfig(**values)
        except PydanticValidationError as e:
            raise ConfigurationError("Invalid configuration", details={"errors": e.errors()}) from e
        return self._config

    def _load_from_file(self, path: str) -> Dict[str, Any]:
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        try:
            with open(path, 'r') as f:
                if path.suffix.lower() in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                if path.suffix.lower() == '.json':
                    return json.load(f)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Error loading config file {path}", cause=e) from e

        logger.warning(f"Unsupported config file format: {path.suffix}")
        return {}

    def _load_from_env(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for key, raw in self.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            path = key[len(ENV_PREFIX):].lower().split(ENV_NESTED_DELIMITER)
            target = values
            for part in path[:-1]:
                target = target.setdefault(part, {})
            target[path[-1]] = _parse_env_value(raw)
        return values


def _parse_env_value(raw: str) -> Any:
    # scalars stay strings for pydantic to coerce; only containers are decoded
    if raw.strip().startswith(("[", "{")):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw
    return raw


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


_config_loader: Optional[ConfigLoader] = None


def get_config() -> AppConfig:
    """Get the loaded configuration, loading it on first use."""
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader.load()


def reload_config(config_path: Optional[str] = None) -> AppConfig:
    """Discard the loaded configuration and load it again."""
    global _config_loader
    _config_loader = ConfigLoader(config_path)
    return _config_loader.load()
