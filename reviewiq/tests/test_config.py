import json

import pytest

from reviewiq.common.config import AppConfig, ConfigLoader, OrchestratorConfig, RedisConfig
from reviewiq.common.exceptions import ConfigurationError, ErrorCode


class TestConfigLoader:

    def test_defaults(self):
        config = ConfigLoader(environ={}).load()
        assert config.env == "development"
        assert config.scheduling.start_hour == 9
        assert config.orchestrator.daily_time == (2, 0)
        assert config.cache.backend == "memory"

    def test_environment_overrides(self):
        config = ConfigLoader(environ={
            "REVIEWIQ_ENV": "production",
            "REVIEWIQ_SCHEDULING__START_HOUR": "8",
            "REVIEWIQ_ORCHESTRATOR__DAILY_TIME": "[3, 30]",
            "REVIEWIQ_LOGGING__LEVEL": "debug",
            "UNRELATED": "ignored",
        }).load()

        assert config.env == "production"
        assert config.scheduling.start_hour == 8
        assert config.orchestrator.daily_time == (3, 30)
        assert config.logging.level == "DEBUG"

    def test_yaml_file_with_environment_precedence(self, tmp_path):
        path = tmp_path / "reviewiq.yaml"
        path.write_text(
            "scheduling:\n"
            "  end_hour: 20\n"
            "  max_items: 10\n"
            "cache:\n"
            "  backend: redis\n"
        )
        config = ConfigLoader(config_path=str(path), environ={"REVIEWIQ_SCHEDULING__MAX_ITEMS": "15"}).load()

        assert config.scheduling.end_hour == 20
        assert config.scheduling.max_items == 15
        assert config.cache.backend == "redis"

    def test_json_file_from_environment(self, tmp_path):
        path = tmp_path / "reviewiq.json"
        path.write_text(json.dumps({"difficulty": {"automatic_step": 0.5}}))
        config = ConfigLoader(environ={"CONFIG_PATH": str(path)}).load()
        assert config.difficulty.automatic_step == 0.5

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        config = ConfigLoader(config_path=str(tmp_path / "absent.yaml"), environ={}).load()
        assert config.scheduling.max_items == 20

    def test_invalid_values_raise_configuration_error(self):
        with pytest.raises(ConfigurationError) as excinfo:
            ConfigLoader(environ={"REVIEWIQ_CACHE__BACKEND": "memcached"}).load()
        assert excinfo.value.code is ErrorCode.CONFIGURATION_ERROR

    def test_load_is_memoised(self):
        loader = ConfigLoader(environ={})
        assert loader.load() is loader.load()


class TestConfigModels:

    def test_batch_bounds(self):
        with pytest.raises(ValueError):
            OrchestratorConfig(batch_size=5)
        with pytest.raises(ValueError):
            OrchestratorConfig(batch_size=500)

    def test_redis_connection_string(self):
        assert RedisConfig().connection_string == "redis://localhost:6379/0"
        assert RedisConfig(password="pw", db=2).connection_string == "redis://:pw@localhost:6379/2"

    def test_testing_flag(self):
        assert AppConfig(env="testing").is_testing
        assert not AppConfig().is_testing
