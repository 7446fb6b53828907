from pathlib import Path

import pytest

from pulse_platform.core import config as config_module
from pulse_platform.core.config import Config, ConfigValidationError

CONFIG_KEYS = (
    "PULSE_DB_PATH", "HOST", "PORT", "THREADS", "LOG_DIR", "LOG_LEVEL",
    "SPLITTER_POLL_INTERVAL", "EXECUTOR_POLL_INTERVAL", "EXECUTOR_BATCH_SIZE",
    "MONITOR_INTERVAL", "SPLIT_TIMEOUT_SECONDS", "EXECUTION_TIMEOUT_SECONDS",
    "BROKER_MODE", "BROKER_URL", "BROKER_TIMEOUT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in CONFIG_KEYS:
        # set-then-delete registers the key, so values load_dotenv writes are undone too
        monkeypatch.setenv(key, "placeholder")
        monkeypatch.delenv(key)
    monkeypatch.setattr(config_module, "_DEFAULT_ENV_PATH", tmp_path / "missing.env")
    return monkeypatch


def _write_env(tmp_path, text):
    path = tmp_path / "pulse.env"
    path.write_text(text)
    return path


class TestConfigLoading:

    def test_defaults_without_env_file(self, clean_env):
        cfg = Config()

        assert cfg.port == 5000
        assert cfg.threads == 4
        assert cfg.log_level == "INFO"
        assert cfg.splitter_poll_interval == 1.0
        assert cfg.executor_poll_interval == 0.5
        assert cfg.executor_batch_size == 50
        assert cfg.monitor_interval == 30
        assert cfg.split_timeout_seconds == 300
        assert cfg.execution_timeout_seconds == 120
        assert cfg.broker_mode == "paper"
        assert cfg.broker_url is None
        assert cfg.db_path.name == "pulse.db"

    def test_values_from_env_file(self, clean_env, tmp_path):
        env = _write_env(
            tmp_path,
            "PORT=6000\n"
            "EXECUTOR_BATCH_SIZE=10   # small batches\n"
            "BROKER_MODE=HTTP\n"
            "BROKER_URL=http://localhost:9000\n"
            f"PULSE_DB_PATH={tmp_path / 'x.db'}\n",
        )

        cfg = Config(env_path=env)

        assert cfg.port == 6000
        assert cfg.executor_batch_size == 10
        assert cfg.broker_mode == "http"
        assert cfg.broker_url == "http://localhost:9000"
        assert cfg.db_path == Path(tmp_path / "x.db")
        assert cfg.get_broker_config() == {"mode": "http", "url": "http://localhost:9000", "timeout": 10.0}

    def test_process_environment_wins_over_file(self, clean_env, tmp_path):
        clean_env.setenv("PORT", "7000")
        env = _write_env(tmp_path, "PORT=6000\n")

        assert Config(env_path=env).port == 7000

    def test_explicit_env_file_must_exist(self, clean_env, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config(env_path=tmp_path / "nope.env")

    def test_summary_hides_broker_url(self, clean_env):
        clean_env.setenv("BROKER_MODE", "http")
        clean_env.setenv("BROKER_URL", "http://secret-gateway")

        summary = Config().get_config_summary()

        assert summary["broker"]["url_set"] is True
        assert "secret-gateway" not in str(summary)


class TestConfigValidation:

    @pytest.mark.parametrize(
        "key,value",
        [
            ("PORT", "80"),
            ("PORT", "abc"),
            ("THREADS", "0"),
            ("EXECUTOR_BATCH_SIZE", "0"),
            ("EXECUTOR_POLL_INTERVAL", "fast"),
            ("SPLIT_TIMEOUT_SECONDS", "5"),
            ("LOG_LEVEL", "VERBOSE"),
            ("BROKER_MODE", "live"),
        ],
    )
    def test_invalid_values_rejected(self, clean_env, key, value):
        clean_env.setenv(key, value)
        with pytest.raises(ConfigValidationError):
            Config()

    def test_http_broker_requires_url(self, clean_env):
        clean_env.setenv("BROKER_MODE", "http")
        with pytest.raises(ConfigValidationError):
            Config()
