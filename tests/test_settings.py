import dataclasses
import logging

import pytest

from stdgag.loggers.error_log import get_error_logger, setup_error_logger
from stdgag.settings import StdGagSettings, get_settings, read_stdgag_env, reset_settings


class TestReadEnv:
    def test_defaults(self):
        settings = read_stdgag_env({})
        assert settings == StdGagSettings()
        assert settings.backing_strategy == "auto"
        assert settings.hold_chunk_size == 4096
        assert settings.temp_dir is None

    def test_overrides(self):
        settings = read_stdgag_env(
            {
                "STDGAG_BACKING_STRATEGY": "Pipe",
                "STDGAG_SHM_DIR": "/run/shm",
                "STDGAG_TEMP_DIR": "/var/tmp",
                "STDGAG_HOLD_CHUNK_SIZE": "512",
                "STDGAG_ENABLE_LOGGING": "1",
                "STDGAG_LOGS_DIR": "/tmp/logs",
            }
        )
        assert settings.backing_strategy == "pipe"
        assert settings.shm_dir == "/run/shm"
        assert settings.temp_dir == "/var/tmp"
        assert settings.hold_chunk_size == 512
        assert settings.enable_logging
        assert settings.logs_dir == "/tmp/logs"

    def test_bad_strategy(self):
        with pytest.raises(ValueError, match="STDGAG_BACKING_STRATEGY"):
            read_stdgag_env({"STDGAG_BACKING_STRATEGY": "carrier-pigeon"})

    @pytest.mark.parametrize("raw", ["lots", "0", "-4"])
    def test_bad_chunk_size(self, raw):
        with pytest.raises(ValueError, match="STDGAG_HOLD_CHUNK_SIZE"):
            read_stdgag_env({"STDGAG_HOLD_CHUNK_SIZE": raw})

    def test_settings_are_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            StdGagSettings().hold_chunk_size = 1


class TestCachedSettings:
    def test_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("STDGAG_BACKING_STRATEGY", "tempdir")
        first = get_settings()
        monkeypatch.setenv("STDGAG_BACKING_STRATEGY", "pipe")
        assert get_settings() is first
        reset_settings()
        assert get_settings().backing_strategy == "pipe"


class TestErrorLogger:
    @pytest.fixture
    def fresh_logger(self):
        logger = logging.getLogger("stdgag")
        saved = logger.handlers[:], logger.propagate, logger.level
        logger.handlers = []
        yield logger
        for handler in logger.handlers:
            handler.close()
        logger.handlers, logger.propagate, logger.level = saved

    def test_child_logger_name(self):
        assert get_error_logger("guard").name == "stdgag.guard"

    def test_stderr_only_by_default(self, fresh_logger):
        logger = setup_error_logger(StdGagSettings())
        assert logger is fresh_logger
        assert len(logger.handlers) == 1
        assert not logger.propagate

    def test_file_handler_when_enabled(self, fresh_logger, tmp_path):
        settings = StdGagSettings(enable_logging=True, logs_dir=str(tmp_path / "logs"))
        logger = setup_error_logger(settings)
        assert len(logger.handlers) == 2
        get_error_logger("test").error("[stdgag] something broke")
        for handler in logger.handlers:
            handler.flush()
        text = (tmp_path / "logs" / "stdgag_errors.log").read_text(encoding="utf-8")
        assert "something broke" in text

    def test_setup_is_idempotent(self, fresh_logger):
        setup_error_logger(StdGagSettings())
        setup_error_logger(StdGagSettings())
        assert len(fresh_logger.handlers) == 1
