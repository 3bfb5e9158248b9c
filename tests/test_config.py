"""Unit tests for runtime configuration and package logging."""

import logging

import pytest

from hdr_inspector.config import DEFAULT_CONFIG, InspectorConfig
from hdr_inspector.logger import attach_handler, get_logger, set_level, task_logger


class TestInspectorConfig:
    """Test environment-driven configuration."""

    def test_empty_environment_gives_defaults(self):
        """Test unset variables keep defaults."""
        assert InspectorConfig.from_env({}) == DEFAULT_CONFIG

    def test_parses_values(self):
        """Test each field type is parsed."""
        config = InspectorConfig.from_env(
            {
                "HDR_INSPECTOR_COMPUTE_WORKERS": "3",
                "HDR_INSPECTOR_REQUEST_WORKERS": "auto",
                "HDR_INSPECTOR_CACHE_MAX_ENTRIES": "64",
                "HDR_INSPECTOR_DEFAULT_GAMMA": "2.4",
                "HDR_INSPECTOR_LOG_LEVEL": "debug",
                "UNRELATED": "x",
            }
        )
        assert config.compute_workers == 3
        assert config.request_workers is None
        assert config.cache_max_entries == 64
        assert config.default_gamma == 2.4
        assert config.log_level == logging.DEBUG

    def test_numeric_log_level(self):
        """Test numeric log levels are accepted."""
        assert InspectorConfig.from_env({"HDR_INSPECTOR_LOG_LEVEL": "30"}).log_level == 30

    @pytest.mark.parametrize(
        "key,value",
        [
            ("HDR_INSPECTOR_COMPUTE_WORKERS", "0"),
            ("HDR_INSPECTOR_COMPUTE_WORKERS", "many"),
            ("HDR_INSPECTOR_DEFAULT_EXPOSURE", "bright"),
            ("HDR_INSPECTOR_LOG_LEVEL", "LOUD"),
        ],
    )
    def test_malformed_values_raise(self, key, value):
        """Test malformed values name the offending variable."""
        with pytest.raises(ValueError, match=key):
            InspectorConfig.from_env({key: value})

    def test_frozen(self):
        """Test configs are immutable."""
        with pytest.raises(AttributeError):
            DEFAULT_CONFIG.default_gamma = 1.0


class TestLogger:
    """Test the package logger hierarchy."""

    def test_child_names(self):
        """Test module loggers live under the package logger."""
        assert get_logger("hdr_inspector.statistics").name == "hdr_inspector.statistics"
        assert get_logger("tests").name == "hdr_inspector.tests"

    def test_task_id_default(self, log_records):
        """Test records without a task id get a placeholder."""
        get_logger("tests").warning("plain message")
        assert log_records[-1].task_id == "-"

    def test_set_level(self):
        """Test set_level updates the package logger."""
        base = logging.getLogger("hdr_inspector")
        previous = base.level
        try:
            set_level(logging.WARNING)
            assert base.level == logging.WARNING
        finally:
            set_level(previous)

    def test_attach_none_is_noop(self):
        """Test attaching no handler leaves handlers unchanged."""
        base = get_logger("hdr_inspector")
        before = list(base.handlers)
        attach_handler(None)
        assert base.handlers == before

    def test_task_logger_binds_id(self, log_records):
        """Test the adapter stamps its task id on records."""
        task_logger(get_logger("tests"), "task-1234").info("bound message")
        assert log_records[-1].task_id == "task-1234"
