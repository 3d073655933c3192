"""Tests for LogConfig and level resolution."""

import dataclasses
import logging

import pytest

from serverstarter.log import InvalidLogLevelError, LogConfig, LogConstants
from serverstarter.log.config import resolve_level


@pytest.mark.unit
class TestResolveLevel:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("info", logging.INFO),
            ("DEBUG", logging.DEBUG),
            (" warning ", logging.WARNING),
            ("trace", LogConstants.TRACE),
            ("30", 30),
            (40, 40),
            (True, logging.INFO),
            (False, False),
            ("false", False),
        ],
    )
    def test_levels(self, value, expected):
        assert resolve_level(value) == expected

    @pytest.mark.parametrize("value", ["verbose", "", None, 1.5])
    def test_invalid(self, value):
        with pytest.raises(InvalidLogLevelError, match="Invalid log level"):
            resolve_level(value)


@pytest.mark.unit
class TestLogConfig:
    def test_defaults(self):
        config = LogConfig()
        assert config.level == logging.INFO
        assert config.colors is True
        assert config.micros is False
        assert config.location is False

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            LogConfig().level = logging.DEBUG  # type: ignore[misc]

    def test_from_params(self):
        config = LogConfig.from_params("debug", colors=0, micros=1)
        assert config == LogConfig(logging.DEBUG, False, True, False)

    def test_from_config(self):
        config = LogConfig.from_config(
            {"logging": {"level": "warning", "colors": False, "location": True}}
        )
        assert config == LogConfig(logging.WARNING, False, False, True)

    def test_from_config_colors_mapping(self):
        config = LogConfig.from_config(
            {"logging": {"colors": {"enabled": False}, "microseconds": True}}
        )
        assert config.colors is False
        assert config.micros is True

    def test_from_config_dotted_section(self):
        config = LogConfig.from_config(
            {"app": {"log": {"level": "error"}}}, section="app.log"
        )
        assert config.level == logging.ERROR

    @pytest.mark.parametrize(
        "config_dict", [{}, {"logging": None}, {"logging": "debug"}, {"other": {}}]
    )
    def test_from_config_missing_section(self, config_dict):
        assert LogConfig.from_config(config_dict) == LogConfig.from_params()

    def test_from_config_invalid_level(self):
        with pytest.raises(InvalidLogLevelError):
            LogConfig.from_config({"logging": {"level": "loud"}})
