"""
Tests for the shared logging configuration.
"""
from contact_importer.core.logging_config import LOG_FORMAT, build_logging_config


def test_library_loggers_are_quiet_at_info():
    config = build_logging_config("INFO")

    assert config["root"]["level"] == "INFO"
    assert config["loggers"]["httpx"] == {"level": "WARNING"}
    assert config["formatters"]["standard"]["format"] == LOG_FORMAT


def test_library_loggers_follow_debug_level():
    config = build_logging_config("DEBUG", noisy_loggers=["anthropic"])

    assert config["loggers"] == {"anthropic": {"level": "DEBUG"}}
