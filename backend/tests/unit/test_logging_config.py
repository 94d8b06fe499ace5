"""Tests for centralized logging configuration."""

import logging

import pytest

from config import Settings
from logging_config import DATE_FORMAT, QUIET_LOGGERS, setup_logging


@pytest.fixture(autouse=True)
def restore_root_level():
    root = logging.getLogger()
    level = root.level
    yield
    root.setLevel(level)


def _use_level(monkeypatch, level: str) -> None:
    monkeypatch.setattr("logging_config.settings", Settings(_env_file=None, LOG_LEVEL=level))


class TestSetupLogging:
    def test_level_from_settings(self, monkeypatch):
        _use_level(monkeypatch, "WARNING")
        setup_logging()
        assert logging.getLogger().level == logging.WARNING

    def test_explicit_level_wins(self, monkeypatch):
        _use_level(monkeypatch, "INFO")
        setup_logging("debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_transport_loggers_stay_quiet_in_debug(self, monkeypatch):
        _use_level(monkeypatch, "DEBUG")
        setup_logging()
        for name in QUIET_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING, f"{name} logger not suppressed"

    def test_timestamps_include_date(self, monkeypatch):
        _use_level(monkeypatch, "INFO")
        setup_logging()
        assert logging.getLogger().handlers[0].formatter.datefmt == DATE_FORMAT
