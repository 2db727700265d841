import logging
from types import SimpleNamespace

import pytest

from guest_identity.logging_utils import (
    LOG_LEVEL_ENV,
    PACKAGE_LOGGER,
    configure_logging,
    effective_level_name,
)


def make_config(level=None):
    return SimpleNamespace(logging=SimpleNamespace(level=level))


@pytest.fixture
def restore_levels():
    root = logging.getLogger()
    package = logging.getLogger(PACKAGE_LOGGER)
    saved = (root.level, package.level)
    yield
    root.setLevel(saved[0])
    package.setLevel(saved[1])


def test_effective_level_precedence(monkeypatch):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    assert effective_level_name(make_config()) == "WARNING"
    assert effective_level_name(make_config("info")) == "INFO"
    assert effective_level_name(make_config("info"), "debug") == "DEBUG"
    monkeypatch.setenv(LOG_LEVEL_ENV, "error")
    assert effective_level_name(make_config("info"), "debug") == "ERROR"


def test_configure_logging_sets_package_level(monkeypatch, restore_levels):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    assert configure_logging(make_config("debug")) == logging.DEBUG
    assert logging.getLogger(PACKAGE_LOGGER).level == logging.DEBUG
    assert logging.getLogger("guest_identity.resolve").getEffectiveLevel() == logging.DEBUG


def test_unknown_level_falls_back_to_warning(monkeypatch, restore_levels):
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    assert configure_logging(make_config(), "chatty") == logging.WARNING
    assert configure_logging(make_config(), "15") == 15


if __name__ == "__main__":
    pytest.main(["-q"])
