"""Tests for logging configuration helpers."""

import logging
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from action_flows.logging_config import LOG_LEVEL, resolve_log_level  # noqa: E402


@pytest.mark.parametrize(
    "value, expected",
    [(logging.DEBUG, logging.DEBUG), ("warning", logging.WARNING), (" ERROR ", logging.ERROR), ("loud", LOG_LEVEL)],
)
def test_resolve_log_level(value, expected):
    assert resolve_log_level(value) == expected


def test_resolve_log_level_reads_environment(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert resolve_log_level() == logging.DEBUG

    monkeypatch.delenv("LOG_LEVEL")
    assert resolve_log_level() == LOG_LEVEL
