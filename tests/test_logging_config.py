"""
Tests: logging setup for the sitecontrol logger tree.
"""

import logging

import pytest

from sitecontrol.logging_config import ReadableFormatter, configure_logging


@pytest.fixture
def clean_logger():
    logger = logging.getLogger("sitecontrol")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def test_handler_added_once(clean_logger):
    configure_logging("debug")
    configure_logging("debug")
    ours = [h for h in clean_logger.handlers if getattr(h, "_sitecontrol", False)]
    assert len(ours) == 1
    assert clean_logger.level == logging.DEBUG
    assert clean_logger.propagate is False


def test_unknown_level_falls_back_to_info(clean_logger):
    configure_logging("chatty")
    assert clean_logger.level == logging.INFO


def test_formatter_shows_project_id():
    record = logging.LogRecord("sitecontrol.store", logging.INFO, __file__, 1, "Reset %d records", (3,), None)
    record.project_id = "p-42"
    text = ReadableFormatter().format(record)
    assert "sitecontrol.store [p-42]: Reset 3 records" in text
