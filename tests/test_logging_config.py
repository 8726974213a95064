"""
Tests for logging setup.
"""

import io
import logging

import pytest

from x402_arc.exceptions import ConfigurationError
from x402_arc.logging_config import resolve_level, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def test_setup_logging_replaces_handlers(root_logger):
    setup_logging(logging.DEBUG)
    setup_logging(logging.DEBUG)

    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert "%(lineno)d" in root_logger.handlers[0].formatter._fmt
    assert logging.getLogger("web3").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_level_name_and_stream(root_logger):
    stream = io.StringIO()
    setup_logging("warning", stream=stream)

    logging.getLogger("x402_arc.test").info("hidden")
    logging.getLogger("x402_arc.test").warning("shown")

    output = stream.getvalue()
    assert "shown" in output
    assert "hidden" not in output
    assert "WARNING" in output


def test_resolve_level():
    assert resolve_level(logging.ERROR) == logging.ERROR
    assert resolve_level(" Debug ") == logging.DEBUG
    with pytest.raises(ConfigurationError):
        resolve_level("chatty")
