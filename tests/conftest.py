"""
Shared fixtures for Faultline tests.
"""

import logging

import pytest

from faultline.services.structured_logger import StructuredLogger
from faultline.utils.logging import ROOT_LOGGER_NAME
from tests.helpers import CollectingSink, RecordingCrashReporter, RecordingNotifier


@pytest.fixture(autouse=True)
def reset_diagnostic_logger():
    """Undo setup_logging so caplog sees pipeline diagnostics."""
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


@pytest.fixture
def collecting_sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def structured_logger(collecting_sink: CollectingSink):
    """Running StructuredLogger writing to a CollectingSink."""
    logger = StructuredLogger(sinks=[collecting_sink])
    yield logger
    logger.close()


@pytest.fixture
def crash_reporter() -> RecordingCrashReporter:
    return RecordingCrashReporter()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
