"""
Log sinks for the structured logger.
"""

from faultline.sinks.base import LogSink
from faultline.sinks.console import ConsoleSink
from faultline.sinks.remote import BatchedRemoteSink
from faultline.sinks.rotating_file import RotatingFileSink

__all__ = [
    "LogSink",
    "ConsoleSink",
    "RotatingFileSink",
    "BatchedRemoteSink",
]
