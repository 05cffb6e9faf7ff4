"""storage/__init__.py"""
from .influx import InfluxWriteError, InfluxWriter
from .retry import RetryingSink, WriteFailure, backoff_delay

__all__ = [
    "InfluxWriteError",
    "InfluxWriter",
    "RetryingSink",
    "WriteFailure",
    "backoff_delay",
]
