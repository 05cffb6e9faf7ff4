"""
accounting/__init__.py

Public API for the accounting sub-package.
"""

from .client import AccountingClient, BaseFetcher, FetchError
from .parser import parse_document, parse_line

__all__ = [
    "AccountingClient",
    "BaseFetcher",
    "FetchError",
    "parse_document",
    "parse_line",
]
