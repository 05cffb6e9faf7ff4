"""
aggregation/__init__.py

Public API for the aggregation sub-package.
"""

from .aggregator import aggregate

__all__ = ["aggregate"]
