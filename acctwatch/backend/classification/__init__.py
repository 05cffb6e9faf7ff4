"""classification/__init__.py"""
from .subnets import SubnetConfigError, SubnetSet, parse_subnet

__all__ = ["SubnetConfigError", "SubnetSet", "parse_subnet"]
