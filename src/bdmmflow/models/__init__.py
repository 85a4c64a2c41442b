"""
Rate parameterizations of the multi-type birth-death-migration process.
"""

from bdmmflow.models.parameterization import Parameterization

__all__ = ["Parameterization"]
