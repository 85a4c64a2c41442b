"""
Result objects and comparison helpers.
"""

from bdmmflow.analysis.results import LikelihoodResult, NodeRecord, compare_results

__all__ = ["LikelihoodResult", "NodeRecord", "compare_results"]
