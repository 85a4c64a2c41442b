"""
Input/Output for time-calibrated phylogenetic trees (Newick with BEAST-style metadata).
"""

from bdmmflow.io.trees import Tree, TreeNode

__all__ = ["Tree", "TreeNode"]
