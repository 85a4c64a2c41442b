"""
bdmmflow: flow-based likelihood for multi-type birth-death-migration trees.

The likelihood of a time-calibrated phylogeny under a multi-type
birth-death-migration process with piecewise-constant rates is computed by
integrating two ODEs once per evaluation (extinction probabilities and a
linear matrix flow) and propagating every edge with a cached linear solve.

Quick Start
-----------
>>> from bdmmflow import Parameterization, compute_log_likelihood
>>> param = Parameterization.constant(
...     4.0, birth_rates=[2.0, 2.0], death_rates=0.5, sampling_rates=0.5,
...     migration_rates=[[0.0, 0.1], [0.1, 0.0]])
>>> newick = "((A[&type=0]:1.5,B[&type=1]:1.5):1,(C[&type=0]:2,D[&type=1]:2):0.5);"
>>> compute_log_likelihood(newick, param, frequencies=[0.5, 0.5])

Examples
--------
>>> # Full diagnostics, direct flow instead of the inverse flow
>>> from bdmmflow import evaluate_likelihood
>>> result = evaluate_likelihood(newick, param, use_inverse_flow=False)
>>> print(result.summary())
"""

__version__ = "0.1.0"

from .api import compute_log_likelihood, evaluate_likelihood, load_model
from .analysis.results import LikelihoodResult, compare_results
from .core.classic import ClassicLikelihoodCalculator
from .core.errors import ConfigurationError, IntegrationError, SingularFlowError
from .core.likelihood import ConditioningMode, LikelihoodCalculator, LikelihoodSettings
from .core.matrix import BasisMode
from .io.trees import Tree, TreeNode
from .models.parameterization import Parameterization

__all__ = [
    "compute_log_likelihood",
    "evaluate_likelihood",
    "load_model",
    "LikelihoodResult",
    "compare_results",
    "LikelihoodCalculator",
    "ClassicLikelihoodCalculator",
    "LikelihoodSettings",
    "ConditioningMode",
    "BasisMode",
    "ConfigurationError",
    "IntegrationError",
    "SingularFlowError",
    "Tree",
    "TreeNode",
    "Parameterization",
    "__version__",
]
