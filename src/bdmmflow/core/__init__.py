"""
Core algorithms for the multi-type birth-death tree likelihood.

This module provides the numerical engine:

- **Intervals**: sub-interval decomposition of the process
- **Integration**: interval-aware ODE driver on top of :func:`scipy.integrate.solve_ivp`
- **Extinction**: per-type extinction probabilities
- **Flows**: linear matrix ODEs answering per-edge propagation queries
- **Likelihood**: postorder traversal, rescaling and root assembly

These are expert-level classes typically not needed by end users.
The high-level API (:mod:`bdmmflow.api`) provides easier access.
"""

from bdmmflow.core.classic import ClassicLikelihoodCalculator
from bdmmflow.core.errors import ConfigurationError, IntegrationError, SingularFlowError
from bdmmflow.core.extinction import ExtinctionODESystem, ExtinctionProbabilities
from bdmmflow.core.flow import DirectFlow, Flow, FlowKind, InverseFlow, build_flow
from bdmmflow.core.intervals import Interval, get_intervals
from bdmmflow.core.likelihood import (
    ConditioningMode,
    LikelihoodCalculator,
    LikelihoodSettings,
)
from bdmmflow.core.matrix import BasisMode

__all__ = [
    "BasisMode",
    "ClassicLikelihoodCalculator",
    "ConditioningMode",
    "ConfigurationError",
    "DirectFlow",
    "ExtinctionODESystem",
    "ExtinctionProbabilities",
    "Flow",
    "FlowKind",
    "IntegrationError",
    "Interval",
    "InverseFlow",
    "LikelihoodCalculator",
    "LikelihoodSettings",
    "SingularFlowError",
    "build_flow",
    "get_intervals",
]
