"""
Exceptions raised by the likelihood engine.
"""

import numpy as np


class ConfigurationError(ValueError):
    """Invalid model or engine configuration, detected before any integration."""


class SingularFlowError(np.linalg.LinAlgError):
    """
    A flow matrix is numerically singular.

    Raised by the linear solver behind edge propagation. The likelihood
    calculator converts it into a log-likelihood of ``-inf``; callers
    working with flows directly should expect it.
    """


class IntegrationError(RuntimeError):
    """The ODE integrator failed to advance across an interval."""
