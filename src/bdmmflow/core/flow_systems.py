"""
Linear matrix ODEs whose fundamental solution is the likelihood flow.

Along an edge the per-type likelihood vector ``g`` obeys the linear ODE
``dg/dt = A(t) g`` once the extinction probabilities ``p(t)`` are known::

    A(t) = C_k - diag(2 b p) - diag(B p) - diag(p) B

where ``C_k`` only depends on the rates of parameterization interval ``k``::

    C_k[i, i] = b_i + d_i + s_i + sum_j (m_ij + b_ij)
    C_k[i, j] = -m_ij                                   (i != j)

Both systems integrate an ``n x n`` matrix flattened row-major.
"""

import numpy as np

from .extinction import ExtinctionProbabilities
from .integrator import IntervalODESystem
from .matrix import unflatten


class _LinearFlowSystem(IntervalODESystem):
    """Shared construction of the system matrix ``A(t)``."""

    def __init__(self, parameterization, extinction: ExtinctionProbabilities, **kwargs):
        super().__init__(parameterization, **kwargs)
        self.extinction = extinction
        self.n_types = parameterization.n_types
        self._time_invariant = {}

    def time_invariant_matrix(self, k: int) -> np.ndarray:
        """Rate part of the system matrix for parameterization interval ``k``."""
        if k not in self._time_invariant:
            param = self.parameterization
            migration = param.migration_rates[k]
            cross = param.cross_birth_rates[k]
            diagonal = (param.birth_rates[k] + param.death_rates[k] + param.sampling_rates[k]
                        + migration.sum(axis=1) + cross.sum(axis=1))
            self._time_invariant[k] = np.diag(diagonal) - migration
        return self._time_invariant[k]

    def system_matrix(self, t: float) -> np.ndarray:
        """``A(t)`` on the current interval."""
        k = self.current_parameterization_index
        param = self.parameterization
        p = self.extinction.get_probability(t, k)
        b = param.birth_rates[k]
        cross = param.cross_birth_rates[k]

        A = self.time_invariant_matrix(k).copy()
        A[np.diag_indices(self.n_types)] -= 2.0 * b * p + cross @ p
        A -= p[:, None] * cross
        return A

    def _rho_scaling(self, old_index: int, new_index: int) -> np.ndarray:
        return 1.0 - self.parameterization.rho_values[min(old_index, new_index)]


class FlowODESystem(_LinearFlowSystem):
    """
    Direct flow ``Y(t) = Phi(t, T) Y0``, with ``dY/dt = A(t) Y``.

    Integrated backward from the end of the process. A rho-sampling event
    scales the rows of ``Y``.
    """

    def compute_derivatives(self, t, y):
        Y = unflatten(y, self.n_types)
        return (self.system_matrix(t) @ Y).ravel()

    def on_parameterization_boundary(self, t, old_index, new_index, state):
        Y = unflatten(state, self.n_types) * self._rho_scaling(old_index, new_index)[:, None]
        return Y.ravel()


class InverseFlowODESystem(_LinearFlowSystem):
    """
    Inverse flow ``Z(t) = Z0 Phi(0, t)``, with ``dZ/dt = -Z A(t)``.

    Integrated forward from the origin. A rho-sampling event scales the
    columns of ``Z``.
    """

    def compute_derivatives(self, t, y):
        Z = unflatten(y, self.n_types)
        return (-(Z @ self.system_matrix(t))).ravel()

    def on_parameterization_boundary(self, t, old_index, new_index, state):
        Z = unflatten(state, self.n_types) * self._rho_scaling(old_index, new_index)[None, :]
        return Z.ravel()
