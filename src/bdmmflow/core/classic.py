"""
Reference likelihood calculator without flows.

Every edge integrates the coupled nonlinear ODE for extinction
probabilities ``p`` and likelihoods ``g`` from the young end to the old end.
This is the textbook algorithm the flow engine replaces; it is slower but
independent of the flow machinery, which makes it a useful check.
"""

import numpy as np

from .extinction import ExtinctionODESystem
from .integrator import IntervalODESystem
from .intervals import Interval, find_interval
from .likelihood import TreeLikelihood


class ClassicEdgeSystem(IntervalODESystem):
    """
    Joint ``(p, g)`` ODE along a single edge.

    ::

        dg_i/dt = (b_i + d_i + s_i - 2 b_i p_i) g_i
                  + sum_j b_ij (g_i - g_i p_j - p_i g_j) + m_ij (g_i - g_j)
    """

    def __init__(self, parameterization, **kwargs):
        super().__init__(parameterization, **kwargs)
        self.n_types = parameterization.n_types
        self._extinction = ExtinctionODESystem(parameterization, **kwargs)

    def compute_derivatives(self, t, y):
        n = self.n_types
        p, g = y[:n], y[n:]
        k = self.current_parameterization_index
        param = self.parameterization
        b = param.birth_rates[k]
        d = param.death_rates[k]
        s = param.sampling_rates[k]
        cross = param.cross_birth_rates[k]
        migration = param.migration_rates[k]

        self._extinction.current_interval = self.current_interval
        dp = self._extinction.compute_derivatives(t, p)
        dg = (
            (b + d + s - 2.0 * b * p) * g
            + cross.sum(axis=1) * g - g * (cross @ p) - p * (cross @ g)
            + migration.sum(axis=1) * g - migration @ g
        )
        return np.concatenate([dp, dg])

    def on_parameterization_boundary(self, t, old_index, new_index, state):
        rho = self.parameterization.rho_values[min(old_index, new_index)]
        return state * np.tile(1.0 - rho, 2)

    def edge_pieces(self, time_start: float, time_end: float) -> list[Interval]:
        """Split an edge at the rate changes it crosses."""
        ends = self.parameterization.interval_end_times
        k = find_interval(ends, time_start, prefer_later=True)
        pieces = []
        current = time_start
        while current < time_end and k < ends.size:
            end = min(float(ends[k]), time_end)
            if k == ends.size - 1:
                end = time_end
            pieces.append(Interval(len(pieces), k, current, end))
            current = end
            k += 1
        return pieces


class ClassicLikelihoodCalculator(TreeLikelihood):
    """
    Likelihood calculator integrating every edge separately.

    Takes the same arguments as :class:`~bdmmflow.core.likelihood.LikelihoodCalculator`;
    the flow-specific settings are ignored.
    """

    @property
    def engine(self) -> str:
        return "classic"

    def _prepare(self) -> None:
        super()._prepare()
        self.edge_system = ClassicEdgeSystem(
            self.parameterization,
            absolute_tolerance=self.settings.absolute_tolerance,
            relative_tolerance=self.settings.relative_tolerance,
            method=self.settings.method,
        )

    def propagate_edge(self, time_start, time_end, state):
        state = np.asarray(state, dtype=float)
        if time_end <= time_start:
            return state.copy()

        pieces = self.edge_system.edge_pieces(time_start, time_end)
        n = self.parameterization.n_types
        initial = np.concatenate([self.extinction.get_probability(time_end), state])
        solutions = self.edge_system.integrate_backward(initial, pieces)
        return solutions[0].state_at_start[n:]
