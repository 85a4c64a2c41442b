"""
Per-type extinction probabilities.

``p_i(t)`` is the probability that a lineage of type ``i`` alive at time
``t`` leaves no sampled descendants. It solves a nonlinear ODE integrated
once, backward from the end of the process.
"""

from typing import Optional, Sequence

import numpy as np

from .integrator import IntervalODESystem, IntervalSolution, solution_end_times
from .intervals import Interval, find_interval, get_intervals


class ExtinctionODESystem(IntervalODESystem):
    """
    Extinction probability ODE.

    For each type ``i``, with the rates of the current interval::

        dp_i/dt = (b_i + d_i + s_i) p_i - b_i p_i^2 - d_i
                  + sum_j b_ij (p_i - p_i p_j) + m_ij (p_i - p_j)

    A rho-sampling event at the end of interval ``k`` multiplies ``p`` by
    ``1 - rho[k]``.
    """

    def compute_derivatives(self, t: float, y: np.ndarray) -> np.ndarray:
        k = self.current_parameterization_index
        param = self.parameterization
        b = param.birth_rates[k]
        d = param.death_rates[k]
        s = param.sampling_rates[k]
        cross = param.cross_birth_rates[k]
        migration = param.migration_rates[k]

        return (
            (b + d + s) * y - b * y * y - d
            + cross.sum(axis=1) * y - y * (cross @ y)
            + migration.sum(axis=1) * y - migration @ y
        )

    def on_parameterization_boundary(self, t, old_index, new_index, state):
        rho = self.parameterization.rho_values[min(old_index, new_index)]
        return state * (1.0 - rho)

    def initial_state(self) -> np.ndarray:
        """Extinction probability at the end of the process."""
        return 1.0 - self.parameterization.rho_values[-1]

    def integrate(self, intervals: Optional[Sequence[Interval]] = None) -> "ExtinctionProbabilities":
        """Integrate over the parameterization intervals and wrap the result."""
        if intervals is None:
            intervals = get_intervals(self.parameterization.interval_end_times,
                                      self.parameterization.process_length)
        solutions = self.integrate_backward(self.initial_state(), intervals)
        return ExtinctionProbabilities(solutions)


class ExtinctionProbabilities:
    """
    Continuous extinction probabilities over the whole process.

    Parameters
    ----------
    solutions : list[IntervalSolution]
        Chronological per-interval solutions of :class:`ExtinctionODESystem`
    """

    def __init__(self, solutions: Sequence[IntervalSolution]):
        self.solutions = list(solutions)
        self._end_times = solution_end_times(self.solutions)
        self._by_parameterization = {}
        for pos, sol in enumerate(self.solutions):
            self._by_parameterization.setdefault(sol.interval.parameterization_index, []).append(pos)

    @property
    def n_types(self) -> int:
        return len(self.solutions[0].state_at_end)

    def get_probability(self, t: float, interval: Optional[int] = None) -> np.ndarray:
        """
        Extinction probabilities of all types at time ``t``.

        Parameters
        ----------
        t : float
            Process time; out-of-range values clamp
        interval : int, optional
            Parameterization interval to evaluate on. Selects the side of a
            rho-sampling jump when ``t`` lies on a boundary.
        """
        if interval is None:
            return self.solutions[find_interval(self._end_times, t)](t)

        candidates = self._by_parameterization.get(interval)
        if candidates is None:
            raise IndexError(f"No extinction solution for parameterization interval {interval}")
        if len(candidates) == 1:
            return self.solutions[candidates[0]](t)
        ends = self._end_times[candidates]
        return self.solutions[candidates[find_interval(ends, t)]](t)

    def __call__(self, t: float) -> np.ndarray:
        return self.get_probability(t)
