"""
Interval-aware ODE integration.

An :class:`IntervalODESystem` integrates a derivative function across an
ordered list of sub-intervals with :func:`scipy.integrate.solve_ivp`,
keeping one dense-output interpolant per sub-interval. Crossing from one
parameterization interval into another triggers a boundary hook that can
apply discrete jumps to the state (rho sampling).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
from scipy.integrate import solve_ivp

from .errors import IntegrationError
from .intervals import Interval, find_interval

logger = logging.getLogger(__name__)


@dataclass
class IntervalSolution:
    """
    Dense solution of an ODE across one sub-interval.

    Attributes
    ----------
    interval : Interval
        Sub-interval the solution covers
    solution : scipy.integrate.OdeSolution
        Continuous interpolant returned by ``solve_ivp``
    n_evaluations : int
        Number of derivative evaluations used
    """

    interval: Interval
    solution: object
    n_evaluations: int = 0

    def __call__(self, t: float) -> np.ndarray:
        """State at ``t``, clamped to the sub-interval."""
        t = min(max(t, self.interval.start), self.interval.end)
        return self.solution(t)

    @property
    def state_at_start(self) -> np.ndarray:
        return self(self.interval.start)

    @property
    def state_at_end(self) -> np.ndarray:
        return self(self.interval.end)


class IntervalODESystem(ABC):
    """
    Base class for ODEs with piecewise-constant coefficients.

    Subclasses implement :meth:`compute_derivatives`, reading the rates of
    ``self.current_interval``, and optionally override
    :meth:`on_parameterization_boundary`.

    Parameters
    ----------
    parameterization : Parameterization
        Piecewise-constant rates
    absolute_tolerance, relative_tolerance : float
        Error control of the embedded Runge-Kutta stepper
    method : str
        Integrator passed to :func:`scipy.integrate.solve_ivp`
    """

    def __init__(self, parameterization, absolute_tolerance: float = 1e-100,
                 relative_tolerance: float = 1e-7, method: str = "RK45"):
        self.parameterization = parameterization
        self.absolute_tolerance = absolute_tolerance
        self.relative_tolerance = relative_tolerance
        self.method = method
        self.max_step = parameterization.process_length / 20
        self.current_interval: Optional[Interval] = None
        self.n_evaluations = 0

    @property
    def current_parameterization_index(self) -> int:
        return self.current_interval.parameterization_index

    @abstractmethod
    def compute_derivatives(self, t: float, y: np.ndarray) -> np.ndarray:
        """Derivative of the state at time ``t`` within ``self.current_interval``."""

    def on_parameterization_boundary(self, t: float, old_index: int, new_index: int,
                                     state: np.ndarray) -> np.ndarray:
        """
        Apply a discrete jump when integration crosses into another
        parameterization interval. The default leaves the state unchanged.
        """
        return state

    def _rhs(self, t, y):
        self.n_evaluations += 1
        return self.compute_derivatives(t, y)

    def _solve(self, interval: Interval, t_from: float, t_to: float,
               state: np.ndarray) -> IntervalSolution:
        self.current_interval = interval
        before = self.n_evaluations
        sol = solve_ivp(
            self._rhs,
            (t_from, t_to),
            state,
            method=self.method,
            dense_output=True,
            rtol=self.relative_tolerance,
            atol=self.absolute_tolerance,
            max_step=self.max_step,
        )
        if not sol.success:
            raise IntegrationError(
                f"Integration failed on [{interval.start:g}, {interval.end:g}]: {sol.message}"
            )
        return IntervalSolution(interval, sol.sol, self.n_evaluations - before)

    def integrate_backward(self, initial_state: np.ndarray, intervals: Sequence[Interval],
                           reset_at_boundaries: bool = False) -> list[IntervalSolution]:
        """
        Integrate from the end of the last interval back to the start of the first.

        Parameters
        ----------
        initial_state : ndarray
            State at the end of the last interval
        intervals : sequence of Interval
            Chronologically ordered sub-intervals
        reset_at_boundaries : bool
            Restart every sub-interval from ``initial_state`` instead of the
            state carried over from the previous one. The boundary hook still
            applies to the restarted state.

        Returns
        -------
        list[IntervalSolution]
            One solution per sub-interval, in chronological order
        """
        initial_state = np.array(initial_state, dtype=float)
        solutions = [None] * len(intervals)
        state = initial_state.copy()
        for pos in range(len(intervals) - 1, -1, -1):
            interval = intervals[pos]
            if pos < len(intervals) - 1:
                if reset_at_boundaries:
                    state = initial_state.copy()
                later = intervals[pos + 1]
                if later.parameterization_index != interval.parameterization_index:
                    state = self.on_parameterization_boundary(
                        interval.end, later.parameterization_index,
                        interval.parameterization_index, state,
                    )
            result = self._solve(interval, interval.end, interval.start, state)
            solutions[pos] = result
            state = result.state_at_start
        logger.debug("%s: backward over %d sub-intervals, %d evaluations",
                     type(self).__name__, len(intervals), self.n_evaluations)
        return solutions

    def integrate_forward(self, initial_state: np.ndarray, intervals: Sequence[Interval],
                          reset_at_boundaries: bool = False) -> list[IntervalSolution]:
        """
        Integrate from the start of the first interval to the end of the last.

        Mirror image of :meth:`integrate_backward`; see there for parameters.
        """
        initial_state = np.array(initial_state, dtype=float)
        solutions = []
        state = initial_state.copy()
        for pos, interval in enumerate(intervals):
            if pos > 0:
                if reset_at_boundaries:
                    state = initial_state.copy()
                earlier = intervals[pos - 1]
                if earlier.parameterization_index != interval.parameterization_index:
                    state = self.on_parameterization_boundary(
                        interval.start, earlier.parameterization_index,
                        interval.parameterization_index, state,
                    )
            result = self._solve(interval, interval.start, interval.end, state)
            solutions.append(result)
            state = result.state_at_end
        logger.debug("%s: forward over %d sub-intervals, %d evaluations",
                     type(self).__name__, len(intervals), self.n_evaluations)
        return solutions


def solution_end_times(solutions: Sequence[IntervalSolution]) -> np.ndarray:
    return np.array([s.interval.end for s in solutions])


def evaluate_solutions(solutions: Sequence[IntervalSolution], t: float,
                       index: Optional[int] = None) -> np.ndarray:
    """Evaluate a chronological list of solutions at ``t``, or on sub-interval ``index``."""
    if index is None:
        index = find_interval(solution_end_times(solutions), t)
    return solutions[index](t)
