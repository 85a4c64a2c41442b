"""
Flow query objects.

A flow wraps the per-sub-interval interpolants of a flow ODE and propagates
likelihood vectors along tree edges with one cached linear solve, in place
of integrating the nonlinear likelihood ODE per edge.

Two variants exist:

- :class:`DirectFlow` stores ``G(t) = Phi(t, T) Y0`` and propagates with
  ``g(t_s) = G(t_s) G(t_e)^{-1} g(t_e)``, factorizing ``G`` at the young end
  of each edge.
- :class:`InverseFlow` stores ``H(t) = Z0 Phi(0, t)`` and propagates with
  ``g(t_s) = H(t_s)^{-1} H(t_e) g(t_e)``, factorizing ``H`` at the old end,
  which sibling edges share.

When integration restarted from the initial basis on every sub-interval,
flows are stitched back together relative to a reference sub-interval, and
the stitching products are memoized.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from .cache import LRUCache
from .extinction import ExtinctionProbabilities
from .flow_systems import FlowODESystem, InverseFlowODESystem
from .integrator import IntervalSolution, solution_end_times
from .intervals import Interval, find_interval
from .matrix import BasisMode, flatten, initial_basis, qr_factor, qr_solve, unflatten

logger = logging.getLogger(__name__)


class FlowKind(str, Enum):
    """Direction in which the flow ODE is integrated."""
    DIRECT = "direct"
    INVERSE = "inverse"


class Flow(ABC):
    """
    Matrix field over time answering flow and propagation queries.

    Parameters
    ----------
    solutions : list[IntervalSolution]
        Chronological per-sub-interval solutions of the flow ODE
    n_types : int
        Matrix dimension
    inverse_initial_basis : ndarray, shape (n, n)
        Inverse of the basis the integration started from
    reset : bool
        Whether integration restarted from the initial basis on every
        sub-interval
    cache_size : int
        Capacity of each memoization cache
    """

    kind: FlowKind

    def __init__(self, solutions: Sequence[IntervalSolution], n_types: int,
                 inverse_initial_basis: np.ndarray, reset: bool, cache_size: int = 16):
        self.solutions = list(solutions)
        self.n_types = n_types
        self.inverse_initial_basis = np.asarray(inverse_initial_basis, dtype=float)
        self.reset = reset
        self._end_times = solution_end_times(self.solutions)
        self._compositions = LRUCache(cache_size)
        self._factorizations = LRUCache(cache_size)

    @property
    def intervals(self) -> list[Interval]:
        return [s.interval for s in self.solutions]

    def get_interval(self, t: float, prefer_later: bool = False) -> int:
        """
        Sub-interval containing ``t``, clamped to the valid range.

        A time on a shared edge belongs to the earlier sub-interval, or to
        the later one with ``prefer_later``.
        """
        return find_interval(self._end_times, t, prefer_later)

    def _raw(self, k: int, t: float) -> np.ndarray:
        return unflatten(self.solutions[k](t), self.n_types)

    def get_flow(self, t: float, reference_index: Optional[int] = None) -> np.ndarray:
        """
        Flow matrix at ``t`` expressed relative to sub-interval ``reference_index``.

        Without resets the stored interpolant is already global and is
        returned as is.
        """
        k = self.get_interval(t)
        return self._flow_on(k, t, k if reference_index is None else reference_index)

    @abstractmethod
    def _flow_on(self, k: int, t: float, reference: int) -> np.ndarray:
        """Flow at ``t`` evaluated on sub-interval ``k``."""

    @abstractmethod
    def propagate(self, time_start: float, time_end: float, state: np.ndarray) -> np.ndarray:
        """
        Carry a likelihood vector from ``time_end`` back to ``time_start``.

        Parameters
        ----------
        time_start : float
            Older end of the edge
        time_end : float
            Younger end of the edge, where ``state`` is given
        state : ndarray, shape (n,)
            Per-type likelihood at ``time_end``

        Returns
        -------
        ndarray, shape (n,)
            Per-type likelihood at ``time_start``

        Raises
        ------
        SingularFlowError
            If the flow matrix to factorize is numerically singular
        """

    def cache_stats(self) -> dict:
        return {"compositions": self._compositions.stats(),
                "factorizations": self._factorizations.stats()}


class DirectFlow(Flow):
    """Flow integrated backward from the end of the process."""

    kind = FlowKind.DIRECT

    def _composition(self, k: int, reference: int) -> np.ndarray:
        """``Y0^-1 Y_{k+1}(start) ... Y0^-1 Y_r(start)`` for ``k <= r``."""
        def compute():
            product = np.eye(self.n_types)
            for i in range(reference, k, -1):
                start = self.solutions[i].interval.start
                product = self.inverse_initial_basis @ self._raw(i, start) @ product
            return product

        return self._compositions.get_or_compute((k, reference), compute)

    def _flow_on(self, k, t, reference):
        if not self.reset or k == reference:
            return self._raw(k, t)
        if k > reference:
            raise ValueError(
                f"Direct flow on sub-interval {k} cannot be expressed relative to "
                f"the earlier sub-interval {reference}"
            )
        return self._raw(k, t) @ self._composition(k, reference)

    def propagate(self, time_start, time_end, state):
        state = np.asarray(state, dtype=float)
        if time_end <= time_start:
            return state.copy()

        reference = self.get_interval(time_end)
        k = min(self.get_interval(time_start, prefer_later=True), reference)
        factor = self._factorizations.get_or_compute(
            (time_end, reference),
            lambda: qr_factor(self._flow_on(reference, time_end, reference)),
        )
        return self._flow_on(k, time_start, reference) @ qr_solve(factor, state)


class InverseFlow(Flow):
    """Flow integrated forward from the origin of the process."""

    kind = FlowKind.INVERSE

    def _composition(self, reference: int, k: int) -> np.ndarray:
        """``Z_r(end) Z0^-1 ... Z_{k-1}(end) Z0^-1`` for ``r <= k``."""
        def compute():
            product = np.eye(self.n_types)
            for i in range(reference, k):
                end = self.solutions[i].interval.end
                product = product @ self._raw(i, end) @ self.inverse_initial_basis
            return product

        return self._compositions.get_or_compute((reference, k), compute)

    def _flow_on(self, k, t, reference):
        if not self.reset or k == reference:
            return self._raw(k, t)
        if k < reference:
            raise ValueError(
                f"Inverse flow on sub-interval {k} cannot be expressed relative to "
                f"the later sub-interval {reference}"
            )
        return self._composition(reference, k) @ self._raw(k, t)

    def propagate(self, time_start, time_end, state):
        state = np.asarray(state, dtype=float)
        if time_end <= time_start:
            return state.copy()

        reference = self.get_interval(time_start, prefer_later=True)
        k = max(self.get_interval(time_end), reference)
        factor = self._factorizations.get_or_compute(
            (time_start, reference),
            lambda: qr_factor(self._flow_on(reference, time_start, reference)),
        )
        return qr_solve(factor, self._flow_on(k, time_end, reference) @ state)


def build_flow(
    parameterization,
    extinction: ExtinctionProbabilities,
    intervals: Sequence[Interval],
    kind: FlowKind = FlowKind.INVERSE,
    basis: BasisMode = BasisMode.RANDOM,
    seed: Optional[int] = 3215,
    reset: bool = False,
    absolute_tolerance: float = 1e-100,
    relative_tolerance: float = 1e-7,
    method: str = "RK45",
    cache_size: int = 16,
) -> Flow:
    """
    Integrate the flow ODE and wrap the result in a query object.

    Parameters
    ----------
    parameterization : Parameterization
        Piecewise-constant rates
    extinction : ExtinctionProbabilities
        Precomputed extinction field
    intervals : sequence of Interval
        Sub-intervals to integrate over
    kind : FlowKind
        ``DIRECT`` integrates backward from the end of the process,
        ``INVERSE`` forward from the origin
    basis : BasisMode
        Distribution of the initial basis
    seed : int, optional
        Seed for the initial basis
    reset : bool
        Restart from the initial basis on every sub-interval

    Returns
    -------
    Flow
        :class:`DirectFlow` or :class:`InverseFlow`
    """
    kind = FlowKind(kind)
    n = parameterization.n_types
    Y0 = initial_basis(n, basis, seed)
    inverse_basis = np.linalg.inv(Y0)
    options = dict(absolute_tolerance=absolute_tolerance,
                   relative_tolerance=relative_tolerance, method=method)

    if kind == FlowKind.DIRECT:
        system = FlowODESystem(parameterization, extinction, **options)
        solutions = system.integrate_backward(flatten(Y0), intervals, reset)
        flow = DirectFlow(solutions, n, inverse_basis, reset, cache_size)
    else:
        system = InverseFlowODESystem(parameterization, extinction, **options)
        solutions = system.integrate_forward(flatten(Y0), intervals, reset)
        flow = InverseFlow(solutions, n, inverse_basis, reset, cache_size)

    logger.debug("Built %s flow: %d types, %d sub-intervals, reset=%s, %d evaluations",
                 kind.value, n, len(intervals), reset, system.n_evaluations)
    return flow
