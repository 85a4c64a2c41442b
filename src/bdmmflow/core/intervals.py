"""
Sub-interval decomposition of the process time span.
"""

import logging
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_BOUNDARY_PRECISION = 1e-10


@dataclass(frozen=True)
class Interval:
    """
    One integration sub-interval.

    Attributes
    ----------
    index : int
        Position in the chronological list of sub-intervals
    parameterization_index : int
        Parameterization interval this sub-interval lies in
    start, end : float
        Time span, ``start < end``
    """

    index: int
    parameterization_index: int
    start: float
    end: float

    @property
    def length(self) -> float:
        return self.end - self.start

    def contains(self, t: float) -> bool:
        return self.start <= t <= self.end


def get_intervals(
    boundaries: Union[Sequence[float], np.ndarray],
    max_interval_size: float,
    precision: float = DEFAULT_BOUNDARY_PRECISION,
) -> list[Interval]:
    """
    Split ``[0, T]`` into sub-intervals no longer than ``max_interval_size``.

    Every parameterization boundary becomes a sub-interval edge, and no
    sub-interval straddles one. A boundary within ``precision`` of the next
    regular cut replaces that cut, so round-off never produces a sliver.

    Parameters
    ----------
    boundaries : sequence of float or Parameterization
        Ascending parameterization interval end times; the last one is the
        process length ``T``. A parameterization supplies its
        ``interval_end_times``.
    max_interval_size : float
        Maximum sub-interval length
    precision : float
        Tolerance for treating a cut as coinciding with a boundary

    Returns
    -------
    list[Interval]
        Chronologically ordered sub-intervals partitioning ``[0, T]``

    Raises
    ------
    ConfigurationError
        If ``max_interval_size`` is not positive or the boundaries are not
        strictly increasing

    Examples
    --------
    >>> [(i.parameterization_index, i.start, i.end) for i in get_intervals([1.0, 4.0], 2.0)]
    [(0, 0.0, 1.0), (1, 1.0, 3.0), (1, 3.0, 4.0)]
    """
    ends = np.asarray(getattr(boundaries, "interval_end_times", boundaries), dtype=float)
    if not max_interval_size > 0:
        raise ConfigurationError(f"max_interval_size must be positive, got {max_interval_size}")
    if ends.size == 0 or ends[0] <= 0 or np.any(np.diff(ends) <= 0):
        raise ConfigurationError("Interval end times must be positive and strictly increasing")

    intervals = []
    start = 0.0
    k = 0
    while k < ends.size:
        boundary = float(ends[k])
        cut = start + max_interval_size
        if boundary < cut or abs(boundary - cut) <= precision:
            intervals.append(Interval(len(intervals), k, start, boundary))
            start = boundary
            k += 1
        else:
            intervals.append(Interval(len(intervals), k, start, cut))
            start = cut

    logger.debug("Split [0, %g] into %d sub-intervals (max size %g, %d parameterization intervals)",
                 ends[-1], len(intervals), max_interval_size, ends.size)
    return intervals


def find_interval(end_times: np.ndarray, t: float, prefer_later: bool = False) -> int:
    """
    Locate ``t`` in a list of chronologically ordered intervals.

    Intervals are treated as ``(start, end]``; with ``prefer_later`` they are
    treated as ``[start, end)`` so that a time on a shared edge resolves to
    the later interval. Out-of-range times clamp to the first or last interval.
    """
    side = 'right' if prefer_later else 'left'
    k = int(np.searchsorted(end_times, t, side=side))
    return min(max(k, 0), len(end_times) - 1)
