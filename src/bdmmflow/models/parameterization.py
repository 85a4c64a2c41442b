"""
Piecewise-constant multi-type birth-death-migration parameterization.

Time runs forward from the origin of the process (``t = 0``) to the end of
sampling (``t = process_length``). The process is split into intervals at
``change_times``; every rate is constant within an interval. Rho-sampling
probabilities apply at the *end* of their interval.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import numpy as np

from ..core.errors import ConfigurationError

ArrayLike = Union[float, Sequence, np.ndarray]

RHO_TIME_TOLERANCE = 1e-10

_CANONICAL_KEYS = {
    "process_length", "birth_rates", "death_rates", "sampling_rates",
    "removal_probs", "rho_values", "cross_birth_rates", "migration_rates",
    "change_times", "type_names", "n_types",
}
_EPI_KEYS = {
    "process_length", "R0", "become_uninfectious_rates", "sampling_proportions",
    "removal_probs", "rho_values", "R0_among_types", "migration_rates",
    "change_times", "type_names", "n_types",
}


def _broadcast_vector(name: str, value: Optional[ArrayLike], n_intervals: int, n_types: int,
                      default: float = 0.0) -> np.ndarray:
    """Broadcast a scalar, per-type or per-interval value to shape (m, n)."""
    if value is None:
        return np.full((n_intervals, n_types), default)
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 0 or arr.shape == (n_types,):
        return np.broadcast_to(arr, (n_intervals, n_types)).copy()
    if arr.shape == (n_intervals, n_types):
        return arr.copy()
    if n_types == 1 and arr.shape == (n_intervals,):
        return arr.reshape(n_intervals, 1).copy()
    raise ConfigurationError(
        f"{name} has shape {arr.shape}; expected a scalar, ({n_types},) "
        f"or ({n_intervals}, {n_types})"
    )


def _broadcast_matrix(name: str, value: Optional[ArrayLike], n_intervals: int,
                      n_types: int) -> np.ndarray:
    """Broadcast a scalar, type-by-type or per-interval matrix to shape (m, n, n)."""
    if value is None:
        return np.zeros((n_intervals, n_types, n_types))
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 0:
        arr = np.full((n_types, n_types), float(arr))
    if arr.shape == (n_types, n_types):
        arr = np.broadcast_to(arr, (n_intervals, n_types, n_types)).copy()
    elif arr.shape != (n_intervals, n_types, n_types):
        raise ConfigurationError(
            f"{name} has shape {arr.shape}; expected a scalar, ({n_types}, {n_types}) "
            f"or ({n_intervals}, {n_types}, {n_types})"
        )
    else:
        arr = arr.copy()
    idx = np.arange(n_types)
    arr[:, idx, idx] = 0.0
    return arr


def _infer_n_types(values: Sequence[Optional[ArrayLike]]) -> int:
    """
    Guess the number of types from the rate arrays.

    Two-dimensional arrays are read as ``(..., n)``, one-dimensional arrays
    as per-type vectors. Single-type per-interval values must be passed with
    shape ``(m, 1)`` or together with ``n_types=1``.
    """
    arrays = [np.asarray(value, dtype=float) for value in values if value is not None]
    for arr in arrays:
        if arr.ndim >= 2:
            return arr.shape[-1]
    for arr in arrays:
        if arr.ndim == 1:
            return arr.shape[0]
    return 1


@dataclass
class Parameterization:
    """
    Canonical skyline parameterization of the multi-type process.

    Attributes
    ----------
    process_length : float
        Time from the origin to the end of the process
    birth_rates, death_rates, sampling_rates : ndarray, shape (m, n)
        Per-interval, per-type rates
    removal_probs : ndarray, shape (m, n)
        Probability that a sampled lineage is removed from the process
    rho_values : ndarray, shape (m, n)
        Rho-sampling probability applied at the end of each interval
    cross_birth_rates, migration_rates : ndarray, shape (m, n, n)
        Type-changing rates ``[interval, from, to]`` with zero diagonals
    change_times : ndarray, shape (m - 1,)
        Interior interval boundaries, strictly increasing in ``(0, process_length)``
    type_names : list[str], optional
        Labels used to map tree annotations to type indices
    """

    process_length: float
    birth_rates: np.ndarray
    death_rates: np.ndarray
    sampling_rates: np.ndarray
    removal_probs: np.ndarray
    rho_values: np.ndarray
    cross_birth_rates: np.ndarray
    migration_rates: np.ndarray
    change_times: np.ndarray = field(default_factory=lambda: np.zeros(0))
    type_names: Optional[list[str]] = None

    def __post_init__(self):
        self.process_length = float(self.process_length)
        if not np.isfinite(self.process_length) or self.process_length <= 0:
            raise ConfigurationError(
                f"process_length must be positive and finite, got {self.process_length}"
            )

        self.change_times = np.atleast_1d(np.asarray(self.change_times, dtype=float))
        if np.any(np.diff(self.change_times) <= 0):
            raise ConfigurationError("change_times must be strictly increasing")
        if self.change_times.size and (self.change_times[0] <= 0
                                       or self.change_times[-1] >= self.process_length):
            raise ConfigurationError(
                f"change_times must lie strictly inside (0, {self.process_length})"
            )

        m = self.n_intervals
        n = np.asarray(self.birth_rates).shape[-1] if np.ndim(self.birth_rates) == 2 else None
        if n is None:
            raise ConfigurationError("birth_rates must have shape (n_intervals, n_types)")

        for name in ("birth_rates", "death_rates", "sampling_rates", "removal_probs", "rho_values"):
            arr = np.asarray(getattr(self, name), dtype=float)
            if arr.shape != (m, n):
                raise ConfigurationError(f"{name} has shape {arr.shape}, expected ({m}, {n})")
            if not np.all(np.isfinite(arr)) or np.any(arr < 0):
                raise ConfigurationError(f"{name} must be finite and non-negative")
            setattr(self, name, arr)

        for name in ("removal_probs", "rho_values"):
            if np.any(getattr(self, name) > 1):
                raise ConfigurationError(f"{name} must lie in [0, 1]")

        for name in ("cross_birth_rates", "migration_rates"):
            arr = np.asarray(getattr(self, name), dtype=float)
            if arr.shape != (m, n, n):
                raise ConfigurationError(f"{name} has shape {arr.shape}, expected ({m}, {n}, {n})")
            if not np.all(np.isfinite(arr)) or np.any(arr < 0):
                raise ConfigurationError(f"{name} must be finite and non-negative")
            arr = arr.copy()
            arr[:, np.arange(n), np.arange(n)] = 0.0
            setattr(self, name, arr)

        if self.type_names is not None:
            self.type_names = [str(name) for name in self.type_names]
            if len(self.type_names) != n:
                raise ConfigurationError(
                    f"Expected {n} type names, got {len(self.type_names)}"
                )

    # ------------------------------------------------------------------
    # Construction

    @classmethod
    def from_skyline(
        cls,
        process_length: float,
        birth_rates: ArrayLike,
        death_rates: ArrayLike,
        sampling_rates: ArrayLike,
        removal_probs: Optional[ArrayLike] = None,
        rho_values: Optional[ArrayLike] = None,
        cross_birth_rates: Optional[ArrayLike] = None,
        migration_rates: Optional[ArrayLike] = None,
        change_times: Optional[Sequence[float]] = None,
        type_names: Optional[Sequence[str]] = None,
        n_types: Optional[int] = None,
    ) -> "Parameterization":
        """
        Build a parameterization, broadcasting scalars and per-type values.

        Each rate may be a scalar, a per-type vector, or a per-interval
        ``(m, n)`` array. Matrices may be a scalar (all off-diagonal entries),
        an ``(n, n)`` matrix or an ``(m, n, n)`` array.

        Examples
        --------
        >>> p = Parameterization.from_skyline(
        ...     5.0, birth_rates=[2.0, 2.0], death_rates=0.5, sampling_rates=0.5,
        ...     migration_rates=[[0, 0.1], [0.2, 0]])
        >>> p.n_types, p.n_intervals
        (2, 1)
        """
        change_times = np.asarray([] if change_times is None else change_times, dtype=float)
        m = change_times.size + 1
        if n_types is None:
            if type_names is not None:
                n_types = len(type_names)
            else:
                n_types = _infer_n_types(
                    [birth_rates, death_rates, sampling_rates, removal_probs, rho_values,
                     cross_birth_rates, migration_rates],
                )

        return cls(
            process_length=process_length,
            birth_rates=_broadcast_vector("birth_rates", birth_rates, m, n_types),
            death_rates=_broadcast_vector("death_rates", death_rates, m, n_types),
            sampling_rates=_broadcast_vector("sampling_rates", sampling_rates, m, n_types),
            removal_probs=_broadcast_vector("removal_probs", removal_probs, m, n_types),
            rho_values=_broadcast_vector("rho_values", rho_values, m, n_types),
            cross_birth_rates=_broadcast_matrix("cross_birth_rates", cross_birth_rates, m, n_types),
            migration_rates=_broadcast_matrix("migration_rates", migration_rates, m, n_types),
            change_times=change_times,
            type_names=None if type_names is None else list(type_names),
        )

    @classmethod
    def constant(cls, process_length: float, birth_rates: ArrayLike, death_rates: ArrayLike,
                 sampling_rates: ArrayLike, **kwargs) -> "Parameterization":
        """Single-interval parameterization."""
        if kwargs.get("change_times"):
            raise ConfigurationError("constant() does not accept change_times")
        return cls.from_skyline(process_length, birth_rates, death_rates, sampling_rates, **kwargs)

    @classmethod
    def from_epi(
        cls,
        process_length: float,
        R0: ArrayLike,
        become_uninfectious_rates: ArrayLike,
        sampling_proportions: ArrayLike,
        removal_probs: Optional[ArrayLike] = None,
        rho_values: Optional[ArrayLike] = None,
        R0_among_types: Optional[ArrayLike] = None,
        migration_rates: Optional[ArrayLike] = None,
        change_times: Optional[Sequence[float]] = None,
        type_names: Optional[Sequence[str]] = None,
        n_types: Optional[int] = None,
    ) -> "Parameterization":
        """
        Build a parameterization from epidemiological quantities.

        Parameters
        ----------
        R0 : array_like
            Within-type reproductive number
        become_uninfectious_rates : array_like
            Rate ``delta`` at which lineages stop transmitting
        sampling_proportions : array_like
            Proportion ``s`` of lineages sampled on becoming uninfectious
        removal_probs : array_like, optional
            Removal probability ``r`` upon sampling
        R0_among_types : array_like, optional
            Reproductive number for transmissions into other types

        Notes
        -----
        The canonical rates are::

            birth      = R0 * delta
            crossBirth = R0_among_types * delta
            sampling   = delta * s / (1 - (1 - r) * s)
            death      = delta * (1 - s) / (1 - (1 - r) * s)
        """
        change_times = np.asarray([] if change_times is None else change_times, dtype=float)
        m = change_times.size + 1
        if n_types is None:
            n_types = len(type_names) if type_names is not None else _infer_n_types(
                [R0, become_uninfectious_rates, sampling_proportions, removal_probs,
                 R0_among_types, migration_rates],
            )

        r0 = _broadcast_vector("R0", R0, m, n_types)
        delta = _broadcast_vector("become_uninfectious_rates", become_uninfectious_rates, m, n_types)
        s = _broadcast_vector("sampling_proportions", sampling_proportions, m, n_types)
        r = _broadcast_vector("removal_probs", removal_probs, m, n_types)
        if np.any(s < 0) or np.any(s > 1):
            raise ConfigurationError("sampling_proportions must lie in [0, 1]")

        denominator = 1.0 - (1.0 - r) * s
        if np.any(denominator <= 0):
            raise ConfigurationError(
                "sampling_proportions of 1 require a positive removal probability"
            )
        cross_r0 = _broadcast_matrix("R0_among_types", R0_among_types, m, n_types)

        return cls(
            process_length=process_length,
            birth_rates=r0 * delta,
            death_rates=delta * (1.0 - s) / denominator,
            sampling_rates=delta * s / denominator,
            removal_probs=r,
            rho_values=_broadcast_vector("rho_values", rho_values, m, n_types),
            cross_birth_rates=cross_r0 * delta[:, :, None],
            migration_rates=_broadcast_matrix("migration_rates", migration_rates, m, n_types),
            change_times=change_times,
            type_names=None if type_names is None else list(type_names),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Parameterization":
        """
        Build a parameterization from a configuration mapping.

        ``data["kind"]`` selects ``"canonical"`` (default, keyword names as in
        :meth:`from_skyline`) or ``"epi"`` (keyword names as in :meth:`from_epi`).
        """
        data = dict(data)
        kind = data.pop("kind", "canonical")
        if kind == "canonical":
            allowed, builder = _CANONICAL_KEYS, cls.from_skyline
        elif kind == "epi":
            allowed, builder = _EPI_KEYS, cls.from_epi
        else:
            raise ConfigurationError(f"Unknown parameterization kind '{kind}'")

        unknown = set(data) - allowed
        if unknown:
            raise ConfigurationError(
                f"Unknown {kind} parameterization keys: {', '.join(sorted(unknown))}"
            )
        if "process_length" not in data:
            raise ConfigurationError("Parameterization requires 'process_length'")
        try:
            return builder(**data)
        except TypeError as e:
            raise ConfigurationError(f"Incomplete {kind} parameterization: {e}") from e

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "Parameterization":
        with open(path, 'r') as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> dict[str, Any]:
        """Canonical representation, suitable for JSON."""
        return {
            "kind": "canonical",
            "process_length": self.process_length,
            "birth_rates": self.birth_rates.tolist(),
            "death_rates": self.death_rates.tolist(),
            "sampling_rates": self.sampling_rates.tolist(),
            "removal_probs": self.removal_probs.tolist(),
            "rho_values": self.rho_values.tolist(),
            "cross_birth_rates": self.cross_birth_rates.tolist(),
            "migration_rates": self.migration_rates.tolist(),
            "change_times": self.change_times.tolist(),
            "type_names": self.type_names,
        }

    # ------------------------------------------------------------------
    # Queries

    @property
    def n_types(self) -> int:
        return self.birth_rates.shape[1]

    @property
    def n_intervals(self) -> int:
        return self.change_times.size + 1

    @property
    def interval_end_times(self) -> np.ndarray:
        """End time of every interval; the last one is ``process_length``."""
        return np.append(self.change_times, self.process_length)

    @property
    def interval_start_times(self) -> np.ndarray:
        return np.insert(self.change_times, 0, 0.0)

    @property
    def rho_sampling_times(self) -> np.ndarray:
        """End times of the intervals that carry a rho-sampling event."""
        has_rho = np.any(self.rho_values > 0, axis=1)
        return self.interval_end_times[has_rho]

    def interval_index(self, t: float) -> int:
        """
        Index of the interval ``(start, end]`` containing ``t``.

        Times outside ``[0, process_length]`` clamp to the first or last interval.
        """
        k = int(np.searchsorted(self.interval_end_times, t, side='left'))
        return min(max(k, 0), self.n_intervals - 1)

    def rho_sampling_interval(self, t: float) -> Optional[int]:
        """Interval whose rho-sampling event happens at ``t``, if any."""
        for k, end in enumerate(self.interval_end_times):
            if abs(end - t) <= RHO_TIME_TOLERANCE and np.any(self.rho_values[k] > 0):
                return k
        return None

    def node_time(self, height: float, final_sample_offset: float = 0.0) -> float:
        """Convert a node height (before the youngest sample) to process time."""
        return self.process_length - height - final_sample_offset

    def type_index(self, label: Any) -> int:
        """
        Map a type annotation to a type index.

        Labels matching ``type_names`` are looked up by name; other labels are
        read as numbers and rounded to the nearest integer.
        """
        if self.type_names is not None and str(label) in self.type_names:
            return self.type_names.index(str(label))
        try:
            index = int(round(float(label)))
        except (TypeError, ValueError):
            raise ConfigurationError(f"Unknown type label '{label}'")
        if not 0 <= index < self.n_types:
            raise ConfigurationError(
                f"Type index {index} out of range for {self.n_types} types"
            )
        return index
