"""
Tree likelihood under the multi-type birth-death-migration process.

The traversal visits the tree in postorder, builds a per-type partial
likelihood vector at every node, and carries it up the edge above the node.
:class:`LikelihoodCalculator` carries vectors with a precomputed
:class:`~bdmmflow.core.flow.Flow`; :class:`~bdmmflow.core.classic.ClassicLikelihoodCalculator`
integrates the nonlinear ODE along every edge instead.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Optional, Sequence

import numpy as np
from scipy.special import gammaln

from ..analysis.results import LikelihoodResult, NodeRecord
from ..io.trees import Tree, TreeNode
from .errors import ConfigurationError, SingularFlowError
from .extinction import ExtinctionODESystem, ExtinctionProbabilities
from .flow import Flow, FlowKind, build_flow
from .intervals import DEFAULT_BOUNDARY_PRECISION, Interval, get_intervals
from .matrix import BasisMode, rescale

logger = logging.getLogger(__name__)

FREQUENCY_TOLERANCE = 1e-8


class ConditioningMode(str, Enum):
    """Event the tree likelihood is conditioned on."""
    NONE = "none"
    SURVIVAL = "survival"
    ROOT = "root"

    @classmethod
    def from_flags(cls, condition_on_survival: bool, condition_on_root: bool) -> "ConditioningMode":
        if condition_on_root:
            return cls.ROOT
        if condition_on_survival:
            return cls.SURVIVAL
        return cls.NONE


@dataclass
class LikelihoodSettings:
    """
    Numerical options of one likelihood evaluation.

    Attributes
    ----------
    conditioning : ConditioningMode
        Survival of the process (default), a root at the first split, or nothing
    absolute_tolerance, relative_tolerance : float
        Error control of the ODE integrator
    min_num_intervals : int
        Minimum number of sub-intervals; sets the default maximum sub-interval size
    max_interval_size : float, optional
        Explicit maximum sub-interval size, overriding ``min_num_intervals``
    use_inverse_flow : bool
        Integrate the flow forward (inverse flow) rather than backward
    initial_basis : BasisMode
        Distribution of the initial flow basis
    seed : int, optional
        Seed of the initial basis
    reset_at_boundaries : bool, optional
        Restart flow integration on every sub-interval. By default this
        happens whenever the process is split by size into more than one piece.
    boundary_precision : float
        Tolerance for a sub-interval cut coinciding with a rate change
    cache_size : int
        Capacity of the flow's memoization caches
    rescale : bool
        Normalize partial likelihoods at every node
    method : str
        Integrator passed to :func:`scipy.integrate.solve_ivp`
    record_nodes : bool
        Keep every node's partial likelihood in the result
    """

    conditioning: ConditioningMode = ConditioningMode.SURVIVAL
    absolute_tolerance: float = 1e-100
    relative_tolerance: float = 1e-7
    min_num_intervals: int = 4
    max_interval_size: Optional[float] = None
    use_inverse_flow: bool = True
    initial_basis: BasisMode = BasisMode.RANDOM
    seed: Optional[int] = 3215
    reset_at_boundaries: Optional[bool] = None
    boundary_precision: float = DEFAULT_BOUNDARY_PRECISION
    cache_size: int = 16
    rescale: bool = True
    method: str = "RK45"
    record_nodes: bool = False

    def __post_init__(self):
        try:
            self.conditioning = ConditioningMode(self.conditioning)
            self.initial_basis = BasisMode(self.initial_basis)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if self.min_num_intervals < 1:
            raise ConfigurationError(
                f"min_num_intervals must be at least 1, got {self.min_num_intervals}"
            )
        if self.max_interval_size is not None and not self.max_interval_size > 0:
            raise ConfigurationError(
                f"max_interval_size must be positive, got {self.max_interval_size}"
            )
        if not (self.absolute_tolerance > 0 and self.relative_tolerance > 0):
            raise ConfigurationError("Integration tolerances must be positive")
        if self.cache_size < 0:
            raise ConfigurationError(f"cache_size must be non-negative, got {self.cache_size}")

    @property
    def flow_kind(self) -> FlowKind:
        return FlowKind.INVERSE if self.use_inverse_flow else FlowKind.DIRECT

    def interval_size(self, process_length: float) -> float:
        if self.max_interval_size is not None:
            return self.max_interval_size
        return process_length / self.min_num_intervals

    def resets(self, process_length: float) -> bool:
        if self.reset_at_boundaries is not None:
            return self.reset_at_boundaries
        return process_length / self.interval_size(process_length) > 1.0 + self.boundary_precision

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LikelihoodSettings":
        """Build settings from a configuration mapping, rejecting unknown keys."""
        data = dict(data)
        if "condition_on_survival" in data or "condition_on_root" in data:
            if "conditioning" in data:
                raise ConfigurationError(
                    "Give either 'conditioning' or the condition_on_* flags, not both"
                )
            data["conditioning"] = ConditioningMode.from_flags(
                data.pop("condition_on_survival", True), data.pop("condition_on_root", False)
            )
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["conditioning"] = self.conditioning.value
        result["initial_basis"] = self.initial_basis.value
        return result


def validate_frequencies(frequencies: Optional[Sequence[float]], n_types: int) -> np.ndarray:
    """Check equilibrium type frequencies; ``None`` means uniform."""
    if frequencies is None:
        return np.full(n_types, 1.0 / n_types)
    freqs = np.asarray(frequencies, dtype=float).ravel()
    if freqs.shape != (n_types,):
        raise ConfigurationError(
            f"Expected {n_types} type frequencies, got {freqs.size}"
        )
    if np.any(freqs < 0) or abs(freqs.sum() - 1.0) > FREQUENCY_TOLERANCE:
        raise ConfigurationError(
            f"Type frequencies must be non-negative and sum to 1, got sum {freqs.sum():.10g}"
        )
    return freqs


class TreeLikelihood(ABC):
    """
    Postorder likelihood traversal shared by the flow and classic calculators.

    Parameters
    ----------
    tree : Tree
        Time-calibrated tree; heights are measured back from the youngest sample
    parameterization : Parameterization
        Piecewise-constant rates
    frequencies : sequence of float, optional
        Type distribution at the origin (uniform by default)
    settings : LikelihoodSettings, optional
        Numerical options
    type_label : str
        Metadata key holding each sampled node's type
    type_map : dict, optional
        Node name to type label, taking precedence over metadata
    final_sample_offset : float
        Time between the youngest sample and the end of the process
    """

    def __init__(
        self,
        tree: Tree,
        parameterization,
        frequencies: Optional[Sequence[float]] = None,
        settings: Optional[LikelihoodSettings] = None,
        type_label: str = "type",
        type_map: Optional[dict[str, Any]] = None,
        final_sample_offset: float = 0.0,
    ):
        self.tree = tree
        self.parameterization = parameterization
        self.settings = settings if settings is not None else LikelihoodSettings()
        self.frequencies = validate_frequencies(frequencies, parameterization.n_types)
        self.type_label = type_label
        self.type_map = type_map or {}
        self.final_sample_offset = final_sample_offset
        self.singular_count = 0
        self.extinction: Optional[ExtinctionProbabilities] = None
        self.last_result: Optional[LikelihoodResult] = None

        if tree.root_height + final_sample_offset > parameterization.process_length + 1e-10:
            raise ConfigurationError(
                f"Tree root at time {parameterization.process_length - tree.root_height - final_sample_offset:g} "
                f"lies before the origin of the process"
            )

    # ------------------------------------------------------------------
    # Hooks

    def _prepare(self) -> None:
        """Integrate everything the traversal needs. Runs once per evaluation."""
        self.extinction = ExtinctionODESystem(
            self.parameterization,
            absolute_tolerance=self.settings.absolute_tolerance,
            relative_tolerance=self.settings.relative_tolerance,
            method=self.settings.method,
        ).integrate()

    @abstractmethod
    def propagate_edge(self, time_start: float, time_end: float, state: np.ndarray) -> np.ndarray:
        """Carry a likelihood vector from ``time_end`` back to ``time_start``."""

    @property
    def engine(self) -> str:
        return "flow"

    @property
    def n_intervals(self) -> int:
        return self.parameterization.n_intervals

    # ------------------------------------------------------------------
    # Node helpers

    def node_time(self, node: TreeNode) -> float:
        """Process time of a node, snapped onto a rho-sampling time within tolerance."""
        t = self.parameterization.node_time(node.height, self.final_sample_offset)
        k = self.parameterization.rho_sampling_interval(t)
        if k is not None:
            return float(self.parameterization.interval_end_times[k])
        return t

    def node_type(self, node: TreeNode) -> int:
        if self.parameterization.n_types == 1:
            return 0
        if node.name is not None and node.name in self.type_map:
            label = self.type_map[node.name]
        elif self.type_label in node.metadata:
            label = node.metadata[self.type_label]
        else:
            raise ConfigurationError(
                f"Node '{node.name or node.id}' has no '{self.type_label}' annotation"
            )
        return self.parameterization.type_index(label)

    def is_rho_sampled(self, time: float) -> bool:
        return self.parameterization.rho_sampling_interval(time) is not None

    def sampling_mass(self, node: TreeNode, time: float, include_unobserved: bool = True) -> tuple[int, float]:
        """
        Type and probability mass of a sample at ``time``.

        Rho-sampled nodes carry ``rho``. Other samples carry the sampling
        rate times the probability of either removal or leaving no other
        sampled descendants; for a sampled ancestor, which does leave
        descendants, only non-removal counts.
        """
        param = self.parameterization
        i = self.node_type(node)
        k = param.interval_index(time)
        r = param.removal_probs[k, i]
        if include_unobserved:
            if self.is_rho_sampled(time):
                return i, param.rho_values[k, i]
            p = self.extinction.get_probability(time)[i]
            return i, param.sampling_rates[k, i] * (r + (1.0 - r) * p)
        if self.is_rho_sampled(time):
            return i, param.rho_values[k, i] * (1.0 - r)
        return i, param.sampling_rates[k, i] * (1.0 - r)

    def combine(self, time: float, left: np.ndarray, right: np.ndarray) -> np.ndarray:
        """Birth event joining two child lineages at ``time``."""
        param = self.parameterization
        k = param.interval_index(time)
        b = param.birth_rates[k]
        cross = param.cross_birth_rates[k]
        return b * left * right + 0.5 * (left * (cross @ right) + right * (cross @ left))

    def _rescale(self, vector: np.ndarray, log_factor: float) -> tuple[np.ndarray, float]:
        if self.settings.rescale:
            return rescale(vector, log_factor)
        return vector, log_factor

    # ------------------------------------------------------------------
    # Traversal

    def traverse(self) -> tuple[np.ndarray, float, list[NodeRecord]]:
        """
        Compute the partial likelihood at the origin.

        Returns
        -------
        root_vector : ndarray
            Scaled per-type likelihood at ``t = 0``
        log_scale : float
            Log of the scale removed from ``root_vector``
        records : list[NodeRecord]
            Per-node partial likelihoods when ``settings.record_nodes`` is set

        Raises
        ------
        ValueError
            If an internal node has neither two children nor a sampled-ancestor child
        SingularFlowError
            If a flow matrix cannot be factorized
        """
        n = self.parameterization.n_types
        carried: dict[int, tuple[np.ndarray, float]] = {}
        records: list[NodeRecord] = []

        for node in self.tree.postorder():
            if node.is_direct_ancestor:
                continue

            time = self.node_time(node)
            if node.is_leaf:
                i, mass = self.sampling_mass(node, time)
                vector = np.zeros(n)
                vector[i] = mass
                log_factor = 0.0
            elif len(node.children) != 2:
                raise ValueError(
                    f"Node {node.id} has {len(node.children)} children; only binary trees "
                    f"with sampled ancestors are supported"
                )
            elif node.direct_ancestor_child is not None:
                ancestor = node.direct_ancestor_child
                descendant = next(c for c in node.children if c is not ancestor)
                child_vector, log_factor = carried.pop(descendant.id)
                i, mass = self.sampling_mass(ancestor, time, include_unobserved=False)
                vector = np.zeros(n)
                vector[i] = mass * child_vector[i]
            else:
                left_vector, left_log = carried.pop(node.children[0].id)
                right_vector, right_log = carried.pop(node.children[1].id)
                vector = self.combine(time, left_vector, right_vector)
                log_factor = left_log + right_log

            vector, log_factor = self._rescale(vector, log_factor)
            if self.settings.record_nodes:
                records.append(NodeRecord(node.id, node.name, time, vector.copy(), log_factor))

            parent_time = 0.0 if node.parent is None else self.node_time(node.parent)
            carried[node.id] = (self.propagate_edge(parent_time, time, vector), log_factor)

        root_vector, root_log = carried.pop(self.tree.root.id)
        return root_vector, root_log, records

    def conditioning_density(self) -> float:
        """Probability of the conditioning event at the origin."""
        mode = self.settings.conditioning
        if mode == ConditioningMode.NONE:
            return 1.0
        survival = 1.0 - self.extinction.get_probability(0.0, 0)
        if mode == ConditioningMode.SURVIVAL:
            return float(self.frequencies @ survival)
        rates = self.parameterization.cross_birth_rates[0].copy()
        np.fill_diagonal(rates, self.parameterization.birth_rates[0])
        return float((self.frequencies * survival) @ rates @ survival)

    def assemble(self, root_vector: np.ndarray, root_log: float) -> tuple[float, float, float]:
        """
        Log-likelihood from the partial likelihood at the origin.

        Returns
        -------
        log_likelihood, weighted, density : float
            Final log-likelihood, frequency-weighted scaled root likelihood
            and conditioning density
        """
        weighted = float(self.frequencies @ root_vector)
        density = self.conditioning_density()
        if not (weighted > 0.0 and density > 0.0):
            return -math.inf, weighted, density

        n_leaves = self.tree.n_leaves
        n_bifurcations = n_leaves - self.tree.direct_ancestor_count - 1
        log_likelihood = (
            math.log(weighted / density) + root_log
            + math.log(2.0) * n_bifurcations - gammaln(n_leaves + 1)
        )
        return float(log_likelihood), weighted, density

    def evaluate(self) -> LikelihoodResult:
        """
        Run one complete likelihood evaluation.

        A singular flow matrix yields a log-likelihood of ``-inf``; every
        other failure propagates.
        """
        self._prepare()
        try:
            root_vector, root_log, records = self.traverse()
        except SingularFlowError as e:
            self.singular_count += 1
            logger.warning(
                "Singular flow matrix, returning -inf (%s). Consider increasing the "
                "number of sub-intervals.", e
            )
            self.last_result = LikelihoodResult(
                log_likelihood=-math.inf,
                engine=self.engine,
                conditioning=self.settings.conditioning.value,
                n_types=self.parameterization.n_types,
                n_intervals=self.n_intervals,
                singular=True,
            )
            return self.last_result

        log_likelihood, weighted, density = self.assemble(root_vector, root_log)
        self.last_result = LikelihoodResult(
            log_likelihood=log_likelihood,
            engine=self.engine,
            conditioning=self.settings.conditioning.value,
            n_types=self.parameterization.n_types,
            n_intervals=self.n_intervals,
            root_likelihoods=root_vector.tolist(),
            root_log_scale=root_log,
            weighted_root_likelihood=weighted,
            conditioning_density=density,
            node_records=records,
        )
        return self.last_result

    def compute(self) -> float:
        """Log-likelihood of the tree."""
        return self.evaluate().log_likelihood


class LikelihoodCalculator(TreeLikelihood):
    """
    Flow-based likelihood calculator.

    Each evaluation integrates the extinction ODE once, the flow ODE once,
    and then propagates every edge with a cached linear solve. A fresh flow
    (and so fresh caches) is built for every evaluation.

    Examples
    --------
    >>> tree = Tree.from_newick("((A[&type=0]:1,B[&type=1]:1):1,C[&type=0]:2);")
    >>> param = Parameterization.constant(2.5, [2.0, 2.0], 0.5, 0.5, migration_rates=0.1)
    >>> LikelihoodCalculator(tree, param).compute()  # doctest: +SKIP
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.intervals: list[Interval] = []
        self.flow: Optional[Flow] = None

    @property
    def engine(self) -> str:
        return f"{self.settings.flow_kind.value}-flow"

    @property
    def n_intervals(self) -> int:
        return len(self.intervals)

    def _prepare(self) -> None:
        super()._prepare()
        settings = self.settings
        T = self.parameterization.process_length
        self.intervals = get_intervals(
            self.parameterization.interval_end_times,
            settings.interval_size(T),
            settings.boundary_precision,
        )
        self.flow = build_flow(
            self.parameterization,
            self.extinction,
            self.intervals,
            kind=settings.flow_kind,
            basis=settings.initial_basis,
            seed=settings.seed,
            reset=settings.resets(T),
            absolute_tolerance=settings.absolute_tolerance,
            relative_tolerance=settings.relative_tolerance,
            method=settings.method,
            cache_size=settings.cache_size,
        )

    def propagate_edge(self, time_start, time_end, state):
        return self.flow.propagate(time_start, time_end, state)

    def evaluate(self) -> LikelihoodResult:
        result = super().evaluate()
        result.flow_reset = self.flow.reset
        logger.debug("Flow cache statistics: %s", self.flow.cache_stats())
        return result
