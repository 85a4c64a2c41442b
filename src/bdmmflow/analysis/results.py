"""
Result objects for likelihood evaluations.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

try:
    import pandas as pd
    PANDAS_AVAILABLE = True
except ImportError:
    PANDAS_AVAILABLE = False


@dataclass
class NodeRecord:
    """
    Partial likelihood of one node, as left by the traversal.

    ``likelihoods * exp(log_scale)`` is the unscaled partial likelihood.
    """

    node_id: int
    name: Optional[str]
    time: float
    likelihoods: np.ndarray
    log_scale: float

    @property
    def unscaled(self) -> np.ndarray:
        return self.likelihoods * np.exp(self.log_scale)


@dataclass
class LikelihoodResult:
    """
    Outcome of one tree likelihood evaluation.

    Attributes
    ----------
    log_likelihood : float
        Log-likelihood of the tree, ``-inf`` for a singular flow
    engine : str
        ``"inverse-flow"``, ``"direct-flow"`` or ``"classic"``
    conditioning : str
        Conditioning mode used
    n_types : int
        Number of types
    n_intervals : int
        Number of integration sub-intervals
    root_likelihoods : list[float]
        Scaled per-type partial likelihood at the origin
    root_log_scale : float
        Log of the scale removed from ``root_likelihoods``
    weighted_root_likelihood : float
        Frequency-weighted sum of ``root_likelihoods``
    conditioning_density : float
        Probability of the conditioning event
    singular : bool
        Whether a singular flow matrix cut the evaluation short
    flow_reset : bool, optional
        Whether flow integration restarted on every sub-interval
    node_records : list[NodeRecord]
        Per-node partial likelihoods, when recorded
    """

    log_likelihood: float
    engine: str
    conditioning: str
    n_types: int
    n_intervals: int
    root_likelihoods: List[float] = field(default_factory=list)
    root_log_scale: float = 0.0
    weighted_root_likelihood: float = math.nan
    conditioning_density: float = math.nan
    singular: bool = False
    flow_reset: Optional[bool] = None
    node_records: List[NodeRecord] = field(default_factory=list)

    @property
    def likelihood(self) -> float:
        """Likelihood on the natural scale (may underflow to 0)."""
        return math.exp(self.log_likelihood)

    def summary(self) -> str:
        """
        Generate a formatted summary of the evaluation.

        Returns
        -------
        str
            Multi-line formatted summary
        """
        lines = []
        lines.append("=" * 80)
        lines.append("Multi-type Birth-Death Tree Likelihood")
        lines.append("=" * 80)
        lines.append("")
        lines.append(f"Engine:        {self.engine}")
        lines.append(f"Conditioning:  {self.conditioning}")
        lines.append(f"Types:         {self.n_types}")
        lines.append(f"Sub-intervals: {self.n_intervals}")
        if self.flow_reset is not None:
            lines.append(f"Flow reset:    {'yes' if self.flow_reset else 'no'}")
        lines.append("")

        if self.singular:
            lines.append("WARNING: flow matrix was singular; likelihood set to zero")
            lines.append("")

        lines.append(f"Log-likelihood: {self.log_likelihood:.6f}")
        if self.root_likelihoods:
            lines.append(f"  Root partials (scaled): "
                         + ", ".join(f"{v:.6g}" for v in self.root_likelihoods))
            lines.append(f"  Root log scale:         {self.root_log_scale:.6f}")
            lines.append(f"  Conditioning density:   {self.conditioning_density:.6g}")
        lines.append("")
        lines.append("=" * 80)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export results as a dictionary (node records excluded).

        Returns
        -------
        dict
            Dictionary containing the evaluation summary
        """
        return {
            'log_likelihood': self.log_likelihood,
            'engine': self.engine,
            'conditioning': self.conditioning,
            'n_types': self.n_types,
            'n_intervals': self.n_intervals,
            'root_likelihoods': list(self.root_likelihoods),
            'root_log_scale': self.root_log_scale,
            'weighted_root_likelihood': self.weighted_root_likelihood,
            'conditioning_density': self.conditioning_density,
            'singular': self.singular,
            'flow_reset': self.flow_reset,
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export results as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing

        Returns
        -------
        str
            JSON string representation
        """
        json_str = json.dumps(self.to_dict(), indent=indent)

        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)

        return json_str

    def node_table(self) -> 'pd.DataFrame':
        """
        Per-node partial likelihoods as a DataFrame.

        Columns are ``node_id``, ``name``, ``time``, ``log_scale`` and one
        ``L<i>`` column of scaled likelihood per type.

        Raises
        ------
        ImportError
            If pandas is not installed
        ValueError
            If the evaluation did not record nodes
        """
        if not PANDAS_AVAILABLE:
            raise ImportError(
                "pandas is required for node_table(). "
                "Install with: pip install pandas"
            )
        if not self.node_records:
            raise ValueError("No node records; evaluate with record_nodes=True")

        rows = []
        for record in self.node_records:
            row = {
                'node_id': record.node_id,
                'name': record.name,
                'time': record.time,
                'log_scale': record.log_scale,
            }
            for i, value in enumerate(record.likelihoods):
                row[f'L{i}'] = value
            rows.append(row)
        return pd.DataFrame(rows)

    def __str__(self) -> str:
        return self.summary()


def compare_results(results: List[LikelihoodResult]) -> str:
    """
    Compare evaluations of the same tree side by side.

    Parameters
    ----------
    results : list of LikelihoodResult
        Results to compare; the first one is the baseline

    Returns
    -------
    str
        Formatted table with the difference to the baseline
    """
    if not results:
        return ""

    baseline = results[0].log_likelihood
    lines = [f"{'Engine':<16} {'Intervals':>10} {'lnL':>18} {'Diff':>14}", "-" * 61]
    for result in results:
        if math.isfinite(result.log_likelihood) and math.isfinite(baseline):
            diff = f"{result.log_likelihood - baseline:14.3e}"
        else:
            diff = f"{'n/a':>14}"
        lines.append(
            f"{result.engine:<16} {result.n_intervals:>10d} "
            f"{result.log_likelihood:>18.8f} {diff}"
        )
    return "\n".join(lines)
