"""Loglik command implementation."""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

from bdmmflow.analysis.results import compare_results
from bdmmflow.api import load_model
from bdmmflow.core.classic import ClassicLikelihoodCalculator
from bdmmflow.core.errors import ConfigurationError
from bdmmflow.core.likelihood import LikelihoodCalculator, LikelihoodSettings
from bdmmflow.io.trees import Tree

ENGINES = {
    "inverse": (LikelihoodCalculator, True),
    "direct": (LikelihoodCalculator, False),
    "classic": (ClassicLikelihoodCalculator, True),
}


def configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else (logging.ERROR if quiet else logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("bdmmflow").setLevel(level)


def run_loglik(
    tree: Path,
    model: Path,
    engine: str,
    conditioning: Optional[str],
    max_interval_size: Optional[float],
    min_intervals: Optional[int],
    basis: Optional[str],
    seed: Optional[int],
    rtol: Optional[float],
    atol: Optional[float],
    type_label: str,
    final_sample_offset: float,
    nodes: bool,
    output: Optional[Path],
    format: str,
    verbose: bool,
    quiet: bool,
):
    """Evaluate the tree likelihood with one engine or all of them."""
    configure_logging(verbose, quiet)

    try:
        config = load_model(model)
    except (OSError, ValueError) as e:
        print(f"Error: Could not load model from {model}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        tree_obj = Tree.from_file(tree)
    except (OSError, ValueError) as e:
        print(f"Error: Could not load tree from {tree}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    overrides = {
        'conditioning': conditioning,
        'max_interval_size': max_interval_size,
        'min_num_intervals': min_intervals,
        'initial_basis': basis,
        'seed': seed,
        'relative_tolerance': rtol,
        'absolute_tolerance': atol,
    }
    settings_dict = dict(config["settings"])
    settings_dict.update({k: v for k, v in overrides.items() if v is not None})
    settings_dict['record_nodes'] = nodes

    if not quiet:
        print(f"Tree likelihood: {engine}", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Tree:  {tree} ({tree_obj.n_leaves} samples)", file=sys.stderr)
        print(f"Model: {model}", file=sys.stderr)
        print(file=sys.stderr)

    engines = list(ENGINES) if engine == "all" else [engine]
    results = []
    try:
        for name in engines:
            calculator_class, use_inverse = ENGINES[name]
            settings = LikelihoodSettings.from_dict({**settings_dict, 'use_inverse_flow': use_inverse})
            calculator = calculator_class(
                tree_obj,
                config["parameterization"],
                config["frequencies"],
                settings,
                type_label=type_label,
                final_sample_offset=final_sample_offset,
            )
            results.append(calculator.evaluate())
    except ConfigurationError as e:
        print("Error: Invalid configuration", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    # Format output
    if format == "json":
        payload = []
        for result in results:
            entry = result.to_dict()
            if nodes:
                entry['nodes'] = json.loads(result.node_table().to_json(orient='records'))
            payload.append(entry)
        output_text = json.dumps(payload[0] if len(payload) == 1 else payload, indent=2)
    elif format == "tsv":
        header = ["engine", "conditioning", "n_intervals", "log_likelihood"]
        rows = ["\t".join(header)]
        for result in results:
            rows.append(f"{result.engine}\t{result.conditioning}\t"
                        f"{result.n_intervals}\t{result.log_likelihood:.10f}")
        if nodes:
            for result in results:
                rows.append("")
                rows.append(result.node_table().to_csv(sep="\t", index=False).rstrip("\n"))
        output_text = "\n".join(rows)
    else:  # text
        if len(results) == 1:
            output_text = results[0].summary()
        else:
            output_text = compare_results(results)
        if nodes:
            for result in results:
                output_text += f"\n\nNode partial likelihoods ({result.engine}):\n"
                output_text += result.node_table().to_string(index=False)

    # Write output
    if output:
        with open(output, 'w') as f:
            f.write(output_text)
        if not quiet:
            print(f"\nResults written to {output}", file=sys.stderr)
    else:
        print(output_text)
