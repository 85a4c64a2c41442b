"""Intervals command implementation."""

import sys
import json
from pathlib import Path
from typing import Optional

from bdmmflow.api import load_model
from bdmmflow.core.intervals import get_intervals
from bdmmflow.core.likelihood import LikelihoodSettings


def run_intervals(
    model: Path,
    max_interval_size: Optional[float],
    min_intervals: Optional[int],
    format: str,
):
    """Print the sub-interval decomposition of a model's time span."""
    try:
        config = load_model(model)
        settings_dict = dict(config["settings"])
        if max_interval_size is not None:
            settings_dict['max_interval_size'] = max_interval_size
        if min_intervals is not None:
            settings_dict['min_num_intervals'] = min_intervals
        settings = LikelihoodSettings.from_dict(settings_dict)
        param = config["parameterization"]
        pieces = get_intervals(
            param.interval_end_times,
            settings.interval_size(param.process_length),
            settings.boundary_precision,
        )
    except (OSError, ValueError) as e:
        print(f"Error: Could not build intervals from {model}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    if format == "json":
        print(json.dumps([
            {'index': i.index, 'parameterization_index': i.parameterization_index,
             'start': i.start, 'end': i.end}
            for i in pieces
        ], indent=2))
    elif format == "tsv":
        print("index\tparameterization_index\tstart\tend")
        for i in pieces:
            print(f"{i.index}\t{i.parameterization_index}\t{i.start:.10g}\t{i.end:.10g}")
    else:
        print(f"{'Index':>6} {'Param':>6} {'Start':>14} {'End':>14}")
        print("-" * 43)
        for i in pieces:
            print(f"{i.index:>6d} {i.parameterization_index:>6d} {i.start:>14.6f} {i.end:>14.6f}")
        print(f"\n{len(pieces)} sub-intervals, reset at boundaries: "
              f"{'yes' if settings.resets(param.process_length) else 'no'}")
