"""Main CLI application for bdmmflow."""

import typer
from pathlib import Path
from typing import Optional
from enum import Enum

app = typer.Typer(
    name="bdmmflow",
    help="Flow-based likelihood of multi-type birth-death-migration trees",
    no_args_is_help=True,
)


class Engine(str, Enum):
    """Likelihood engine."""
    INVERSE = "inverse"
    DIRECT = "direct"
    CLASSIC = "classic"
    ALL = "all"


class Conditioning(str, Enum):
    """Conditioning of the tree likelihood."""
    NONE = "none"
    SURVIVAL = "survival"
    ROOT = "root"


class Basis(str, Enum):
    """Initial flow basis."""
    IDENTITY = "identity"
    RANDOM = "random"
    GAUSSIAN = "gaussian"
    EXPONENTIAL = "exponential"


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"
    TSV = "tsv"


@app.command()
def loglik(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Time-calibrated tree file (Newick, types as [&type=...])",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    model: Path = typer.Option(
        ...,
        "--model", "-m",
        help="Model file (JSON parameterization, frequencies and settings)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    engine: Engine = typer.Option(
        Engine.INVERSE,
        "--engine", "-e",
        help="Likelihood engine; 'all' compares every engine",
    ),
    conditioning: Optional[Conditioning] = typer.Option(
        None,
        "--conditioning", "-c",
        help="Condition on survival, the root, or nothing (default from model file, else survival)",
    ),
    max_interval_size: Optional[float] = typer.Option(
        None,
        "--max-interval-size",
        help="Maximum integration sub-interval size",
        min=0.0,
    ),
    min_intervals: Optional[int] = typer.Option(
        None,
        "--min-intervals",
        help="Minimum number of integration sub-intervals",
        min=1,
    ),
    basis: Optional[Basis] = typer.Option(
        None,
        "--basis",
        help="Initial flow basis",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Seed for the initial flow basis",
    ),
    rtol: Optional[float] = typer.Option(
        None,
        "--rtol",
        help="Relative integration tolerance",
    ),
    atol: Optional[float] = typer.Option(
        None,
        "--atol",
        help="Absolute integration tolerance",
    ),
    type_label: str = typer.Option(
        "type",
        "--type-label",
        help="Metadata key holding node types",
    ),
    final_sample_offset: float = typer.Option(
        0.0,
        "--final-sample-offset",
        help="Time between the youngest sample and the end of the process",
        min=0.0,
    ),
    nodes: bool = typer.Option(
        False,
        "--nodes",
        help="Also report per-node partial likelihoods",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Output file (default: stdout)",
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Output format",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show integration details",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Minimal output",
    ),
):
    """
    Compute the log-likelihood of a tree.

    Example:
        bdmmflow loglik -t tree.nwk -m model.json
        bdmmflow loglik -t tree.nwk -m model.json --engine all --min-intervals 10
    """
    from .commands.loglik import run_loglik

    run_loglik(
        tree=tree,
        model=model,
        engine=engine.value,
        conditioning=conditioning.value if conditioning else None,
        max_interval_size=max_interval_size,
        min_intervals=min_intervals,
        basis=basis.value if basis else None,
        seed=seed,
        rtol=rtol,
        atol=atol,
        type_label=type_label,
        final_sample_offset=final_sample_offset,
        nodes=nodes,
        output=output,
        format=format.value,
        verbose=verbose,
        quiet=quiet,
    )


@app.command()
def intervals(
    model: Path = typer.Option(
        ...,
        "--model", "-m",
        help="Model file (JSON)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    max_interval_size: Optional[float] = typer.Option(
        None,
        "--max-interval-size",
        help="Maximum integration sub-interval size",
        min=0.0,
    ),
    min_intervals: Optional[int] = typer.Option(
        None,
        "--min-intervals",
        help="Minimum number of integration sub-intervals",
        min=1,
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Output format",
    ),
):
    """
    Show how the process is split into integration sub-intervals.

    Example:
        bdmmflow intervals -m model.json --max-interval-size 0.5
    """
    from .commands.intervals import run_intervals

    run_intervals(
        model=model,
        max_interval_size=max_interval_size,
        min_intervals=min_intervals,
        format=format.value,
    )


if __name__ == "__main__":
    app()
