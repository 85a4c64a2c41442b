"""
Pytest configuration and shared fixtures.
"""

import json
import pytest
from typer.testing import CliRunner

from bdmmflow.core.likelihood import LikelihoodSettings
from bdmmflow.io.trees import Tree
from bdmmflow.models.parameterization import Parameterization


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()


@pytest.fixture
def two_type_param():
    """Two types, one interval, no type changes."""
    return Parameterization.constant(
        3.0,
        birth_rates=[2.0, 2.0],
        death_rates=[0.5, 0.5],
        sampling_rates=[0.5, 0.5],
    )


@pytest.fixture
def migration_param():
    """Two types with migration, cross-birth and a rate change."""
    return Parameterization.from_skyline(
        3.0,
        birth_rates=[[1.5, 2.0], [2.5, 1.0]],
        death_rates=[0.4, 0.6],
        sampling_rates=[[0.5, 0.3], [0.8, 0.6]],
        removal_probs=[0.2, 0.7],
        cross_birth_rates=[[0.0, 0.3], [0.2, 0.0]],
        migration_rates=[[0.0, 0.4], [0.25, 0.0]],
        change_times=[1.3],
    )


@pytest.fixture
def rho_param():
    """Two types with rho sampling at a rate change and at the present."""
    return Parameterization.from_skyline(
        3.0,
        birth_rates=[1.8, 1.2],
        death_rates=0.3,
        sampling_rates=[0.4, 0.6],
        rho_values=[[0.3, 0.3], [0.5, 0.5]],
        migration_rates=[[0.0, 0.2], [0.3, 0.0]],
        change_times=[1.5],
    )


@pytest.fixture
def four_taxon_newick():
    """Four samples of type 0, youngest at height 0, root at height 2.1."""
    return "((A[&type=0]:1.0,B[&type=0]:0.6):0.8,(C[&type=0]:1.2,D[&type=0]:0.4):0.9);"


@pytest.fixture
def mixed_type_newick():
    """Four samples of both types."""
    return "((A[&type=0]:1.0,B[&type=1]:0.6):0.8,(C[&type=1]:1.2,D[&type=0]:0.4):0.9);"


@pytest.fixture
def rho_newick():
    """Three samples at the present and one at height 1.5."""
    return "((A[&type=0]:1.2,B[&type=1]:1.2):1.4,(C[&type=0]:2.0,D[&type=1]:0.5):0.6);"


@pytest.fixture
def sampled_ancestor_newick():
    """A sampled ancestor (zero-length leaf A) above sample B."""
    return "((A[&type=1]:0.0,B[&type=0]:1.0):1.0,(C[&type=1]:1.5,D[&type=0]:0.8):0.5);"


@pytest.fixture
def four_taxon_tree(four_taxon_newick):
    return Tree.from_newick(four_taxon_newick)


@pytest.fixture
def tight_settings():
    """Integration tolerances tight enough to compare engines closely."""
    return dict(absolute_tolerance=1e-14, relative_tolerance=1e-11)


@pytest.fixture
def tree_file(tmp_path, mixed_type_newick):
    """Temporary Newick file with a typed four-taxon tree."""
    path = tmp_path / "tree.nwk"
    path.write_text(mixed_type_newick + "\n")
    return path


@pytest.fixture
def model_file(tmp_path, migration_param):
    """Temporary model file with parameterization, frequencies and settings."""
    path = tmp_path / "model.json"
    path.write_text(json.dumps({
        "parameterization": migration_param.to_dict(),
        "frequencies": [0.6, 0.4],
        "settings": {"conditioning": "survival", "min_num_intervals": 6},
    }))
    return path


@pytest.fixture
def default_settings():
    return LikelihoodSettings()
