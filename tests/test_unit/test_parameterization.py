"""
Unit tests for the skyline parameterization.
"""

import json
import numpy as np
import pytest

from bdmmflow.core.errors import ConfigurationError
from bdmmflow.models.parameterization import Parameterization


class TestConstruction:
    """Test broadcasting and validation."""

    def test_scalar_rates_single_type(self):
        param = Parameterization.constant(2.0, 1.5, 0.4, 0.3)
        assert param.n_types == 1
        assert param.n_intervals == 1
        assert param.birth_rates.shape == (1, 1)
        assert param.cross_birth_rates.shape == (1, 1, 1)
        np.testing.assert_array_equal(param.rho_values, [[0.0]])

    def test_per_type_and_per_interval(self, migration_param):
        param = migration_param
        assert param.n_types == 2
        assert param.n_intervals == 2
        np.testing.assert_allclose(param.birth_rates, [[1.5, 2.0], [2.5, 1.0]])
        np.testing.assert_allclose(param.death_rates, [[0.4, 0.6], [0.4, 0.6]])
        np.testing.assert_allclose(param.migration_rates[1], [[0.0, 0.4], [0.25, 0.0]])

    def test_scalar_matrix_fills_off_diagonal(self):
        param = Parameterization.constant(1.0, [1.0, 1.0, 1.0], 0.1, 0.1, migration_rates=0.2)
        expected = np.full((3, 3), 0.2)
        np.fill_diagonal(expected, 0.0)
        np.testing.assert_allclose(param.migration_rates[0], expected)

    def test_diagonal_is_zeroed(self):
        param = Parameterization.constant(
            1.0, [1.0, 1.0], 0.1, 0.1, cross_birth_rates=[[5.0, 0.1], [0.2, 5.0]]
        )
        np.testing.assert_allclose(param.cross_birth_rates[0], [[0.0, 0.1], [0.2, 0.0]])

    def test_type_names_set_type_count(self):
        param = Parameterization.constant(1.0, 1.0, 0.1, 0.1, type_names=["north", "south"])
        assert param.n_types == 2

    def test_single_type_per_interval_column(self):
        param = Parameterization.from_skyline(
            4.0, [[1.0], [2.0]], 0.5, 0.1, change_times=[2.0]
        )
        assert param.n_types == 1
        np.testing.assert_allclose(param.birth_rates[:, 0], [1.0, 2.0])

    @pytest.mark.parametrize("kwargs,message", [
        (dict(process_length=0.0), "process_length"),
        (dict(change_times=[2.0, 1.0]), "increasing"),
        (dict(change_times=[5.0]), "inside"),
        (dict(death_rates=-0.1), "non-negative"),
        (dict(rho_values=1.5), r"\[0, 1\]"),
        (dict(birth_rates=[1.0, 2.0, 3.0], death_rates=[0.1, 0.2]), "shape"),
    ])
    def test_invalid(self, kwargs, message):
        base = dict(process_length=3.0, birth_rates=1.0, death_rates=0.5, sampling_rates=0.1)
        base.update(kwargs)
        with pytest.raises(ConfigurationError, match=message):
            Parameterization.from_skyline(**base)


class TestEpiParameterization:
    """Test conversion from epidemiological quantities."""

    def test_conversion(self):
        param = Parameterization.from_epi(
            5.0,
            R0=[2.0, 1.5],
            become_uninfectious_rates=[1.0, 2.0],
            sampling_proportions=[0.5, 0.2],
            removal_probs=[1.0, 0.5],
            R0_among_types=[[0.0, 0.3], [0.4, 0.0]],
        )
        delta = np.array([1.0, 2.0])
        s = np.array([0.5, 0.2])
        r = np.array([1.0, 0.5])
        np.testing.assert_allclose(param.birth_rates[0], [2.0, 3.0])
        np.testing.assert_allclose(param.sampling_rates[0], delta * s / (1 - (1 - r) * s))
        np.testing.assert_allclose(param.death_rates[0], delta * (1 - s) / (1 - (1 - r) * s))
        np.testing.assert_allclose(param.cross_birth_rates[0], [[0.0, 0.3], [0.8, 0.0]])

    def test_full_removal_matches_rate_split(self):
        """With removal, sampling and death split the become-uninfectious rate."""
        param = Parameterization.from_epi(4.0, R0=2.0, become_uninfectious_rates=1.5,
                                          sampling_proportions=0.3, removal_probs=1.0)
        assert param.sampling_rates[0, 0] + param.death_rates[0, 0] == pytest.approx(1.5)
        assert param.sampling_rates[0, 0] == pytest.approx(0.45)

    def test_complete_sampling_without_removal_rejected(self):
        with pytest.raises(ConfigurationError):
            Parameterization.from_epi(4.0, R0=2.0, become_uninfectious_rates=1.0,
                                      sampling_proportions=1.0, removal_probs=0.0)


class TestQueries:
    """Test interval lookup and type mapping."""

    @pytest.fixture
    def param(self):
        return Parameterization.from_skyline(
            10.0, 1.0, 0.5, 0.1, rho_values=[[0.0], [0.4], [0.0], [0.2]],
            change_times=[2.0, 5.0, 8.0], n_types=1,
        )

    def test_interval_end_times(self, param):
        np.testing.assert_allclose(param.interval_end_times, [2.0, 5.0, 8.0, 10.0])
        np.testing.assert_allclose(param.interval_start_times, [0.0, 2.0, 5.0, 8.0])

    def test_interval_index(self, param):
        """Intervals are (start, end]; out-of-range times clamp."""
        assert param.interval_index(0.0) == 0
        assert param.interval_index(2.0) == 0
        assert param.interval_index(2.0 + 1e-9) == 1
        assert param.interval_index(9.0) == 3
        assert param.interval_index(10.0) == 3
        assert param.interval_index(-1.0) == 0
        assert param.interval_index(11.0) == 3

    def test_rho_sampling_times(self, param):
        np.testing.assert_allclose(param.rho_sampling_times, [5.0, 10.0])
        assert param.rho_sampling_interval(5.0 - 1e-12) == 1
        assert param.rho_sampling_interval(2.0) is None
        assert param.rho_sampling_interval(6.0) is None

    def test_node_time(self, param):
        assert param.node_time(3.0) == pytest.approx(7.0)
        assert param.node_time(3.0, final_sample_offset=0.5) == pytest.approx(6.5)

    def test_type_index(self):
        param = Parameterization.constant(1.0, [1.0, 1.0, 1.0], 0.1, 0.1,
                                          type_names=["a", "b", "c"])
        assert param.type_index("b") == 1
        assert param.type_index("2") == 2
        assert param.type_index("1.0") == 1
        assert param.type_index(0.9999999) == 1
        with pytest.raises(ConfigurationError):
            param.type_index("d")
        with pytest.raises(ConfigurationError):
            param.type_index(3)


class TestSerialization:
    """Test dictionary and JSON round trips."""

    def test_round_trip(self, migration_param, tmp_path):
        path = tmp_path / "param.json"
        path.write_text(json.dumps(migration_param.to_dict()))
        loaded = Parameterization.from_json(path)
        for name in ("birth_rates", "death_rates", "sampling_rates", "removal_probs",
                     "rho_values", "cross_birth_rates", "migration_rates", "change_times"):
            np.testing.assert_allclose(getattr(loaded, name), getattr(migration_param, name))
        assert loaded.process_length == migration_param.process_length

    def test_epi_from_dict(self):
        param = Parameterization.from_dict({
            "kind": "epi",
            "process_length": 4.0,
            "R0": [2.0, 1.2],
            "become_uninfectious_rates": 1.0,
            "sampling_proportions": 0.1,
        })
        np.testing.assert_allclose(param.birth_rates[0], [2.0, 1.2])

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigurationError, match="birth_rate"):
            Parameterization.from_dict({"process_length": 1.0, "birth_rate": 1.0})

    def test_unknown_kind_rejected(self):
        with pytest.raises(ConfigurationError, match="kind"):
            Parameterization.from_dict({"kind": "bdsky", "process_length": 1.0})

    def test_missing_rates_rejected(self):
        with pytest.raises(ConfigurationError, match="Incomplete"):
            Parameterization.from_dict({"process_length": 1.0, "birth_rates": 1.0})
