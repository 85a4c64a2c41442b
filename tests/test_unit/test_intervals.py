"""
Unit tests for sub-interval construction.
"""

import numpy as np
import pytest

from bdmmflow.core.errors import ConfigurationError
from bdmmflow.core.intervals import Interval, find_interval, get_intervals
from bdmmflow.models.parameterization import Parameterization


def as_tuples(intervals):
    return [(i.index, i.parameterization_index, i.start, i.end) for i in intervals]


class TestGetIntervals:
    """Test splitting of the process into sub-intervals."""

    def test_only_rate_changes(self):
        """A large maximum size leaves exactly the parameterization intervals."""
        intervals = get_intervals([1.0, 3.0, 7.0, 9.0, 10.0], 10.0)
        assert as_tuples(intervals) == [
            (0, 0, 0.0, 1.0),
            (1, 1, 1.0, 3.0),
            (2, 2, 3.0, 7.0),
            (3, 3, 7.0, 9.0),
            (4, 4, 9.0, 10.0),
        ]

    def test_only_size_limit(self):
        """Without rate changes the process is cut into equal pieces."""
        intervals = get_intervals([10.0], 2.0)
        assert as_tuples(intervals) == [
            (0, 0, 0.0, 2.0),
            (1, 0, 2.0, 4.0),
            (2, 0, 4.0, 6.0),
            (3, 0, 6.0, 8.0),
            (4, 0, 8.0, 10.0),
        ]

    def test_rate_changes_and_size_limit(self):
        """Both criteria apply at once."""
        intervals = get_intervals([1.0, 3.0, 7.0, 9.0, 10.0], 2.0)
        assert as_tuples(intervals) == [
            (0, 0, 0.0, 1.0),
            (1, 1, 1.0, 3.0),
            (2, 2, 3.0, 5.0),
            (3, 2, 5.0, 7.0),
            (4, 3, 7.0, 9.0),
            (5, 4, 9.0, 10.0),
        ]

    def test_accepts_parameterization(self):
        param = Parameterization.from_skyline(
            10.0, 1.0, 0.5, 0.1, change_times=[1.0, 3.0, 7.0, 9.0], n_types=1
        )
        assert as_tuples(get_intervals(param, 2.0)) == as_tuples(
            get_intervals([1.0, 3.0, 7.0, 9.0, 10.0], 2.0)
        )

    def test_round_off_does_not_create_slivers(self):
        """A boundary just past a regular cut replaces the cut."""
        intervals = get_intervals([0.3, 0.6 + 1e-12], 0.3)
        assert len(intervals) == 2
        assert intervals[-1].end == 0.6 + 1e-12

    @pytest.mark.parametrize("ends,size", [
        ([10.0], 0.7),
        ([0.5, 2.25, 3.0, 7.9, 8.0], 1.1),
        ([1e-3, 1.0], 0.25),
        ([2.0, 4.0, 6.0], 2.0),
    ])
    def test_partition_properties(self, ends, size):
        """Sub-intervals partition [0, T], respect the size limit and every boundary."""
        intervals = get_intervals(ends, size)

        assert intervals[0].start == 0.0
        assert intervals[-1].end == ends[-1]
        for previous, current in zip(intervals, intervals[1:]):
            assert previous.end == current.start
            assert current.parameterization_index >= previous.parameterization_index
        for interval in intervals:
            assert interval.length > 0
            assert interval.length <= size + 1e-10
            assert interval.end <= ends[interval.parameterization_index]
        edges = {i.end for i in intervals}
        assert set(ends) <= edges
        assert [i.index for i in intervals] == list(range(len(intervals)))
        assert len(intervals) >= int(np.ceil(ends[-1] / size - 1e-9))

    def test_invalid_size(self):
        with pytest.raises(ConfigurationError):
            get_intervals([1.0], 0.0)
        with pytest.raises(ConfigurationError):
            get_intervals([1.0], -1.0)

    def test_invalid_boundaries(self):
        with pytest.raises(ConfigurationError):
            get_intervals([2.0, 1.0], 1.0)
        with pytest.raises(ConfigurationError):
            get_intervals([], 1.0)


class TestFindInterval:
    """Test interval lookup with clamping."""

    ends = np.array([1.0, 3.0, 5.0])

    def test_interior(self):
        assert find_interval(self.ends, 0.5) == 0
        assert find_interval(self.ends, 2.0) == 1
        assert find_interval(self.ends, 4.9) == 2

    def test_shared_edge(self):
        """Edges belong to the earlier interval unless the later one is preferred."""
        assert find_interval(self.ends, 3.0) == 1
        assert find_interval(self.ends, 3.0, prefer_later=True) == 2

    def test_clamping(self):
        assert find_interval(self.ends, -0.1) == 0
        assert find_interval(self.ends, 7.0) == 2
        assert find_interval(self.ends, 5.0, prefer_later=True) == 2

    def test_interval_contains(self):
        interval = Interval(0, 0, 1.0, 2.0)
        assert interval.contains(1.0)
        assert interval.contains(2.0)
        assert not interval.contains(2.5)
        assert interval.length == 1.0
