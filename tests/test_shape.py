"""Tests for the Shape type."""
import itertools

import pytest

from mini_nn import OutOfRangeError, RankError, Shape, ShapeError


class TestConstruction:
    """Tests for building shapes."""

    def test_varargs_and_iterable_are_equivalent(self):
        assert Shape(28, 28) == Shape((28, 28)) == Shape([28, 28])

    def test_single_dimension(self):
        s = Shape(5)
        assert s.dims == (5,)
        assert s.rank() == 1

    def test_empty_shape(self):
        s = Shape()
        assert s.rank() == 0
        assert s.element_count() == 1

    @pytest.mark.parametrize("dims", [(0,), (3, -1), (2.5,)])
    def test_rejects_invalid_dimensions(self, dims):
        with pytest.raises(ShapeError):
            Shape(dims)


class TestOperations:
    """Tests for rank, element count, equality and cloning."""

    def test_element_count(self):
        assert Shape(2, 3, 4).element_count() == 24

    def test_equal(self):
        assert Shape(2, 3).equal(Shape(2, 3))
        assert not Shape(2, 3).equal(Shape(3, 2))
        assert not Shape(2, 3).equal(Shape(2, 3, 1))

    def test_compares_with_tuples(self):
        assert Shape(2, 3) == (2, 3)
        assert Shape(2, 3) != (2,)

    def test_clone_is_equal(self):
        s = Shape(4, 5)
        assert s.clone() == s

    def test_hashable(self):
        assert len({Shape(1, 2), Shape(1, 2), Shape(2, 1)}) == 2


class TestRawIndex:
    """Tests for flattening coordinates."""

    def test_first_axis_varies_fastest(self):
        s = Shape(2, 3)
        assert s.raw_index((0, 0)) == 0
        assert s.raw_index((1, 0)) == 1
        assert s.raw_index((0, 1)) == 2
        assert s.raw_index((1, 2)) == 5

    def test_accepts_shape_coordinates(self):
        assert Shape(4, 4).raw_index(Shape(3, 2)) == 3 + 4 * 2

    @pytest.mark.parametrize("dims", [(7,), (2, 3), (2, 3, 4), (3, 1, 2)])
    def test_bijection_onto_buffer(self, dims):
        s = Shape(dims)
        indices = [s.raw_index(c) for c in itertools.product(*(range(d) for d in dims))]
        assert sorted(indices) == list(range(s.element_count()))

    def test_out_of_range(self):
        with pytest.raises(OutOfRangeError):
            Shape(2, 3).raw_index((2, 0))
        with pytest.raises(OutOfRangeError):
            Shape(2, 3).raw_index((0, -1))

    def test_rank_mismatch(self):
        with pytest.raises(RankError):
            Shape(2, 3).raw_index((1,))

    def test_out_of_range_is_an_index_error(self):
        with pytest.raises(IndexError):
            Shape(1).raw_index((1,))
