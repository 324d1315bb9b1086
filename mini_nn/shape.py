"""
Shape of a tensor: an ordered sequence of positive dimension sizes.
The flat layout puts the first axis fastest, so (i0, i1, ...) in (d0, d1, ...)
maps to i0 + d0 * (i1 + d1 * (i2 + ...)).
"""
import numbers

from .errors import OutOfRangeError, RankError, ShapeError


class Shape:
    """
    Immutable sequence of dimension sizes.

    Accepts either separate sizes or a single iterable:
    Shape(28, 28) == Shape((28, 28)) == Shape([28, 28])
    """

    __slots__ = ('_dims',)

    def __init__(self, *dims):
        if len(dims) == 1 and not isinstance(dims[0], numbers.Integral):
            dims = tuple(dims[0])
        for d in dims:
            if isinstance(d, bool) or not isinstance(d, numbers.Integral):
                raise ShapeError(f"dimension must be an integer, got {d!r}")
            if d <= 0:
                raise ShapeError(f"dimension must be positive, got {d}")
        self._dims = tuple(int(d) for d in dims)

    @property
    def dims(self):
        """Dimension sizes as a tuple."""
        return self._dims

    def rank(self):
        """Number of dimensions."""
        return len(self._dims)

    def element_count(self):
        """Product of all dimensions (1 for the empty shape)."""
        count = 1
        for d in self._dims:
            count *= d
        return count

    def equal(self, other):
        """Dimension-wise comparison."""
        other = other._dims if isinstance(other, Shape) else tuple(other)
        return self._dims == other

    def raw_index(self, coords):
        """
        Flatten coordinates into an index of the raw buffer.

        Args:
            coords: Shape, tuple or list with one coordinate per dimension
        """
        coords = coords._dims if isinstance(coords, Shape) else tuple(coords)
        if len(coords) != len(self._dims):
            raise RankError(f"expected {len(self._dims)} coordinates, got {len(coords)}")

        index = 0
        stride = 1
        for axis, (c, d) in enumerate(zip(coords, self._dims)):
            if c < 0 or c >= d:
                raise OutOfRangeError(f"coordinate {c} out of range for axis {axis} of size {d}")
            index += c * stride
            stride *= d
        return index

    def clone(self):
        return Shape(self._dims)

    def __len__(self):
        return len(self._dims)

    def __iter__(self):
        return iter(self._dims)

    def __getitem__(self, idx):
        return self._dims[idx]

    def __eq__(self, other):
        if isinstance(other, (Shape, tuple, list)):
            return self.equal(other)
        return NotImplemented

    def __hash__(self):
        return hash(self._dims)

    def __repr__(self):
        return f"Shape{self._dims}"


def as_shape(shape):
    """Coerce a Shape, int, tuple or list into a Shape."""
    if isinstance(shape, Shape):
        return shape
    if isinstance(shape, numbers.Integral):
        return Shape(shape)
    return Shape(tuple(shape))
