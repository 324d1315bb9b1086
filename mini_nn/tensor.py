"""
Tensor value type: a Shape plus a flat float64 buffer.
Every operation returns a new Tensor with its own buffer; only `set` mutates.
"""
import numbers

import numpy as np

from .errors import RankError, ShapeError
from .shape import Shape, as_shape


class Tensor:
    """
    Stores a flat buffer of float64 values laid out by a Shape.
    The first axis varies fastest in the flat buffer.

    Args:
        shape: Shape (or tuple/list/int) of the tensor
        data: Optional flat values; zeros when omitted
    """

    __slots__ = ('_shape', '_data')

    def __init__(self, shape, data=None):
        self._shape = as_shape(shape)
        count = self._shape.element_count()
        if data is None:
            self._data = np.zeros(count, dtype=np.float64)
        else:
            data = np.array(data, dtype=np.float64).reshape(-1)
            if data.size != count:
                raise ShapeError(f"expected {count} values for shape {self._shape.dims}, got {data.size}")
            self._data = data

    @classmethod
    def _wrap(cls, shape, data):
        # takes ownership of `data` without copying
        out = cls.__new__(cls)
        out._shape = shape
        out._data = data
        return out

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zeros(cls, shape):
        """Tensor of the given shape filled with zeros."""
        return cls(shape)

    @classmethod
    def full(cls, shape, value):
        """Tensor of the given shape filled with a constant."""
        shape = as_shape(shape)
        return cls._wrap(shape, np.full(shape.element_count(), float(value), dtype=np.float64))

    @classmethod
    def from_values(cls, shape, values):
        """Tensor built from flat values; their count must match the shape."""
        return cls(shape, values)

    @classmethod
    def from_numpy(cls, array):
        """
        Tensor built from an n-dimensional array.
        array[i0, i1, ...] becomes tensor.get((i0, i1, ...)).
        """
        array = np.asarray(array, dtype=np.float64)
        return cls._wrap(Shape(array.shape), array.flatten(order='F'))

    @classmethod
    def uniform(cls, shape, low=0.0, high=1.0, rng=None):
        """Tensor with values drawn uniformly from [low, high)."""
        shape = as_shape(shape)
        rng = rng if rng is not None else np.random.default_rng()
        return cls._wrap(shape, rng.uniform(low, high, size=shape.element_count()).astype(np.float64))

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def shape(self):
        return self._shape

    @property
    def size(self):
        """Total number of elements."""
        return self._data.size

    def rank(self):
        """Number of dimensions."""
        return self._shape.rank()

    def get(self, coords):
        return float(self._data[self._shape.raw_index(coords)])

    def set(self, value, coords):
        """Write a single value in place."""
        self._data[self._shape.raw_index(coords)] = value

    def clone(self):
        return Tensor._wrap(self._shape, self._data.copy())

    def flat(self):
        """Copy of the flat buffer as a 1-D numpy array."""
        return self._data.copy()

    def tolist(self):
        """Flat values as a list of floats."""
        return self._data.tolist()

    def numpy(self):
        """Copy of the data as an n-dimensional numpy array indexed like `get`."""
        return self._as_array().copy()

    def _as_array(self):
        return self._data.reshape(self._shape.dims, order='F')

    def allclose(self, other, rtol=1e-5, atol=1e-8):
        """True when shapes are equal and all values are close."""
        if isinstance(other, Tensor):
            if not self._shape.equal(other._shape):
                return False
            other = other._data
        else:
            other = np.asarray(other, dtype=np.float64).reshape(-1)
            if other.size != self._data.size:
                return False
        return bool(np.allclose(self._data, other, rtol=rtol, atol=atol))

    # ------------------------------------------------------------------
    # Elementwise operations
    # ------------------------------------------------------------------

    def map(self, f):
        """Apply a float -> float function to every element."""
        out = np.fromiter((f(float(v)) for v in self._data), dtype=np.float64, count=self._data.size)
        return Tensor._wrap(self._shape, out)

    def _binary(self, other, op, name):
        if isinstance(other, Tensor):
            if not self._shape.equal(other._shape):
                raise ShapeError(
                    f"cannot {name} tensors of shape {self._shape.dims} and {other._shape.dims}"
                )
            return Tensor._wrap(self._shape, op(self._data, other._data))
        if isinstance(other, numbers.Real):
            return Tensor._wrap(self._shape, op(self._data, float(other)))
        raise TypeError(f"unsupported operand for {name}: {type(other).__name__}")

    def add(self, other):
        """Add a scalar to every element, or a tensor of the same shape elementwise."""
        return self._binary(other, np.add, 'add')

    def sub(self, other):
        """Subtract a scalar from every element, or a tensor of the same shape elementwise."""
        return self._binary(other, np.subtract, 'sub')

    def mul(self, other):
        """Multiply every element by a scalar, or by a tensor of the same shape elementwise."""
        return self._binary(other, np.multiply, 'mul')

    def div(self, other):
        """Divide every element by a scalar, or by a tensor of the same shape elementwise."""
        return self._binary(other, np.divide, 'div')

    def masked_fill(self, mask, value):
        """Copy with `value` written wherever the flat boolean mask is True."""
        mask = np.asarray(mask, dtype=bool).reshape(-1)
        if mask.size != self._data.size:
            raise ShapeError(f"mask of {mask.size} elements does not match tensor of {self._data.size}")
        out = self._data.copy()
        out[mask] = value
        return Tensor._wrap(self._shape, out)

    def exp(self):
        """Elementwise exponential."""
        return Tensor._wrap(self._shape, np.exp(self._data))

    def log(self):
        """Elementwise natural logarithm. The caller guards the domain."""
        return Tensor._wrap(self._shape, np.log(self._data))

    def __add__(self, other):
        return self.add(other)

    def __radd__(self, other):
        return self.add(other)

    def __sub__(self, other):
        return self.sub(other)

    def __rsub__(self, other):
        return self.mul(-1.0).add(other)

    def __mul__(self, other):
        return self.mul(other)

    def __rmul__(self, other):
        return self.mul(other)

    def __truediv__(self, other):
        return self.div(other)

    def __rtruediv__(self, other):
        if not isinstance(other, numbers.Real):
            raise TypeError(f"unsupported operand for div: {type(other).__name__}")
        return Tensor._wrap(self._shape, np.divide(float(other), self._data))

    def __neg__(self):
        return self.mul(-1.0)

    # ------------------------------------------------------------------
    # Linear algebra and layout
    # ------------------------------------------------------------------

    def dot(self, other):
        """Matrix product of two rank-2 tensors."""
        if self.rank() != 2 or other.rank() != 2:
            raise RankError(f"dot requires rank-2 tensors, got ranks {self.rank()} and {other.rank()}")
        if self._shape[1] != other._shape[0]:
            raise ShapeError(f"cannot dot shapes {self._shape.dims} and {other._shape.dims}")
        return Tensor.from_numpy(self._as_array() @ other._as_array())

    def __matmul__(self, other):
        return self.dot(other)

    def transpose(self):
        """Swap the two axes of a rank-2 tensor."""
        if self.rank() != 2:
            raise RankError(f"transpose requires a rank-2 tensor, got rank {self.rank()}")
        return Tensor.from_numpy(self._as_array().T)

    @property
    def T(self):
        return self.transpose()

    def reshape(self, *shape):
        """Copy of the tensor with a new shape of the same element count."""
        if len(shape) == 1:
            shape = shape[0]
        shape = as_shape(shape)
        if shape.element_count() != self._shape.element_count():
            raise ShapeError(f"cannot reshape {self._shape.dims} into {shape.dims}")
        return Tensor._wrap(shape, self._data.copy())

    # ------------------------------------------------------------------
    # Reductions
    # ------------------------------------------------------------------

    def sum(self):
        """Sum of all elements."""
        return float(self._data.sum())

    def max(self):
        """Largest element."""
        if self._data.size == 0:
            raise ShapeError("max of an empty tensor")
        return float(self._data.max())

    def argmax(self):
        """Flat index of the first largest element."""
        if self._data.size == 0:
            raise ShapeError("argmax of an empty tensor")
        return int(np.argmax(self._data))

    def __repr__(self):
        return f"Tensor(shape={self._shape.dims}, data={self._data})"
