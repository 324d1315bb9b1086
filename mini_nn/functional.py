"""
Functional operations for mini_nn: per-sample activations and losses.
Each function takes and returns Tensors (or floats) and keeps no state.
"""
import numpy as np

from .errors import ShapeError
from .tensor import Tensor

CROSS_ENTROPY_EPS = 1e-7


# ============================================================================
# Activation Functions
# ============================================================================

def relu(x):
    """ReLU activation: max(x, 0)"""
    return Tensor.from_values(x.shape, np.maximum(x.flat(), 0.0))


def relu_mask(x):
    """Flat boolean mask of the positions ReLU sends to zero (x <= 0)"""
    return x.flat() <= 0.0


def sigmoid(x):
    """Sigmoid activation: 1 / (1 + exp(-x))"""
    data = x.flat()
    # For numerical stability: exp only ever sees non-positive arguments
    z = np.exp(-np.abs(data))
    out_data = np.where(data >= 0, 1 / (1 + z), z / (1 + z))
    return Tensor.from_values(x.shape, out_data)


def sigmoid_grad(y, dout):
    """Gradient of sigmoid given its output y: (1 - y) * y * dout"""
    return y.mul(-1.0).add(1.0).mul(y).mul(dout)


def softmax(x):
    """
    Softmax over all elements of a sample.
    Numerically stable implementation: the max is subtracted before exp.
    """
    e = x.sub(x.max()).exp()
    return e.div(e.sum())


def one_hot(index, num_classes):
    """One-hot encoded tensor of shape (num_classes,)"""
    t = Tensor.zeros((num_classes,))
    t.set(1.0, (index,))
    return t


# ============================================================================
# Loss Functions
# ============================================================================

def _check_pair(y, t):
    if not y.shape.equal(t.shape):
        raise ShapeError(f"prediction shape {y.shape.dims} does not match target shape {t.shape.dims}")


def cross_entropy(y, t, eps=CROSS_ENTROPY_EPS):
    """Cross-entropy of one sample: -sum(t * log(y + eps))"""
    _check_pair(y, t)
    return -y.add(eps).log().mul(t).sum()


def cross_entropy_grad(y, t):
    """Gradient of cross-entropy w.r.t. the prediction: -t / y"""
    _check_pair(y, t)
    return t.div(y).mul(-1.0)


def squared_error(y, t):
    """Squared error of one sample: 0.5 * sum((y - t)^2)"""
    _check_pair(y, t)
    diff = y.sub(t)
    return 0.5 * diff.mul(diff).sum()


def squared_error_grad(y, t):
    """Gradient of squared error w.r.t. the prediction: y - t"""
    _check_pair(y, t)
    return y.sub(t)
