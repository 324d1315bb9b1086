"""
Optimizers for mini_nn.
Each optimizer instance is bound to a single parameter tensor and owns the
state that parameter needs across steps. Factories create one optimizer per
parameter when a model is built.
Includes SGD, Momentum, Adagrad, RMSProp and Adam.
"""
import numpy as np

from .errors import ShapeError
from .shape import as_shape
from .tensor import Tensor


class Optimizer:
    """
    Base class for all optimizers.

    Args:
        shape: Shape of the parameter this optimizer is bound to (optional;
            state is then allocated on the first update)
    """

    def __init__(self, shape=None):
        self.shape = as_shape(shape) if shape is not None else None

    def update(self, params, grads):
        """Return the updated parameters - to be implemented by subclasses"""
        raise NotImplementedError

    def _check(self, params, grads):
        if self.shape is None:
            self.shape = params.shape
        if not params.shape.equal(self.shape) or not grads.shape.equal(self.shape):
            raise ShapeError(
                f"optimizer bound to {self.shape.dims} got params {params.shape.dims} "
                f"and grads {grads.shape.dims}"
            )

    def _state(self):
        return Tensor.zeros(self.shape)


class SGD(Optimizer):
    """
    Stochastic Gradient Descent: params - lr * grads

    Args:
        learning_rate (or lr): Learning rate (step size)
        shape: Shape of the bound parameter
    """

    def __init__(self, learning_rate=0.01, shape=None, lr=None):
        super().__init__(shape)
        self.learning_rate = lr if lr is not None else learning_rate

    def update(self, params, grads):
        """Update parameters using SGD"""
        self._check(params, grads)
        return params.sub(grads.mul(self.learning_rate))


class Momentum(Optimizer):
    """
    SGD with momentum. The velocity persists between updates:
    v = momentum * v - lr * grads; params + v

    Args:
        learning_rate (or lr): Learning rate
        momentum: Velocity decay (default: 0.9)
        shape: Shape of the bound parameter
    """

    def __init__(self, learning_rate=0.01, momentum=0.9, shape=None, lr=None):
        super().__init__(shape)
        self.learning_rate = lr if lr is not None else learning_rate
        self.momentum = momentum
        self.velocity = self._state() if self.shape is not None else None

    def update(self, params, grads):
        """Update parameters using Momentum"""
        self._check(params, grads)
        if self.velocity is None:
            self.velocity = self._state()
        self.velocity = self.velocity.mul(self.momentum).sub(grads.mul(self.learning_rate))
        return params.add(self.velocity)


class Adagrad(Optimizer):
    """
    Adagrad (Adaptive Gradient) optimizer.
    Adapts learning rate based on cumulative sum of squared gradients.

    Args:
        learning_rate (or lr): Learning rate
        eps: Small constant for numerical stability
        shape: Shape of the bound parameter
    """

    def __init__(self, learning_rate=0.01, eps=1e-8, shape=None, lr=None):
        super().__init__(shape)
        self.learning_rate = lr if lr is not None else learning_rate
        self.eps = eps
        self.cache = None

    def update(self, params, grads):
        """Update parameters using Adagrad"""
        self._check(params, grads)
        if self.cache is None:
            self.cache = self._state()
        self.cache = self.cache.add(grads.mul(grads))
        step = grads.mul(self.learning_rate).div(self.cache.map(np.sqrt).add(self.eps))
        return params.sub(step)


class RMSProp(Optimizer):
    """
    RMSProp (Root Mean Square Propagation) optimizer.
    Uses exponential moving average of squared gradients.

    Args:
        learning_rate (or lr): Learning rate
        decay: Decay rate for moving average (default: 0.9)
        eps: Small constant for numerical stability
        shape: Shape of the bound parameter
    """

    def __init__(self, learning_rate=0.01, decay=0.9, eps=1e-8, shape=None, lr=None):
        super().__init__(shape)
        self.learning_rate = lr if lr is not None else learning_rate
        self.decay = decay
        self.eps = eps
        self.cache = None

    def update(self, params, grads):
        """Update parameters using RMSProp"""
        self._check(params, grads)
        if self.cache is None:
            self.cache = self._state()
        self.cache = self.cache.mul(self.decay).add(grads.mul(grads).mul(1 - self.decay))
        step = grads.mul(self.learning_rate).div(self.cache.map(np.sqrt).add(self.eps))
        return params.sub(step)


class Adam(Optimizer):
    """
    Adam (Adaptive Moment Estimation) optimizer.
    Combines momentum and RMSProp with bias correction.

    Args:
        learning_rate (or lr): Learning rate
        beta1: Exponential decay rate for first moment (default: 0.9)
        beta2: Exponential decay rate for second moment (default: 0.999)
        eps: Small constant for numerical stability
        shape: Shape of the bound parameter
    """

    def __init__(self, learning_rate=0.001, beta1=0.9, beta2=0.999, eps=1e-8, shape=None, lr=None):
        super().__init__(shape)
        self.learning_rate = lr if lr is not None else learning_rate
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps
        self.m = None  # First moment
        self.v = None  # Second moment
        self.t = 0  # Timestep

    def update(self, params, grads):
        """Update parameters using Adam"""
        self._check(params, grads)
        if self.m is None:
            self.m = self._state()
            self.v = self._state()
        self.t += 1

        self.m = self.m.mul(self.beta1).add(grads.mul(1 - self.beta1))
        self.v = self.v.mul(self.beta2).add(grads.mul(grads).mul(1 - self.beta2))

        m_hat = self.m.div(1 - self.beta1 ** self.t)
        v_hat = self.v.div(1 - self.beta2 ** self.t)
        return params.sub(m_hat.mul(self.learning_rate).div(v_hat.map(np.sqrt).add(self.eps)))


# ============================================================================
# Factories
# ============================================================================

class OptimizerFactory:
    """
    Creates one optimizer per trainable parameter.
    Keyword arguments are forwarded to every optimizer it creates.
    """

    optimizer_class = None

    def __init__(self, **kwargs):
        self.kwargs = kwargs

    def create(self, shape):
        """Return a new optimizer bound to a parameter of the given shape"""
        if self.optimizer_class is None:
            raise NotImplementedError
        return self.optimizer_class(shape=shape, **self.kwargs)

    def __repr__(self):
        args = ', '.join(f"{k}={v!r}" for k, v in self.kwargs.items())
        return f"{type(self).__name__}({args})"


class SGDFactory(OptimizerFactory):
    optimizer_class = SGD

    def __init__(self, learning_rate=0.01, lr=None):
        super().__init__(learning_rate=lr if lr is not None else learning_rate)


class MomentumFactory(OptimizerFactory):
    """Creates Momentum optimizers, or plain SGD when momentum is 0"""

    optimizer_class = Momentum

    def __init__(self, learning_rate=0.01, momentum=0.9, lr=None):
        super().__init__(learning_rate=lr if lr is not None else learning_rate, momentum=momentum)

    def create(self, shape):
        if self.kwargs['momentum'] == 0:
            return SGD(learning_rate=self.kwargs['learning_rate'], shape=shape)
        return super().create(shape)


class AdagradFactory(OptimizerFactory):
    optimizer_class = Adagrad


class RMSPropFactory(OptimizerFactory):
    optimizer_class = RMSProp


class AdamFactory(OptimizerFactory):
    optimizer_class = Adam
