"""
Neural network layers, losses and the Sequential model for mini_nn.
Includes Layer base class, Input, Dense, Flatten, Dropout, ReLU, Sigmoid,
Softmax, Lambda, CrossEntropy, MeanSquaredError and Sequential.

A batch is a list of Tensors, one per sample. Gradients are derived by hand
for every layer: `forward` caches what `backward` needs, `backward` computes
parameter gradients and returns the gradient for the previous layer, and
`update` hands the parameter gradients to the layer's optimizers.
"""
import logging
import math
import time
from dataclasses import dataclass, field

import numpy as np

from . import functional as F
from .errors import BuildError, LayerStateError, ModelStateError, RankError, ShapeError
from .parallel import Accumulator, map_samples
from .shape import as_shape
from .tensor import Tensor

logger = logging.getLogger(__name__)


class Layer:
    """
    Base class for all layers.

    Args:
        rng: numpy Generator used for random initialisation and masks.
            When None, the model hands down its own generator at build time.
    """

    def __init__(self, rng=None):
        self.rng = rng
        self.input_shape = None
        self.output_shape = None

    @property
    def name(self):
        return type(self).__name__

    def init(self, input_shape, optimizer_factory=None):
        """
        Bind the layer to an input shape and return its output shape.
        Layers that keep the shape use this default.
        """
        input_shape = as_shape(input_shape)
        self.input_shape = input_shape
        self.output_shape = input_shape
        return self.output_shape

    def call(self, batch):
        """Inference pass without caching - to be implemented by subclasses"""
        raise NotImplementedError

    def forward(self, batch):
        """Training pass; caches what backward needs"""
        return self.call(batch)

    def backward(self, douts):
        """Gradient w.r.t. the layer input, given the gradient w.r.t. its output"""
        self._require_init()
        return list(douts)

    def update(self):
        """Apply accumulated parameter gradients (no-op without parameters)"""

    def params(self):
        """Return list of all parameters in this layer"""
        return []

    def __call__(self, batch):
        return self.call(batch)

    def __repr__(self):
        return f"{self.name}(input_shape={self.input_shape}, output_shape={self.output_shape})"

    # helpers

    def _require_init(self):
        if self.output_shape is None:
            raise LayerStateError(f"{self.name} used before init")

    def _check_batch(self, batch):
        self._require_init()
        for i, x in enumerate(batch):
            if not x.shape.equal(self.input_shape):
                raise ShapeError(
                    f"{self.name} expects samples of shape {self.input_shape.dims}, "
                    f"sample {i} has shape {x.shape.dims}"
                )

    def _check_cache(self, cache, douts):
        if cache is None:
            raise LayerStateError(f"{self.name}.backward called without a matching forward")
        if len(cache) != len(douts):
            raise LayerStateError(
                f"{self.name}.backward got {len(douts)} gradients for a forward batch of {len(cache)}"
            )

    def _get_rng(self):
        if self.rng is None:
            self.rng = np.random.default_rng()
        return self.rng


class Input(Layer):
    """Identity layer placed at the front of every Sequential model"""

    def call(self, batch):
        self._check_batch(batch)
        return list(batch)


class Dense(Layer):
    """
    Fully connected layer, applied per sample: y = xW + b

    Args:
        units: Number of output units
        init_scale: Weights are drawn uniformly from [0, init_scale)
        rng: numpy Generator for weight initialisation
    """

    def __init__(self, units, init_scale=0.01, rng=None):
        super().__init__(rng)
        if units < 1:
            raise ValueError(f"units must be positive, got {units}")
        self.units = units
        self.init_scale = init_scale
        self.weight = None
        self.bias = None
        self.optimizer_weight = None
        self.optimizer_bias = None
        # per-batch caches
        self._inputs = None
        self._dweight = None
        self._dbias = None

    def init(self, input_shape, optimizer_factory=None):
        input_shape = as_shape(input_shape)
        if input_shape.rank() != 1:
            raise RankError(f"Dense expects rank-1 input, got rank {input_shape.rank()}")

        self.input_shape = input_shape
        self.output_shape = as_shape((self.units,))
        self.weight = Tensor.uniform((input_shape[0], self.units), 0.0, self.init_scale, self._get_rng())
        self.bias = Tensor.zeros(self.output_shape)
        if optimizer_factory is not None:
            self.optimizer_weight = optimizer_factory.create(self.weight.shape)
            self.optimizer_bias = optimizer_factory.create(self.bias.shape)
        return self.output_shape

    def _affine(self, x):
        return x.reshape((1, x.size)).dot(self.weight).reshape(self.output_shape).add(self.bias)

    def call(self, batch):
        self._check_batch(batch)
        return map_samples(self._affine, batch)

    def forward(self, batch):
        outputs = self.call(batch)
        self._inputs = list(batch)
        return outputs

    def _backprop(self, x, dout):
        dout_row = dout.reshape((1, self.units))
        dx = dout_row.dot(self.weight.transpose()).reshape(self.input_shape)
        dw = x.reshape((1, x.size)).transpose().dot(dout_row)
        return dx, dw, dout.clone()

    def backward(self, douts):
        self._check_cache(self._inputs, douts)
        results = map_samples(self._backprop, self._inputs, douts)
        self._inputs = None
        self._dweight = [dw for _, dw, _ in results]
        self._dbias = [db for _, _, db in results]
        return [dx for dx, _, _ in results]

    @property
    def weight_grads(self):
        """Per-sample weight gradients of the last backward (None after update)"""
        return self._dweight

    @property
    def bias_grads(self):
        """Per-sample bias gradients of the last backward (None after update)"""
        return self._dbias

    def update(self):
        """Average the per-sample gradients and step both optimizers"""
        if self._dweight is None:
            raise LayerStateError("Dense.update called without gradients")
        if self.optimizer_weight is None or self.optimizer_bias is None:
            raise LayerStateError("Dense has no optimizers; init it with an optimizer factory")

        n = len(self._dweight)
        dw = Tensor.zeros(self.weight.shape)
        db = Tensor.zeros(self.bias.shape)
        for gw, gb in zip(self._dweight, self._dbias):
            dw = dw.add(gw)
            db = db.add(gb)

        self.weight = self.optimizer_weight.update(self.weight, dw.div(n))
        self.bias = self.optimizer_bias.update(self.bias, db.div(n))
        self._dweight = None
        self._dbias = None

    def params(self):
        if self.weight is None:
            return []
        return [self.weight, self.bias]


class Flatten(Layer):
    """Flatten every sample into a rank-1 tensor"""

    def init(self, input_shape, optimizer_factory=None):
        input_shape = as_shape(input_shape)
        self.input_shape = input_shape
        self.output_shape = as_shape((input_shape.element_count(),))
        return self.output_shape

    def call(self, batch):
        self._check_batch(batch)
        return [x.reshape(self.output_shape) for x in batch]

    def backward(self, douts):
        # values are unchanged, only the layout goes back to the input shape
        self._require_init()
        return [d.reshape(self.input_shape) for d in douts]


class Dropout(Layer):
    """
    Dropout layer. During training, `floor(units * (1 - rate))` positions of
    every sample are set to zero; inference leaves the batch untouched.

    Note that the zeroed count shrinks as `rate` grows, which is the reverse of
    the usual dropout convention. Kept as is until the intended meaning of
    `rate` is settled.

    Args:
        rate: Value in [0, 1]
        rng: numpy Generator for the masks
    """

    def __init__(self, rate=0.5, rng=None):
        super().__init__(rng)
        if not 0.0 <= rate <= 1.0:
            raise ValueError(f"rate must be in [0, 1], got {rate}")
        self.rate = rate
        self._masks = None

    def dropped_count(self):
        """Number of positions zeroed per sample"""
        self._require_init()
        return int(math.floor(self.input_shape.element_count() * (1.0 - self.rate)))

    def call(self, batch):
        self._check_batch(batch)
        return list(batch)

    def forward(self, batch):
        self._check_batch(batch)
        units = self.input_shape.element_count()
        count = self.dropped_count()
        rng = self._get_rng()

        # masks are drawn sequentially so runs are reproducible for a given seed
        masks = []
        for _ in batch:
            mask = np.zeros(units, dtype=bool)
            mask[rng.choice(units, size=count, replace=False)] = True
            masks.append(mask)

        self._masks = masks
        return map_samples(lambda x, m: x.masked_fill(m, 0.0), batch, masks)

    def backward(self, douts):
        self._check_cache(self._masks, douts)
        masks, self._masks = self._masks, None
        return map_samples(lambda d, m: d.masked_fill(m, 0.0), douts, masks)


class ReLU(Layer):
    """ReLU activation layer: max(x, 0)"""

    def __init__(self, rng=None):
        super().__init__(rng)
        self._masks = None

    def call(self, batch):
        self._check_batch(batch)
        return map_samples(F.relu, batch)

    def forward(self, batch):
        outputs = self.call(batch)
        self._masks = map_samples(F.relu_mask, batch)
        return outputs

    def backward(self, douts):
        self._check_cache(self._masks, douts)
        masks, self._masks = self._masks, None
        return map_samples(lambda d, m: d.masked_fill(m, 0.0), douts, masks)


class Sigmoid(Layer):
    """Sigmoid activation layer: 1 / (1 + exp(-x))"""

    def __init__(self, rng=None):
        super().__init__(rng)
        self._outputs = None

    def call(self, batch):
        self._check_batch(batch)
        return map_samples(F.sigmoid, batch)

    def forward(self, batch):
        self._outputs = self.call(batch)
        return list(self._outputs)

    def backward(self, douts):
        self._check_cache(self._outputs, douts)
        outputs, self._outputs = self._outputs, None
        return map_samples(F.sigmoid_grad, outputs, douts)


class Softmax(Layer):
    """
    Softmax activation layer over rank-1 samples.

    The backward pass computes `dout * y + y`. Paired with the CrossEntropy
    gradient `-t / y` this yields `y - t`, the gradient of the combined
    softmax + cross-entropy w.r.t. the logits. It is not the softmax
    Jacobian-vector product for an arbitrary upstream gradient.
    """

    def __init__(self, rng=None):
        super().__init__(rng)
        self._outputs = None

    def init(self, input_shape, optimizer_factory=None):
        input_shape = as_shape(input_shape)
        if input_shape.rank() != 1:
            raise RankError(f"Softmax expects rank-1 input, got rank {input_shape.rank()}")
        return super().init(input_shape, optimizer_factory)

    def call(self, batch):
        self._check_batch(batch)
        return map_samples(F.softmax, batch)

    def forward(self, batch):
        self._outputs = self.call(batch)
        return list(self._outputs)

    def backward(self, douts):
        self._check_cache(self._outputs, douts)
        outputs, self._outputs = self._outputs, None
        return map_samples(lambda d, y: d.mul(y).add(y), douts, outputs)


class Lambda(Layer):
    """
    Wraps a user function applied to every sample.

    The backward pass returns the upstream gradient unchanged: no derivative
    of `fn` is computed. Use it only for functions whose gradient is the
    identity (or where that approximation is acceptable).

    Args:
        fn: Function Tensor -> Tensor
        output_shape: Output shape of fn; inferred from fn(zeros) when None
    """

    def __init__(self, fn, output_shape=None, rng=None):
        super().__init__(rng)
        self.fn = fn
        self._declared_shape = as_shape(output_shape) if output_shape is not None else None
        self._batch_size = None

    def init(self, input_shape, optimizer_factory=None):
        input_shape = as_shape(input_shape)
        if self._declared_shape is not None:
            output_shape = self._declared_shape
        else:
            sample = self.fn(Tensor.zeros(input_shape))
            if not isinstance(sample, Tensor):
                raise TypeError(f"Lambda function must return a Tensor, got {type(sample).__name__}")
            output_shape = sample.shape
        self.input_shape = input_shape
        self.output_shape = output_shape
        return self.output_shape

    def _apply(self, x):
        y = self.fn(x)
        if not y.shape.equal(self.output_shape):
            raise ShapeError(f"Lambda output shape {y.shape.dims} does not match {self.output_shape.dims}")
        return y

    def call(self, batch):
        self._check_batch(batch)
        return map_samples(self._apply, batch)

    def forward(self, batch):
        outputs = self.call(batch)
        self._batch_size = len(outputs)
        return outputs

    def backward(self, douts):
        if self._batch_size is None:
            raise LayerStateError("Lambda.backward called without a matching forward")
        if self._batch_size != len(douts):
            raise LayerStateError(
                f"Lambda.backward got {len(douts)} gradients for a forward batch of {self._batch_size}"
            )
        self._batch_size = None
        return list(douts)


# ============================================================================
# Losses
# ============================================================================

class Loss:
    """
    Base class for losses over a batch.
    Subclasses provide the per-sample loss and its gradient.
    """

    def __init__(self):
        self._y = None
        self._t = None

    def sample_loss(self, y, t):
        raise NotImplementedError

    def sample_grad(self, y, t):
        raise NotImplementedError

    def _check(self, y, t):
        if len(y) != len(t):
            raise ShapeError(f"got {len(y)} predictions for {len(t)} targets")
        if len(y) == 0:
            raise ShapeError("loss of an empty batch")

    def _mean(self, y, t):
        acc = Accumulator()
        map_samples(lambda yi, ti: acc.add(self.sample_loss(yi, ti)), y, t)
        return acc.mean()

    def call(self, y, t):
        """Mean loss over the batch"""
        self._check(y, t)
        return self._mean(y, t)

    def forward(self, y, t):
        """Mean loss over the batch; keeps copies of y and t for backward"""
        self._check(y, t)
        loss = self._mean(y, t)
        self._y = [yi.clone() for yi in y]
        self._t = [ti.clone() for ti in t]
        return loss

    def backward(self):
        """Per-sample gradients w.r.t. the predictions of the last forward"""
        if self._y is None:
            raise LayerStateError(f"{type(self).__name__}.backward called without a matching forward")
        y, t = self._y, self._t
        self._y = self._t = None
        return map_samples(self.sample_grad, y, t)

    def __call__(self, y, t):
        return self.call(y, t)


class CrossEntropy(Loss):
    """
    Cross-entropy loss: mean over the batch of -sum(t * log(y + 1e-7)).

    The gradient `-t / y` is per sample and not divided by the batch size;
    Dense.update averages parameter gradients over the batch instead.
    """

    def __init__(self, eps=F.CROSS_ENTROPY_EPS):
        super().__init__()
        self.eps = eps

    def sample_loss(self, y, t):
        return F.cross_entropy(y, t, self.eps)

    def sample_grad(self, y, t):
        return F.cross_entropy_grad(y, t)


class MeanSquaredError(Loss):
    """Squared error loss: mean over the batch of 0.5 * sum((y - t)^2)"""

    def sample_loss(self, y, t):
        return F.squared_error(y, t)

    def sample_grad(self, y, t):
        return F.squared_error_grad(y, t)


# ============================================================================
# Model
# ============================================================================

@dataclass
class History:
    """Per-epoch metrics recorded by Sequential.fit"""

    loss: list = field(default_factory=list)
    accuracy: list = field(default_factory=list)
    val_loss: list = field(default_factory=list)
    val_accuracy: list = field(default_factory=list)

    @property
    def epochs(self):
        return len(self.loss)


class Sequential:
    """
    Stack of layers trained with mini-batch gradient descent.
    An Input layer is always the first layer.

    Args:
        input_shape: Shape of one input sample
        rng: numpy Generator handed to layers that have none
        seed: Seed for a new Generator when rng is None
    """

    def __init__(self, input_shape, rng=None, seed=None):
        self.input_shape = as_shape(input_shape)
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self._layers = [Input()]
        self._loss = None
        self.optimizer_factory = None
        self.built = False

    @property
    def layers(self):
        return list(self._layers)

    @property
    def output_shape(self):
        return self._layers[-1].output_shape if self.built else None

    def add_layer(self, layer):
        """Append a layer; the model has to be built again afterwards"""
        if not isinstance(layer, Layer):
            raise TypeError(f"expected a Layer, got {type(layer).__name__}")
        self._layers.append(layer)
        self.built = False
        return self

    add = add_layer

    def build(self, loss, optimizer_factory):
        """
        Initialise every layer in order, feeding each one the output shape
        of the previous layer, and bind optimizers to every parameter.

        Raises:
            BuildError: A layer rejected its input shape. The model stays
                unbuilt and every layer keeps the state it had before the call.
        """
        self.built = False
        snapshots = [dict(layer.__dict__) for layer in self._layers]
        generators = {id(g): g for g in [self.rng] + [layer.rng for layer in self._layers] if g is not None}
        rng_states = {key: g.bit_generator.state for key, g in generators.items()}

        shape = self.input_shape
        for index, layer in enumerate(self._layers):
            if layer.rng is None:
                layer.rng = self.rng
            try:
                shape = layer.init(shape, optimizer_factory)
            except Exception as err:
                for staged, snapshot in zip(self._layers, snapshots):
                    staged.__dict__.clear()
                    staged.__dict__.update(snapshot)
                for key, g in generators.items():
                    g.bit_generator.state = rng_states[key]
                raise BuildError(index, layer, err) from err

        self._loss = loss
        self.optimizer_factory = optimizer_factory
        self.built = True
        logger.info(
            "Built model: %s -> %s (%d params)",
            " -> ".join(layer.name for layer in self._layers),
            shape.dims,
            self.count_params(),
        )
        return self

    def _require_built(self):
        if not self.built:
            raise ModelStateError("model must be built before use")

    def predict(self, batch):
        """Run every layer's inference pass in order"""
        self._require_built()
        x = list(batch)
        for layer in self._layers:
            x = layer.call(x)
        return x

    def loss(self, y, t):
        """Loss of predictions y against targets t"""
        self._require_built()
        return self._loss.call(y, t)

    def accuracy(self, y, t):
        """Fraction of samples where argmax(y_i) == argmax(t_i)"""
        if len(y) != len(t):
            raise ShapeError(f"got {len(y)} predictions for {len(t)} targets")
        if len(t) == 0:
            return 0.0
        hits = sum(1 for yi, ti in zip(y, t) if yi.argmax() == ti.argmax())
        return hits / len(t)

    def evaluate(self, x, t):
        """Return (loss, accuracy) of the model on x"""
        y = self.predict(x)
        return self.loss(y, t), self.accuracy(y, t)

    def train_batch(self, x, t):
        """
        One training step: forward through all layers, loss forward and
        backward, then backward and update for every layer in reverse order.

        Returns:
            (loss, accuracy) of the batch as seen by the training pass
        """
        self._require_built()
        y = list(x)
        for layer in self._layers:
            y = layer.forward(y)

        loss = self._loss.forward(y, t)
        acc = self.accuracy(y, t)

        dout = self._loss.backward()
        for layer in reversed(self._layers):
            dout = layer.backward(dout)
            layer.update()
        return loss, acc

    def fit(self, x, t, epochs=1, batch_size=32, validation_data=None):
        """
        Train the model on x / t.

        Args:
            x: List of input tensors
            t: List of one-hot target tensors
            epochs: Number of passes over the data
            batch_size: Samples per step; a trailing partial batch is dropped
            validation_data: Optional (x_val, t_val) evaluated after each epoch

        Returns:
            History with the loss and accuracy on x after every epoch
        """
        self._require_built()
        x, t = list(x), list(t)
        if len(x) != len(t):
            raise ShapeError(f"got {len(x)} inputs for {len(t)} targets")
        if len(x) == 0:
            raise ValueError("cannot fit on an empty dataset")
        if epochs < 0:
            raise ValueError(f"epochs must be non-negative, got {epochs}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        steps = len(x) // batch_size
        if steps == 0:
            logger.warning("Dataset of %d samples is smaller than batch size %d; no training steps", len(x), batch_size)
        elif steps * batch_size < len(x):
            logger.debug("Dropping %d trailing samples per epoch", len(x) - steps * batch_size)

        history = History()
        total_start = time.perf_counter()
        for epoch in range(epochs):
            start = time.perf_counter()
            for step in range(steps):
                lo, hi = step * batch_size, (step + 1) * batch_size
                loss, acc = self.train_batch(x[lo:hi], t[lo:hi])
                logger.debug(
                    "epoch %d/%d step %d/%d loss: %.4f acc: %.4f",
                    epoch + 1, epochs, step + 1, steps, loss, acc,
                )

            loss, acc = self.evaluate(x, t)
            history.loss.append(loss)
            history.accuracy.append(acc)
            message = f"epoch {epoch + 1}/{epochs} {time.perf_counter() - start:.1f}s loss: {loss:.4f} acc: {acc:.4f}"
            if validation_data is not None:
                val_loss, val_acc = self.evaluate(*validation_data)
                history.val_loss.append(val_loss)
                history.val_accuracy.append(val_acc)
                message += f" val_loss: {val_loss:.4f} val_acc: {val_acc:.4f}"
            logger.info(message)

        logger.info("Training finished in %.1fs", time.perf_counter() - total_start)
        return history

    def count_params(self):
        """Total number of trainable values"""
        return sum(p.size for layer in self._layers for p in layer.params())

    def summary(self):
        """Table of layer types, output shapes and parameter counts"""
        lines = [
            f"{'Layer Type':<16}{'Output Shape':<20}{'Params':>10}",
            "=" * 46,
        ]
        for layer in self._layers:
            count = sum(p.size for p in layer.params())
            shape = layer.output_shape.dims if layer.output_shape is not None else '?'
            lines.append(f"{layer.name:<16}{str(shape):<20}{count:>10}")
        lines.append("")
        lines.append(f"Total params: {self.count_params()}")
        return "\n".join(lines)
