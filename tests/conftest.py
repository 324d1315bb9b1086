"""Pytest configuration and shared fixtures."""
import numpy as np
import pytest

from mini_nn import Tensor, parallel
from mini_nn.functional import one_hot


@pytest.fixture
def rng():
    """
    Provide a seeded numpy Generator.

    Returns:
        numpy.random.Generator: Generator seeded with 0.
    """
    return np.random.default_rng(0)


@pytest.fixture
def separable_dataset():
    """
    Provide a linearly separable 2-class dataset.

    Class 1 samples lie around (1, 1), class 0 samples around (-1, -1).

    Returns:
        tuple: (inputs, targets), lists of 100 Tensors of shape (2,) each,
        targets one-hot encoded.
    """
    gen = np.random.default_rng(42)
    inputs, targets = [], []
    for i in range(100):
        label = i % 2
        center = 1.0 if label else -1.0
        inputs.append(Tensor.from_values((2,), center + gen.normal(0.0, 0.3, size=2)))
        targets.append(one_hot(label, 2))
    return inputs, targets


@pytest.fixture(autouse=True)
def reset_workers():
    """Restore the default worker count after every test."""
    yield
    parallel.set_workers(None)
