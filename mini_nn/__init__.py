"""
mini_nn: A minimal neural-network training engine.

This library implements a tensor value type, layers with hand-derived
gradients, losses, per-parameter optimizers and a Sequential model from
scratch using only NumPy.
"""

from .shape import Shape
from .tensor import Tensor
from .errors import (
    BuildError,
    LayerStateError,
    MiniNNError,
    ModelStateError,
    OutOfRangeError,
    RankError,
    ShapeError,
)
from . import functional as F
from . import nn
from . import optim
from .config import TrainingConfiguration
from .log import setup_logging

__version__ = '0.1.0'
__all__ = [
    'Shape', 'Tensor', 'F', 'nn', 'optim',
    'TrainingConfiguration', 'setup_logging',
    'MiniNNError', 'ShapeError', 'RankError', 'OutOfRangeError',
    'BuildError', 'LayerStateError', 'ModelStateError',
]
