"""
Exceptions raised by mini_nn.
All of them derive from MiniNNError so callers can catch the whole family.
"""


class MiniNNError(Exception):
    """Base class for all mini_nn errors"""


class ShapeError(MiniNNError, ValueError):
    """Raised when shapes, element counts or dimensions do not agree"""


class RankError(ShapeError):
    """Raised when a tensor or shape has the wrong number of dimensions"""


class OutOfRangeError(MiniNNError, IndexError):
    """Raised when a coordinate exceeds the size of its dimension"""


class LayerStateError(MiniNNError, RuntimeError):
    """Raised when a layer or loss is used out of order (e.g. backward before forward)"""


class ModelStateError(MiniNNError, RuntimeError):
    """Raised when a model is used before it has been built"""


class BuildError(MiniNNError):
    """
    Raised when a layer rejects the shape propagated to it during build.

    Args:
        index: Position of the failing layer in the model (0 is the Input layer)
        layer: The layer instance that failed
        reason: The error raised by the layer's init
    """

    def __init__(self, index, layer, reason):
        self.index = index
        self.layer = layer
        self.reason = reason
        super().__init__(f"build error at layer {index} ({type(layer).__name__}): {reason}")
