"""
Training configuration for mini_nn.
Hyper-parameters live in a dataclass that can be loaded from the [training]
table of a TOML file.
"""
import os
import tomllib
from dataclasses import dataclass

import numpy as np

from . import parallel
from .nn import Sequential
from .optim import MomentumFactory


@dataclass
class TrainingConfiguration:
    """
    Hyper-parameters for Sequential.fit and its optimizers.

    Args:
        epochs: Number of passes over the training data
        batch_size: Samples per training step
        learning_rate: Optimizer step size
        momentum: Velocity decay; 0 selects plain SGD
        seed: Seed for the model's random generator (None draws fresh entropy)
        workers: Thread count for per-sample work; None keeps the default
    """

    epochs: int = 10
    batch_size: int = 32
    learning_rate: float = 0.01
    momentum: float = 0.0
    seed: int | None = None
    workers: int | None = None

    def __post_init__(self):
        if self.epochs < 0:
            raise ValueError(f"epochs must be non-negative, got {self.epochs}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if not 0 <= self.momentum < 1:
            raise ValueError(f"momentum must be in [0, 1), got {self.momentum}")
        if self.workers is not None and self.workers < 1:
            raise ValueError(f"workers must be positive, got {self.workers}")

    @classmethod
    def load(cls, config_path: str) -> "TrainingConfiguration":
        """
        Load training configuration from a TOML file.

        Args:
            config_path: Path to a TOML file containing a "training" table

        Raises:
            FileNotFoundError: If no file exists at `config_path`
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found at {config_path}")

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        training_data = data.get("training", {})
        return cls(**training_data)

    def rng(self) -> np.random.Generator:
        """New random generator seeded with `seed`."""
        return np.random.default_rng(self.seed)

    def model(self, input_shape) -> Sequential:
        """Empty Sequential model whose generator is seeded with `seed`."""
        return Sequential(input_shape, rng=self.rng())

    def optimizer_factory(self) -> MomentumFactory:
        """Factory for the configured optimizer (plain SGD when momentum is 0)."""
        return MomentumFactory(learning_rate=self.learning_rate, momentum=self.momentum)

    def apply(self) -> None:
        """Apply process-wide settings (worker threads)."""
        parallel.set_workers(self.workers)
