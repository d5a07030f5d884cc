"""
layer.py
~~~~~~~~

One layer of a dense network: per-unit scratch state plus, for every
layer after the input, a bias vector and a bound activation.
"""

import numbers
from typing import Union

import numpy as np

from ffnn.activations import Activation
from ffnn.errors import ConfigError, StateError


def _is_integer(value) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


class Layer:
    """
    A layer of ``size`` units at position ``index`` in the network.

    The input layer (index 0) only carries the values fed to the network:
    it owns ``z`` and ``a`` but has no ``bias``, no ``gradient`` and never
    binds an activation. Every other layer owns zeroed ``bias`` and
    ``gradient`` vectors and the activation it was configured with.

    Attributes:
        index: Position in the network, 0 for the input layer
        size: Number of units
        z: Pre-activation values from the last forward pass
        a: Activation outputs from the last forward pass
        bias: Per-unit bias, None for the input layer
        gradient: Error signal from the last backward pass, None for the
            input layer
    """

    def __init__(
        self,
        index: int,
        size: int,
        activation: Union[Activation, str] = Activation.NONE
    ):
        if not _is_integer(size) or not _is_integer(index):
            raise ConfigError(
                f"Layer index and size must be integers, got {index!r}, {size!r}"
            )
        if size <= 0:
            raise ConfigError(f"Layer sizes must be positive, got {size}")
        if index < 0:
            raise ConfigError(f"Layer index must be non-negative, got {index}")

        self.index = int(index)
        self.size = int(size)
        self.z = np.zeros(self.size, dtype=np.float64)
        self.a = np.zeros(self.size, dtype=np.float64)

        if self.index == 0:
            self.bias = None
            self.gradient = None
            self._activation = Activation.NONE
        else:
            self.bias = np.zeros(self.size, dtype=np.float64)
            self.gradient = np.zeros(self.size, dtype=np.float64)
            self._activation = Activation.parse(activation)

        self._apply, self._derivative = self._activation.functions

    @property
    def activation(self) -> Activation:
        return self._activation

    @property
    def is_input(self) -> bool:
        return self.index == 0

    @property
    def has_activation(self) -> bool:
        return self._apply is not None

    def apply_activation(self, x):
        """
        Evaluate the bound activation elementwise.

        Raises:
            StateError: If the layer has no activation bound
        """
        if self._apply is None:
            raise StateError(f"Layer {self.index} has no activation function")
        return self._apply(x)

    def apply_activation_derivative(self, x):
        """
        Evaluate the derivative of the bound activation elementwise.

        Raises:
            StateError: If the layer has no activation bound
        """
        if self._derivative is None:
            raise StateError(f"Layer {self.index} has no activation derivative")
        return self._derivative(x)

    def __repr__(self) -> str:
        return (
            f"Layer(index={self.index}, size={self.size}, "
            f"activation={self._activation.value})"
        )
