"""
activations.py
~~~~~~~~~~~~~~

The closed set of activation functions a layer can be bound to.

Each member of ``Activation`` maps to an (apply, derivative) pair in
``_DISPATCH``. Adding an activation means adding a member and a table
entry. All functions are elementwise on scalars or numpy arrays.
"""

from enum import Enum
from typing import Callable, Optional, Tuple, Union

import numpy as np

from ffnn.errors import ConfigError

ActivationFunction = Callable[[np.ndarray], np.ndarray]


def relu(x):
    return np.maximum(x, 0.0)


def relu_derivative(x):
    return np.where(np.asarray(x) > 0.0, 1.0, 0.0)


def sigmoid(x):
    # exp(-log(1 + e^-x)) does not overflow for large negative x
    return np.exp(-np.logaddexp(0.0, -np.asarray(x, dtype=np.float64)))


def sigmoid_derivative(x):
    s = sigmoid(x)
    return s * (1.0 - s)


class Activation(Enum):
    NONE = "none"
    RELU = "relu"
    SIGMOID = "sigmoid"

    @classmethod
    def parse(cls, value: Union["Activation", str]) -> "Activation":
        """
        Resolve an activation from a member or its case-insensitive name.

        Raises:
            ConfigError: If the name is not a known activation
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise ConfigError(
                f"Unknown activation {value!r}. "
                f"Expected one of: {[a.value for a in cls]}"
            ) from e

    @property
    def functions(self) -> Tuple[Optional[ActivationFunction], Optional[ActivationFunction]]:
        return _DISPATCH[self]


_DISPATCH = {
    Activation.NONE: (None, None),
    Activation.RELU: (relu, relu_derivative),
    Activation.SIGMOID: (sigmoid, sigmoid_derivative),
}
