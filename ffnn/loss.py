"""
loss.py
~~~~~~~

Binary cross-entropy and the error signal it feeds into the output layer.
"""

import numpy as np

from ffnn.activations import Activation
from ffnn.layer import Layer

EPSILON = 1e-7


def clamp_prediction(p: np.ndarray) -> np.ndarray:
    """Clip predictions to [EPSILON, 1 - EPSILON] so log() stays finite."""
    return np.clip(p, EPSILON, 1.0 - EPSILON)


def binary_cross_entropy(p: np.ndarray, y: np.ndarray) -> float:
    """
    Summed BCE over the output units of one sample.

    Args:
        p: Predicted probabilities (clamped internally)
        y: Targets in {0, 1}

    Returns:
        float: -sum(y log p + (1 - y) log(1 - p))
    """
    p = clamp_prediction(p)
    return float(-np.sum(y * np.log(p) + (1.0 - y) * np.log(1.0 - p)))


def output_gradient(p: np.ndarray, y: np.ndarray, layer: Layer) -> np.ndarray:
    """
    Error signal dL/dz at the output layer for BCE loss.

    For a sigmoid output the loss derivative and the sigmoid derivative
    cancel to ``p - y``. Other activations go through the generic chain
    rule ``dL/dp * f'(z)``.

    Args:
        p: Output activations from the last forward pass
        y: Targets
        layer: The output layer, whose ``z`` holds the pre-activations

    Raises:
        StateError: If the output layer has no activation bound
    """
    p = clamp_prediction(p)
    if layer.activation is Activation.SIGMOID:
        return p - y
    dloss_dp = (p - y) / (p * (1.0 - p))
    return dloss_dp * layer.apply_activation_derivative(layer.z)
