"""
errors.py
~~~~~~~~~

Exception types raised by the network engine and its collaborators.
"""


class NetworkError(Exception):
    """Base class for every error raised by ffnn."""


class ConfigError(NetworkError, ValueError):
    """Invalid configuration: layer sizes, learning rate, epochs, batch size."""


class ShapeError(NetworkError, ValueError):
    """Vector length, matrix index or model topology mismatch."""


class StateError(NetworkError, RuntimeError):
    """Operation not valid in the object's current state."""


class ModelIOError(NetworkError, OSError):
    """Model file cannot be opened, or is not a valid model file."""


class DatasetError(NetworkError, OSError):
    """Dataset file cannot be read or contains no usable rows."""
