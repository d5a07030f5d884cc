"""
ffnn package
~~~~~~~~~~~~

Dense feed-forward neural network for binary classification.
Contains the core network implementation (matrix, layers, training,
model files), sensor data loading, evaluation, model persistence,
and the API server.
"""

__version__ = "1.0.0"
