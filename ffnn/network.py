"""
network.py
~~~~~~~~~~

Dense feed-forward neural network with mini-batch gradient descent.

The network owns an ordered list of layers and one weight matrix per
connection, where ``weights[l]`` has shape
``(layers[l].size, layers[l + 1].size)``. Training minimizes binary
cross-entropy with a learning rate that decays every epoch, and the
parameters can be written to and read from a CSV model file.
"""

import copy
import csv
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Union

import numpy as np

from ffnn.activations import Activation
from ffnn.errors import ConfigError, ModelIOError, ShapeError
from ffnn.layer import Layer
from ffnn.loss import binary_cross_entropy, output_gradient
from ffnn.matrix import Matrix

# Configure module logger
logger = logging.getLogger(__name__)

LR_DECAY = 0.996
MIN_LEARNING_RATE = 1e-4
PROGRESS_INTERVAL = 100

MODEL_HEADER = ["type", "layer", "row", "col", "value"]

RandomSource = Union[np.random.Generator, int, None]


def effective_learning_rate(
    base: float,
    epoch: int,
    decay: float = LR_DECAY,
    floor: float = MIN_LEARNING_RATE
) -> float:
    """
    Learning rate used during a given epoch.

    Args:
        base: Learning rate at epoch 0
        epoch: Zero-based epoch index
        decay: Multiplicative decay per epoch
        floor: Lower bound of the result

    Returns:
        float: max(floor, base * decay ** epoch)
    """
    return max(floor, base * decay ** epoch)


class Network:
    """
    A layered network of dense connections.

    Example:
        >>> net = Network([
        ...     Layer(0, 24, Activation.NONE),
        ...     Layer(1, 12, Activation.RELU),
        ...     Layer(2, 1, Activation.SIGMOID),
        ... ])
        >>> net.train(features, labels, 0.029, epochs=1300, batch_size=8)
        >>> net.predict(features[0])
    """

    def __init__(self, layers: Sequence[Layer], rng: RandomSource = None):
        """
        Connect the layers and initialize the weights.

        Args:
            layers: Layers in order, copied into the network;
                ``layers[i].index`` must be ``i``
            rng: numpy Generator or integer seed for weight initialization;
                a non-deterministic source when None

        Raises:
            ConfigError: If fewer than two layers are given or a layer
                index does not match its position
        """
        if len(layers) < 2:
            raise ConfigError(
                f"A network needs at least 2 layers, got {len(layers)}"
            )
        for position, layer in enumerate(layers):
            if layer.index != position:
                raise ConfigError(
                    f"Layer at position {position} has index {layer.index}"
                )

        self.layers: List[Layer] = copy.deepcopy(list(layers))
        self.weights: List[Matrix] = [
            Matrix(self.layers[l].size, self.layers[l + 1].size)
            for l in range(len(self.layers) - 1)
        ]
        self._initialize_weights(np.random.default_rng(rng))

    @classmethod
    def from_topology(
        cls,
        sizes: Sequence[int],
        activations: Optional[Sequence[Union[Activation, str]]] = None,
        rng: RandomSource = None
    ) -> "Network":
        """
        Build a network from layer sizes and activation names.

        Args:
            sizes: Units per layer, input layer first
            activations: One activation per layer; defaults to none for
                the input, relu for hidden layers and sigmoid for the output
            rng: Random source for weight initialization

        Raises:
            ConfigError: If sizes and activations differ in length
        """
        if activations is None:
            activations = (
                [Activation.NONE]
                + [Activation.RELU] * (len(sizes) - 2)
                + [Activation.SIGMOID]
            )
        if len(activations) != len(sizes):
            raise ConfigError(
                f"Got {len(sizes)} layer sizes but {len(activations)} activations"
            )
        layers = [
            Layer(index, size, activation)
            for index, (size, activation) in enumerate(zip(sizes, activations))
        ]
        return cls(layers, rng=rng)

    def _initialize_weights(self, rng: np.random.Generator) -> None:
        for w in self.weights:
            w.fill_random(-1.0, 1.0, rng)
            w *= math.sqrt(2.0 / w.rows)

    @property
    def sizes(self) -> List[int]:
        return [layer.size for layer in self.layers]

    @property
    def activations(self) -> List[str]:
        return [layer.activation.value for layer in self.layers]

    @property
    def topology(self) -> List[Dict[str, Any]]:
        return [
            {'size': layer.size, 'activation': layer.activation.value}
            for layer in self.layers
        ]

    # ------------------------------------------------------
    # Forward pass
    # ------------------------------------------------------
    def _as_input(self, values) -> np.ndarray:
        x = np.asarray(values, dtype=np.float64)
        if x.ndim != 1 or x.shape[0] != self.layers[0].size:
            raise ShapeError(
                f"Input size mismatch: expected {self.layers[0].size} "
                f"values, got shape {x.shape}"
            )
        return x

    def _as_target(self, values) -> np.ndarray:
        y = np.atleast_1d(np.asarray(values, dtype=np.float64))
        if y.ndim != 1 or y.shape[0] != self.layers[-1].size:
            raise ShapeError(
                f"Target size mismatch: expected {self.layers[-1].size} "
                f"values, got shape {y.shape}"
            )
        return y

    def _propagate(self, x: np.ndarray) -> np.ndarray:
        self.layers[0].a[...] = x
        for l, w in enumerate(self.weights):
            src, dst = self.layers[l], self.layers[l + 1]
            dst.z[...] = dst.bias + src.a @ w.values
            dst.a[...] = dst.apply_activation(dst.z)
        return self.layers[-1].a

    def forward(self, input) -> np.ndarray:
        """
        Run one sample through the network.

        Args:
            input: Feature vector of length ``layers[0].size``

        Returns:
            np.ndarray: Copy of the output layer's activations

        Raises:
            ShapeError: If the input length does not match the input layer
        """
        return self._propagate(self._as_input(input)).copy()

    def predict(self, input) -> np.ndarray:
        """Alias of forward(); returns raw output probabilities."""
        return self.forward(input)

    # ------------------------------------------------------
    # Training
    # ------------------------------------------------------
    def _backpropagate(
        self,
        x: np.ndarray,
        y: np.ndarray,
        weight_grads: List[np.ndarray],
        bias_grads: List[np.ndarray]
    ) -> float:
        """
        Forward one sample, compute every layer's error signal and add the
        sample's parameter gradients to the batch accumulators.

        Returns:
            float: The sample's BCE loss
        """
        self._propagate(x)

        output_layer = self.layers[-1]
        loss = binary_cross_entropy(output_layer.a, y)
        output_layer.gradient[...] = output_gradient(output_layer.a, y, output_layer)

        # Hidden layers, last to first; the input layer has no error signal
        for l in range(len(self.layers) - 2, 0, -1):
            layer = self.layers[l]
            layer.gradient[...] = (
                (self.weights[l].values @ self.layers[l + 1].gradient)
                * layer.apply_activation_derivative(layer.z)
            )

        for l in range(len(self.weights)):
            source = x if l == 0 else self.layers[l].a
            downstream = self.layers[l + 1].gradient
            weight_grads[l] += np.outer(source, downstream)
            bias_grads[l] += downstream

        return loss

    def train(
        self,
        inputs: Sequence,
        targets: Sequence,
        learning_rate: float,
        epochs: int,
        batch_size: int = 1,
        verbose: bool = True,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> List[float]:
        """
        Train with mini-batch gradient descent on binary cross-entropy.

        Samples are visited in the given order. Each batch's gradients are
        averaged over the batch's actual size (the last batch may be
        smaller) and applied once, scaled by the epoch's learning rate.

        Args:
            inputs: Feature vectors, one per sample
            targets: Target vectors (or scalars for a single output unit)
            learning_rate: Learning rate at epoch 0, decays every epoch
            epochs: Number of passes over the data
            batch_size: Samples per parameter update
            verbose: Log a banner, progress every 100 epochs and a summary
            callback: Called after every epoch with a progress dictionary
            yield_func: Called after every batch, lets a cooperative
                scheduler run other tasks

        Returns:
            list: Mean BCE of every epoch

        Raises:
            ConfigError: On empty or mismatched data, or non-positive
                learning rate, epochs or batch size
            ShapeError: If any sample does not fit the input or output layer
        """
        if len(inputs) != len(targets):
            raise ConfigError(
                f"Input and target sizes don't match: "
                f"{len(inputs)} != {len(targets)}"
            )
        if len(inputs) == 0:
            raise ConfigError("Training data is empty")
        if learning_rate <= 0.0 or epochs <= 0 or batch_size <= 0:
            raise ConfigError(
                "Learning rate, epochs, and batch size must be positive."
            )

        x_rows = [self._as_input(x) for x in inputs]
        y_rows = [self._as_target(y) for y in targets]
        dataset_size = len(x_rows)

        if verbose:
            logger.info(
                f"Training: learning_rate={learning_rate}, "
                f"decay={(1.0 - LR_DECAY) * 100:.1f}% per epoch, "
                f"epochs={epochs}, dataset size={dataset_size}, "
                f"batch size={batch_size}"
            )

        start = time.perf_counter()
        losses: List[float] = []

        for epoch in range(epochs):
            lr = effective_learning_rate(learning_rate, epoch)
            epoch_loss = 0.0

            for batch_start in range(0, dataset_size, batch_size):
                batch_end = min(batch_start + batch_size, dataset_size)
                actual_batch_size = batch_end - batch_start

                weight_grads = [np.zeros(w.shape) for w in self.weights]
                bias_grads = [np.zeros(layer.size) for layer in self.layers[1:]]

                for k in range(batch_start, batch_end):
                    epoch_loss += self._backpropagate(
                        x_rows[k], y_rows[k], weight_grads, bias_grads
                    )

                for l, w in enumerate(self.weights):
                    w.values -= lr * (weight_grads[l] / actual_batch_size)
                    self.layers[l + 1].bias -= lr * (bias_grads[l] / actual_batch_size)

                if yield_func is not None:
                    yield_func()

            mean_loss = epoch_loss / dataset_size
            losses.append(mean_loss)

            if verbose and epoch % PROGRESS_INTERVAL == 0:
                logger.info(
                    f"[{100 * epoch // epochs}%] EPOCH : {epoch} | "
                    f"BCE: {mean_loss:.6f}"
                )

            if callback is not None:
                callback({
                    'epoch': epoch + 1,
                    'total_epochs': epochs,
                    'loss': mean_loss,
                    'learning_rate': lr,
                    'elapsed_time': time.perf_counter() - start
                })

        if verbose:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            logger.info(
                f"Training done: final BCE {losses[-1]:.6f}, "
                f"training time {elapsed_ms:.0f} ms"
            )

        return losses

    # ------------------------------------------------------
    # Model files
    # ------------------------------------------------------
    def write_records(self, stream: TextIO) -> None:
        """
        Write the model records (header, topology, parameters) as CSV.

        Args:
            stream: Text stream opened for writing
        """
        writer = csv.writer(stream, lineterminator='\n')
        writer.writerow(MODEL_HEADER)

        for layer in self.layers:
            writer.writerow(['layer', layer.index, layer.size, 0, layer.activation.value])

        for l in range(1, len(self.layers)):
            w = self.weights[l - 1]
            for i in range(w.rows):
                for j in range(w.cols):
                    writer.writerow(['weight', l, i, j, repr(float(w.values[i, j]))])
            for i, b in enumerate(self.layers[l].bias):
                writer.writerow(['bias', l, i, 0, repr(float(b))])

    def read_records(self, stream: TextIO) -> None:
        """
        Read model records into this network.

        Every record is validated against the current topology and the
        parameters are only replaced once the whole stream is valid.

        Args:
            stream: Text stream positioned at the header line

        Raises:
            ModelIOError: If the header is missing or a record is malformed
            ShapeError: If the records do not fit this network's topology
        """
        reader = csv.reader(stream)
        header = next(reader, None)
        if header is None or [h.strip() for h in header] != MODEL_HEADER:
            raise ModelIOError(f"Invalid model header: {header!r}")

        staged_weights = [w.copy() for w in self.weights]
        staged_biases = [layer.bias.copy() for layer in self.layers[1:]]
        weight_seen = [np.zeros(w.shape, dtype=bool) for w in self.weights]
        bias_seen = [np.zeros(layer.size, dtype=bool) for layer in self.layers[1:]]
        topology: Dict[int, tuple] = {}

        for line_no, record in enumerate(reader, start=2):
            if not record:
                continue
            if len(record) != len(MODEL_HEADER):
                raise ModelIOError(
                    f"Line {line_no}: expected {len(MODEL_HEADER)} fields, "
                    f"got {len(record)}"
                )
            kind = record[0].strip()
            try:
                layer, row, col = (int(field) for field in record[1:4])
                value = record[4].strip()
                if kind != 'layer':
                    value = float(value)
            except ValueError as e:
                raise ModelIOError(f"Line {line_no}: malformed record {record!r}") from e

            if kind == 'layer':
                topology[layer] = (row, value)
            elif kind in ('weight', 'bias'):
                if not 1 <= layer < len(self.layers):
                    raise ShapeError(
                        f"Line {line_no}: layer {layer} does not exist in a "
                        f"{len(self.layers)}-layer network"
                    )
                if kind == 'weight':
                    staged_weights[layer - 1][row, col] = value
                    weight_seen[layer - 1][row, col] = True
                else:
                    if col != 0 or not 0 <= row < self.layers[layer].size:
                        raise ShapeError(
                            f"Line {line_no}: bias ({row}, {col}) out of "
                            f"bounds for layer {layer} of size "
                            f"{self.layers[layer].size}"
                        )
                    staged_biases[layer - 1][row] = value
                    bias_seen[layer - 1][row] = True
            else:
                raise ModelIOError(f"Line {line_no}: unknown record type {kind!r}")

        if topology:
            expected = {
                layer.index: (layer.size, layer.activation.value)
                for layer in self.layers
            }
            if topology != expected:
                raise ShapeError(
                    f"Model topology {sorted(topology.items())} does not match "
                    f"network topology {sorted(expected.items())}"
                )

        if not all(seen.all() for seen in weight_seen + bias_seen):
            raise ShapeError("Model file does not contain every network parameter")

        for w, staged in zip(self.weights, staged_weights):
            w.values[...] = staged.values
        for layer, staged in zip(self.layers[1:], staged_biases):
            layer.bias[...] = staged

    def save(self, path: str) -> None:
        """
        Save the topology and parameters to a CSV model file.

        Raises:
            ModelIOError: If the file cannot be opened for writing
        """
        try:
            with open(path, 'w', newline='', encoding='utf-8') as f:
                self.write_records(f)
        except OSError as e:
            raise ModelIOError(f"Unable to open file: {path}") from e
        logger.info(f"Model saved to {path}")

    def load(self, path: str) -> None:
        """
        Load parameters from a CSV model file written by save().

        Raises:
            ModelIOError: If the file cannot be opened or is malformed
            ShapeError: If the file does not fit this network's topology
        """
        try:
            with open(path, 'r', newline='', encoding='utf-8') as f:
                self.read_records(f)
        except ModelIOError:
            raise
        except OSError as e:
            raise ModelIOError(f"Unable to open model file: {path}") from e
        except (UnicodeDecodeError, csv.Error) as e:
            raise ModelIOError(f"Unreadable model file: {path}") from e
        logger.info(f"Model loaded from {path}")

    def __repr__(self) -> str:
        return f"Network(sizes={self.sizes}, activations={self.activations})"
