"""
dataset.py
~~~~~~~~~~

Loading utilities for the UCI wall-following robot sensor data
(``sensor_readings_24.csv``).

Each line holds 24 ultrasound sensor readings followed by the movement
label (``Move-Forward``, ``Slight-Right-Turn``, ``Sharp-Right-Turn`` or
``Slight-Left-Turn``). Every label except ``Move-Forward`` is treated as
a collision, giving a binary classification problem.
"""

import csv
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from ffnn.errors import ConfigError, DatasetError

# Configure module logger
logger = logging.getLogger(__name__)

N_SENSOR_FEATURES = 24
NO_COLLISION_LABELS = frozenset({'Move-Forward'})

LabelMapper = Callable[[str], int]


def is_collision_label(label: str) -> bool:
    return label.strip() not in NO_COLLISION_LABELS


def collision_label_mapper(label: str) -> int:
    return 1 if is_collision_label(label) else 0


@dataclass
class SensorDataset:
    """
    Parallel arrays of samples.

    Attributes:
        features: (N, F) float array of sensor readings
        labels: (N, 1) float array of 0.0/1.0 targets
        ids: (N,) int array of row identifiers in the source file
    """
    features: np.ndarray
    labels: np.ndarray
    ids: np.ndarray

    def __len__(self) -> int:
        return len(self.ids)

    @property
    def n_features(self) -> int:
        return self.features.shape[1] if len(self) else 0

    def subset(self, indices: Union[Sequence[int], np.ndarray, slice]) -> "SensorDataset":
        return SensorDataset(
            features=self.features[indices],
            labels=self.labels[indices],
            ids=self.ids[indices]
        )


def parse_line(
    line: str,
    n_features: int = N_SENSOR_FEATURES,
    label_mapper: LabelMapper = collision_label_mapper
) -> Optional[Tuple[np.ndarray, int]]:
    """
    Parse one CSV line into features and a mapped label.

    Args:
        line: Raw line from the data file
        n_features: Number of numeric fields before the label
        label_mapper: Maps the text label to 0 or 1

    Returns:
        (features, label), or None if the line is malformed
    """
    fields = next(csv.reader([line]), [])
    if len(fields) <= n_features:
        return None
    try:
        features = np.array([float(v) for v in fields[:n_features]], dtype=np.float64)
    except ValueError:
        return None
    label = fields[n_features].strip()
    if not label:
        return None
    return features, label_mapper(label)


def load_sensor_data(
    path: str,
    n_features: int = N_SENSOR_FEATURES,
    label_mapper: LabelMapper = collision_label_mapper
) -> SensorDataset:
    """
    Load every well-formed line of a sensor data file.

    Malformed lines are skipped; row ids number the accepted rows
    from 0 in file order.

    Raises:
        DatasetError: If the file cannot be read or has no usable rows
    """
    features, labels = [], []
    try:
        with open(path, 'r', newline='', encoding='utf-8') as f:
            for line in f:
                parsed = parse_line(line, n_features, label_mapper)
                if parsed is None:
                    continue
                features.append(parsed[0])
                labels.append(parsed[1])
    except OSError as e:
        raise DatasetError(f"Failed to open file: {path}") from e
    except (UnicodeDecodeError, csv.Error) as e:
        raise DatasetError(f"Unreadable data file: {path}") from e

    if not features:
        raise DatasetError(f"No usable samples in {path}")

    logger.info(f"Loaded {len(features)} samples from {path}")
    return SensorDataset(
        features=np.vstack(features),
        labels=np.asarray(labels, dtype=np.float64).reshape(-1, 1),
        ids=np.arange(len(features))
    )


def shuffle_dataset(
    dataset: SensorDataset,
    rng: Union[np.random.Generator, int, None] = None
) -> SensorDataset:
    """Return the samples in a random order, features, labels and ids together."""
    rng = np.random.default_rng(rng)
    return dataset.subset(rng.permutation(len(dataset)))


def class_balance(labels: np.ndarray) -> Tuple[int, int]:
    """
    Count positive (label >= 0.5) and negative samples.

    Returns:
        (positive, negative)
    """
    if len(labels) == 0:
        return 0, 0
    labels = np.asarray(labels, dtype=np.float64).reshape(len(labels), -1)
    positive = int(np.count_nonzero(labels[:, 0] >= 0.5))
    return positive, len(labels) - positive


def log_class_balance(labels: np.ndarray) -> None:
    positive, negative = class_balance(labels)
    total = positive + negative
    if total == 0:
        logger.warning("Class balance requested for an empty label set")
        return
    logger.info(
        f"Class balance: {total} samples, "
        f"positive (collision = 1): {positive} ({100.0 * positive / total:.2f}%), "
        f"negative (no collision = 0): {negative} ({100.0 * negative / total:.2f}%)"
    )


def split_dataset(
    dataset: SensorDataset,
    train_ratio: float = 0.8,
    rng: Union[np.random.Generator, int, None] = None
) -> Tuple[SensorDataset, SensorDataset]:
    """
    Shuffle and split into disjoint training and testing sets.

    Args:
        dataset: Samples to split
        train_ratio: Fraction of samples used for training, in (0, 1]
        rng: Random source for the shuffle

    Returns:
        (training, testing)

    Raises:
        ConfigError: If train_ratio is outside (0, 1]
    """
    if not 0.0 < train_ratio <= 1.0:
        raise ConfigError(f"train_ratio must be in (0, 1], got {train_ratio}")

    shuffled = shuffle_dataset(dataset, rng)
    log_class_balance(shuffled.labels)

    train_size = int(train_ratio * len(shuffled))
    training = shuffled.subset(slice(0, train_size))
    testing = shuffled.subset(slice(train_size, len(shuffled)))

    logger.info(
        f"Dataset split: {len(training)} training samples, "
        f"{len(testing)} testing samples, "
        f"{shuffled.n_features} features each"
    )
    return training, testing


def load_and_split(
    path: str,
    train_ratio: float = 0.8,
    rng: Union[np.random.Generator, int, None] = None,
    n_features: int = N_SENSOR_FEATURES,
    label_mapper: LabelMapper = collision_label_mapper
) -> Tuple[SensorDataset, SensorDataset]:
    """Load a sensor data file and split it into training and testing sets."""
    dataset = load_sensor_data(path, n_features, label_mapper)
    return split_dataset(dataset, train_ratio, rng)
