"""
config.py
~~~~~~~~~

Run configuration with environment variable overrides.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Optional, Tuple

from ffnn.activations import Activation
from ffnn.errors import ConfigError

ENV_PREFIX = 'FFNN_'


@dataclass(frozen=True)
class RunConfig:
    # data
    data_path: str = 'sensor_readings_24.csv'
    train_ratio: float = 0.8
    seed: Optional[int] = None

    # network
    layer_sizes: Tuple[int, ...] = (24, 12, 1)
    activations: Tuple[str, ...] = ('none', 'relu', 'sigmoid')

    # training
    learning_rate: float = 0.029
    epochs: int = 1300
    batch_size: int = 8

    # files
    model_path: str = 'model.csv'
    log_file: Optional[str] = 'log.txt'
    model_dir: str = 'models'

    def validate(self) -> 'RunConfig':
        """
        Check the values that the network and data loader rely on.

        Raises:
            ConfigError: On the first invalid value
        """
        if len(self.layer_sizes) < 2:
            raise ConfigError(
                f"layer_sizes needs at least 2 layers, got {self.layer_sizes}"
            )
        if len(self.activations) != len(self.layer_sizes):
            raise ConfigError(
                f"Got {len(self.layer_sizes)} layer sizes but "
                f"{len(self.activations)} activations"
            )
        if any(size <= 0 for size in self.layer_sizes):
            raise ConfigError(f"Layer sizes must be positive: {self.layer_sizes}")
        for name in self.activations:
            Activation.parse(name)
        if not 0.0 < self.train_ratio <= 1.0:
            raise ConfigError(f"train_ratio must be in (0, 1], got {self.train_ratio}")
        if self.learning_rate <= 0:
            raise ConfigError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.epochs <= 0:
            raise ConfigError(f"epochs must be positive, got {self.epochs}")
        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        return self

    @classmethod
    def from_env(cls, environ=None, **overrides) -> 'RunConfig':
        """
        Build a configuration from ``FFNN_*`` environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Field values that take precedence over the
                environment (None values are ignored)

        Raises:
            ConfigError: If a variable cannot be parsed
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is None:
                continue
            try:
                values[field.name] = _parse_field(field.name, raw)
            except ValueError as e:
                raise ConfigError(
                    f"Invalid value for {ENV_PREFIX}{field.name.upper()}: {raw!r}"
                ) from e
        values.update({k: v for k, v in overrides.items() if v is not None})
        return replace(cls(), **values)


def _parse_field(name: str, raw: str):
    if name == 'layer_sizes':
        return tuple(int(v) for v in raw.split(',') if v.strip())
    if name == 'activations':
        return tuple(v.strip() for v in raw.split(',') if v.strip())
    if name in ('train_ratio', 'learning_rate'):
        return float(raw)
    if name in ('epochs', 'batch_size', 'seed'):
        return int(raw)
    if name == 'log_file' and raw.strip() == '':
        return None
    return raw
