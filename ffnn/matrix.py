"""
matrix.py
~~~~~~~~~

Dense 2D matrix of floats with bounds-checked element access.

The values live in a numpy array so the network can use vectorized
operations on whole layers, while element access through ``m[row, col]``
stays strict about indices (numpy would silently wrap negative ones).
"""

import numbers
from typing import Optional, Tuple

import numpy as np

from ffnn.errors import ConfigError, ShapeError


class Matrix:
    """
    A fixed-size ``rows x cols`` matrix, zero-initialized.

    Attributes:
        values: The backing ``(rows, cols)`` float64 array
    """

    def __init__(self, rows: int, cols: int):
        """
        Create a zero matrix.

        Args:
            rows: Number of rows, must be positive
            cols: Number of columns, must be positive

        Raises:
            ConfigError: If rows or cols is not positive
        """
        if rows <= 0 or cols <= 0:
            raise ConfigError(
                f"Matrix dimensions must be positive, got {rows}x{cols}"
            )
        self._rows = int(rows)
        self._cols = int(cols)
        self.values = np.zeros((self._rows, self._cols), dtype=np.float64)

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def shape(self) -> Tuple[int, int]:
        return (self._rows, self._cols)

    def _check_index(self, index) -> Tuple[int, int]:
        if not isinstance(index, tuple) or len(index) != 2:
            raise ShapeError(f"Matrix index must be (row, col), got {index!r}")
        row, col = index
        if not isinstance(row, numbers.Integral) or not isinstance(col, numbers.Integral):
            raise ShapeError(f"Matrix indices must be integers, got {index!r}")
        if not (0 <= row < self._rows and 0 <= col < self._cols):
            raise ShapeError(
                f"Index ({row}, {col}) out of bounds for "
                f"{self._rows}x{self._cols} matrix"
            )
        return int(row), int(col)

    def __getitem__(self, index) -> float:
        row, col = self._check_index(index)
        return float(self.values[row, col])

    def __setitem__(self, index, value: float) -> None:
        row, col = self._check_index(index)
        self.values[row, col] = value

    def fill_random(
        self,
        low: float = -1.0,
        high: float = 1.0,
        rng: Optional[np.random.Generator] = None
    ) -> "Matrix":
        """
        Overwrite every entry with an independent uniform draw in [low, high).

        Args:
            low: Lower bound of the distribution
            high: Upper bound of the distribution
            rng: Random source; a fresh unseeded generator when None

        Returns:
            Matrix: self, for chaining
        """
        if rng is None:
            rng = np.random.default_rng()
        self.values[...] = rng.uniform(low, high, size=self.shape)
        return self

    def copy(self) -> "Matrix":
        result = Matrix(self._rows, self._cols)
        result.values[...] = self.values
        return result

    def __mul__(self, scalar: float) -> "Matrix":
        if not isinstance(scalar, numbers.Real):
            return NotImplemented
        result = Matrix(self._rows, self._cols)
        result.values[...] = self.values * scalar
        return result

    __rmul__ = __mul__

    def __imul__(self, scalar: float) -> "Matrix":
        if not isinstance(scalar, numbers.Real):
            return NotImplemented
        self.values *= scalar
        return self

    def __str__(self) -> str:
        return "\n".join(
            " ".join(str(float(v)) for v in row) for row in self.values
        )

    def __repr__(self) -> str:
        return f"Matrix(rows={self._rows}, cols={self._cols})"
