"""
evaluation.py
~~~~~~~~~~~~~

Binary classification metrics for a trained network.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

DEFAULT_THRESHOLD = 0.5


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


@dataclass
class ConfusionMatrix:
    tp: int = 0
    tn: int = 0
    fp: int = 0
    fn: int = 0

    @property
    def total(self) -> int:
        return self.tp + self.tn + self.fp + self.fn

    @property
    def accuracy(self) -> float:
        return _ratio(self.tp + self.tn, self.total)

    @property
    def precision(self) -> float:
        return _ratio(self.tp, self.tp + self.fp)

    @property
    def recall(self) -> float:
        return _ratio(self.tp, self.tp + self.fn)

    @property
    def f1(self) -> float:
        p, r = self.precision, self.recall
        return _ratio(2.0 * p * r, p + r)

    def as_dict(self) -> dict:
        return {
            'tp': self.tp,
            'tn': self.tn,
            'fp': self.fp,
            'fn': self.fn,
            'accuracy': self.accuracy,
            'precision': self.precision,
            'recall': self.recall,
            'f1': self.f1,
        }


def confusion_matrix(
    probabilities: Sequence[float],
    labels: Sequence[float],
    threshold: float = DEFAULT_THRESHOLD
) -> ConfusionMatrix:
    """
    Count outcomes of thresholded predictions.

    Args:
        probabilities: Predicted probability of the positive class per sample
        labels: Actual 0/1 labels
        threshold: A prediction is positive when p >= threshold

    Returns:
        ConfusionMatrix
    """
    predicted = np.asarray(probabilities, dtype=np.float64).reshape(-1) >= threshold
    actual = np.asarray(labels, dtype=np.float64).reshape(-1) >= 0.5
    if predicted.shape != actual.shape:
        raise ValueError(
            f"Got {predicted.shape[0]} predictions for {actual.shape[0]} labels"
        )
    return ConfusionMatrix(
        tp=int(np.count_nonzero(predicted & actual)),
        tn=int(np.count_nonzero(~predicted & ~actual)),
        fp=int(np.count_nonzero(predicted & ~actual)),
        fn=int(np.count_nonzero(~predicted & actual)),
    )


def evaluate_network(
    network,
    features: Sequence,
    labels: Sequence,
    threshold: float = DEFAULT_THRESHOLD
) -> ConfusionMatrix:
    """Predict every sample with ``network`` and build the confusion matrix."""
    probabilities = [float(network.predict(x)[0]) for x in features]
    return confusion_matrix(probabilities, labels, threshold)


def format_metrics(cm: ConfusionMatrix) -> str:
    return (
        "Confusion Matrix:\n"
        f"TP: {cm.tp} | FP: {cm.fp}\n"
        f"FN: {cm.fn} | TN: {cm.tn}\n"
        f"Accuracy : {cm.accuracy * 100:.4f}%\n"
        f"Precision: {cm.precision * 100:.4f}%\n"
        f"Recall   : {cm.recall * 100:.4f}%\n"
        f"F1 Score : {cm.f1 * 100:.4f}%"
    )


def format_prediction(
    index: int,
    row_id: int,
    features: Sequence[float],
    prediction: float,
    actual: float
) -> str:
    sensors = " ".join(f"{v:.2f}" for v in features)
    return (
        f"Prediction[{index}] row {row_id}: sensors {sensors} | "
        f"prediction {prediction:.4f} | actual {actual:g}"
    )
