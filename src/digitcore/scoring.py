"""
Scoring utilities: softmax, ranking and streaming confusion-matrix statistics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from .constants import NUM_CLASSES, TOP_K


@dataclass(frozen=True)
class RankedDigit:
    digit: int
    probability: float


def softmax(logits) -> np.ndarray:
    """Numerically stable softmax; an all-underflow input gives zeros, not NaN."""
    z = np.asarray(logits, dtype=np.float64).ravel()
    if z.size == 0:
        return z
    shift = z.max()
    if not np.isfinite(shift):
        shift = 0.0
    exps = np.exp(z - shift)
    total = exps.sum()
    return exps / (total if total != 0 else 1.0)


def argmax(logits) -> int:
    """Index of the first maximum score."""
    return int(np.argmax(np.asarray(logits).ravel()))


def top_k(probabilities, k: int = TOP_K) -> List[RankedDigit]:
    """Digits ordered by descending probability, ties kept in index order."""
    probs = np.asarray(probabilities, dtype=np.float64).ravel()
    order = np.argsort(-probs, kind="stable")[:max(k, 0)]
    return [RankedDigit(int(i), float(probs[i])) for i in order]


class ConfusionMatrix:
    """Counts of (true label, predicted label) pairs accumulated one sample at a time."""

    def __init__(self, num_classes: int = NUM_CLASSES) -> None:
        self.num_classes = int(num_classes)
        self._counts = np.zeros((self.num_classes, self.num_classes), dtype=np.int64)

    def _check(self, label: int, name: str) -> int:
        label = int(label)
        if not 0 <= label < self.num_classes:
            raise ValueError(f"{name} label {label} outside [0, {self.num_classes - 1}]")
        return label

    def update(self, true_label: int, predicted_label: int) -> None:
        t = self._check(true_label, "True")
        p = self._check(predicted_label, "Predicted")
        self._counts[t, p] += 1

    def reset(self) -> None:
        self._counts[:] = 0

    @property
    def total(self) -> int:
        return int(self._counts.sum())

    @property
    def correct(self) -> int:
        return int(np.trace(self._counts))

    @property
    def accuracy(self) -> float:
        total = self.total
        return self.correct / total if total else 0.0

    def per_class_accuracy(self) -> np.ndarray:
        """Recall of each true class; classes never seen report 0."""
        totals = self._counts.sum(axis=1)
        diag = np.diag(self._counts).astype(np.float64)
        return np.divide(diag, totals, out=np.zeros(self.num_classes), where=totals > 0)

    def to_array(self) -> np.ndarray:
        return self._counts.copy()

    def __getitem__(self, index):
        return self._counts[index]

    def __repr__(self) -> str:
        return f"ConfusionMatrix(total={self.total}, accuracy={self.accuracy:.4f})"
