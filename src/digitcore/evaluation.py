"""
Accuracy evaluation of the handwriting model on MNIST-style samples.

Datasets come either as the bundled JSON export
(``{"samples": [{"label": 7, "pixelsB64": "..."}]}``) or as an MNIST CSV with
the label in the first column and 784 pixel columns after it.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import classification_report as sk_classification_report

from .constants import CLASS_NAMES, DEFAULT_IMAGE_CONFIG, EVAL_PROGRESS_EVERY, ImageConfig
from .image import normalize_mnist_pixels
from .inference import InferenceSession
from .scoring import ConfusionMatrix, argmax

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, ConfusionMatrix], None]


@dataclass
class EvalSample:
    label: int
    pixels: np.ndarray


def decode_pixels_b64(encoded: str) -> np.ndarray:
    return np.frombuffer(base64.b64decode(encoded), dtype=np.uint8).copy()


def load_eval_json(path: str) -> List[EvalSample]:
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    samples = data.get("samples") or []
    if not samples:
        raise ValueError(f"Empty dataset: {path}")
    return [EvalSample(int(s["label"]), decode_pixels_b64(s["pixelsB64"])) for s in samples]


def load_mnist_csv(path: str, limit: Optional[int] = None) -> List[EvalSample]:
    frame = pd.read_csv(path, nrows=limit)
    labels = frame.iloc[:, 0].values
    pixels = frame.iloc[:, 1:].values.astype(np.uint8)
    logger.info("Loaded %d samples from %s", len(labels), path)
    return [EvalSample(int(label), row) for label, row in zip(labels, pixels)]


def load_dataset(path: str, limit: Optional[int] = None) -> List[EvalSample]:
    if path.lower().endswith(".csv"):
        return load_mnist_csv(path, limit)
    samples = load_eval_json(path)
    return samples[:limit] if limit else samples


def evaluate(
    session: InferenceSession,
    samples: Iterable[EvalSample],
    matrix: Optional[ConfusionMatrix] = None,
    progress_every: int = EVAL_PROGRESS_EVERY,
    on_progress: Optional[ProgressCallback] = None,
    config: ImageConfig = DEFAULT_IMAGE_CONFIG,
) -> ConfusionMatrix:
    """
    Score every sample once and accumulate a confusion matrix.

    The matrix is reset first. ``on_progress(done, total, matrix)`` fires every
    ``progress_every`` samples and after the last one.
    """
    if matrix is None:
        matrix = ConfusionMatrix(session.num_classes)
    matrix.reset()
    samples = list(samples)
    total = len(samples)
    every = max(1, int(progress_every))

    for done, sample in enumerate(samples, start=1):
        logits = session.run(normalize_mnist_pixels(sample.pixels, config))
        matrix.update(sample.label, argmax(logits))
        if on_progress is not None and (done % every == 0 or done == total):
            on_progress(done, total, matrix)

    logger.info("Evaluated %d samples, accuracy %.4f", matrix.total, matrix.accuracy)
    return matrix


def classification_report(matrix: ConfusionMatrix, output_dict: bool = False):
    """Per-class precision / recall / F1 derived from accumulated counts."""
    counts = matrix.to_array()
    if counts.sum() == 0:
        return {} if output_dict else ""
    t_idx, p_idx = np.nonzero(counts)
    reps = counts[t_idx, p_idx]
    y_true = np.repeat(t_idx, reps)
    y_pred = np.repeat(p_idx, reps)
    labels = list(range(matrix.num_classes))
    names = CLASS_NAMES if matrix.num_classes == len(CLASS_NAMES) else [str(i) for i in labels]
    return sk_classification_report(
        y_true,
        y_pred,
        labels=labels,
        target_names=names,
        zero_division=0,
        output_dict=output_dict,
    )
